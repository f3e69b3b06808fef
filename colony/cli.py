#!/usr/bin/env python3
"""
Colony CLI

Command-line tooling for colony ledger operators.

Usage:
    colony <command> [subcommand] [options]

Commands:
    key         Encode/decode 72-byte reputation keys
    proof       Verify reputation proofs against a root hash
    slot        Derive per-identity storage slots and check them
    ledger      Validate ledger snapshots
    config      Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from colony import __version__
from colony.observability import ColonyLayer, generate_correlation_id, get_logger, set_correlation_id

logger = get_logger("cli", ColonyLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.dump(data, default_flow_style=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _parse_int(value: str) -> int:
    """argparse type accepting decimal or 0x-prefixed integers."""
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")


def _load_document(path: str) -> Any:
    from colony.core import load_json, load_yaml

    p = Path(path)
    if not p.exists():
        raise CLIError(f"File not found: {path}", exit_code=2)
    return load_json(p) if p.suffix == ".json" else load_yaml(p)


class ColonyCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="colony",
            description="Colony ledger tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"colony {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file to load before running the command",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_key_commands()
        self._register_proof_commands()
        self._register_slot_commands()
        self._register_ledger_commands()
        self._register_config_commands()

    def _register_key_commands(self) -> None:
        key = self.subparsers.add_parser("key", help="Reputation key encoding")
        key_sub = key.add_subparsers(dest="subcommand")

        encode = key_sub.add_parser("encode", help="Build a 72-byte reputation key")
        encode.add_argument("--colony", required=True, help="Colony address")
        encode.add_argument("--skill", required=True, type=_parse_int, help="Skill id")
        encode.add_argument("--user", required=True, help="User address")

        decode = key_sub.add_parser("decode", help="Split a reputation key into its fields")
        decode.add_argument("key", help="Key as hex")

    def _register_proof_commands(self) -> None:
        proof = self.subparsers.add_parser("proof", help="Reputation proofs")
        proof_sub = proof.add_subparsers(dest="subcommand")

        verify = proof_sub.add_parser("verify", help="Verify a proof request file")
        verify.add_argument("--file", required=True, help="Proof request (JSON or YAML)")
        verify.add_argument("--root", help="Canonical root hash (overrides the file's root)")

    def _register_slot_commands(self) -> None:
        from colony.storage import METATRANSACTION_NONCES_SLOT

        slot = self.subparsers.add_parser("slot", help="Storage slots")
        slot_sub = slot.add_subparsers(dest="subcommand")

        derive = slot_sub.add_parser("derive", help="Derive an identity's slot in a namespace")
        derive.add_argument("--identity", required=True, help="Identity address")
        derive.add_argument(
            "--namespace",
            type=_parse_int,
            default=METATRANSACTION_NONCES_SLOT,
            help=f"Namespace constant (default: {METATRANSACTION_NONCES_SLOT}, meta-transaction nonces)",
        )

        check = slot_sub.add_parser("check", help="Check whether a slot may be written dynamically")
        check.add_argument("slot", type=_parse_int, help="Slot number")

    def _register_ledger_commands(self) -> None:
        ledger = self.subparsers.add_parser("ledger", help="Ledger snapshots")
        ledger_sub = ledger.add_subparsers(dest="subcommand")

        validate = ledger_sub.add_parser("validate", help="Validate a ledger snapshot file")
        validate.add_argument("--file", required=True, help="Snapshot (JSON or YAML)")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show current configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., reputation.hash_algorithm)")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        set_correlation_id(generate_correlation_id())
        try:
            from colony.config import get_config_manager
            if parsed.config:
                get_config_manager().load_from_file(parsed.config)
            else:
                get_config_manager().load_defaults()

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            logger.error(
                "Command failed",
                error_code=getattr(e, "code", type(e).__name__),
                command=parsed.command,
                reason=str(e),
            )
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Key handlers
    def _handle_key_encode(self, args: argparse.Namespace) -> Any:
        from colony.reputation import ReputationKey
        try:
            key = ReputationKey(colony=args.colony, skill_id=args.skill, user=args.user)
            return {"key": "0x" + key.encode().hex()}
        except ValueError as e:
            raise CLIError(str(e), exit_code=2)

    def _handle_key_decode(self, args: argparse.Namespace) -> Any:
        from colony.reputation import ReputationKey
        try:
            return ReputationKey.decode(args.key).to_dict()
        except ValueError as e:
            raise CLIError(str(e), exit_code=2)

    # Proof handlers
    def _handle_proof_verify(self, args: argparse.Namespace) -> Any:
        from colony.hardening import ValidationError
        from colony.network import InMemoryColonyNetwork
        from colony.patricia import PatriciaProofPrimitive
        from colony.reputation import ReputationKey, ReputationProofVerifier
        from colony.schema import REPUTATION_PROOF_SCHEMA, validate_against_schema

        request = _load_document(args.file)
        errors = validate_against_schema(request, REPUTATION_PROOF_SCHEMA)
        if errors:
            raise CLIError("Invalid proof request:\n  " + "\n  ".join(errors), exit_code=2)

        root = args.root or request.get("root")
        if root is None:
            raise CLIError("No root hash given (use --root or a 'root' field)", exit_code=2)

        network = InMemoryColonyNetwork()
        try:
            network.set_reputation_root_hash(root)
        except ValidationError as e:
            raise CLIError(f"Invalid root hash: {e}", exit_code=2)
        verifier = ReputationProofVerifier(request["colony"], network, PatriciaProofPrimitive())
        valid = verifier.verify(
            request["caller"],
            request["key"],
            request["value"],
            int(request["branch_mask"], 16),
            request["siblings"],
        )
        return {
            "valid": valid,
            "root": network.get_reputation_root_hash().hex(),
            "key": ReputationKey.decode(request["key"]).to_dict(),
        }

    # Slot handlers
    def _handle_slot_derive(self, args: argparse.Namespace) -> Any:
        from colony.storage import PROTECTED_SLOTS, derive_slot
        slot = derive_slot(args.identity, args.namespace)
        return {
            "identity": args.identity,
            "namespace": args.namespace,
            "slot": str(slot),
            "slot_hex": f"0x{slot:064x}",
            "protected": slot in PROTECTED_SLOTS,
        }

    def _handle_slot_check(self, args: argparse.Namespace) -> Any:
        from colony.hardening import ProtectedVariable
        from colony.storage import protect_slot
        try:
            protect_slot(args.slot)
        except ProtectedVariable as e:
            return {"slot": str(args.slot), "writable": False, "error_code": e.code}
        return {"slot": str(args.slot), "writable": True}

    # Ledger handlers
    def _handle_ledger_validate(self, args: argparse.Namespace) -> Any:
        from colony.schema import LEDGER_SNAPSHOT_SCHEMA, validate_against_schema
        errors = validate_against_schema(_load_document(args.file), LEDGER_SNAPSHOT_SCHEMA)
        return {"valid": len(errors) == 0, "errors": errors}

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from colony.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from colony.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from colony.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from colony.config import get_config_manager
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = ColonyCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
