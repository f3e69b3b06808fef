"""Core primitives for the colony ledger.

This module provides the foundational utilities used throughout the package:
- SHA-256 digests and 32-byte word encoding
- Account address normalisation (20-byte identities)
- Canonical JSON serialization (JCS/RFC8785 subset)
- YAML/JSON loading with consistent encoding

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import hashlib
import json
import pathlib
import re
from typing import Any, Union

import yaml

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent
SCHEMAS_DIR = PACKAGE_ROOT / "schemas"

UINT256_MAX = (1 << 256) - 1
WORD_SIZE = 32
ADDRESS_SIZE = 20
ZERO_ADDRESS = "0x" + "00" * ADDRESS_SIZE

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def sha256_digest(data: bytes) -> bytes:
    """Compute the raw 32-byte SHA-256 digest."""
    return hashlib.sha256(data).digest()


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes (JCS/RFC8785 subset).

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - Floats rejected (use strings/ints for amounts)
    """
    def _reject_floats(o: Any, path: str = "") -> None:
        if isinstance(o, float):
            raise ValueError(f"Float not allowed in canonical JSON at {path}")
        if isinstance(o, dict):
            for k, v in o.items():
                _reject_floats(v, f"{path}.{k}")
        if isinstance(o, list):
            for i, v in enumerate(o):
                _reject_floats(v, f"{path}[{i}]")

    _reject_floats(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


# Addresses

def is_address(value: Any) -> bool:
    """Check if value is a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_address(value: str) -> str:
    """Normalise an address to lowercase ``0x`` + 40 hex chars.

    Raises:
        ValueError: If the value is not an address.
    """
    if not is_address(value):
        raise ValueError(f"Not a 20-byte hex address: {value!r}")
    return value.strip().lower()


def address_to_bytes(address: str) -> bytes:
    """Raw 20 bytes of an address."""
    return bytes.fromhex(normalize_address(address)[2:])


def address_from_bytes(data: bytes) -> str:
    """Render 20 raw bytes as an address."""
    if len(data) != ADDRESS_SIZE:
        raise ValueError(f"Address must be {ADDRESS_SIZE} bytes, got {len(data)}")
    return "0x" + data.hex()


# 32-byte words

def int_to_word(value: int) -> bytes:
    """Big-endian 32-byte encoding of an unsigned integer."""
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"Value out of uint256 range: {value}")
    return value.to_bytes(WORD_SIZE, "big")


def address_to_word(address: str) -> bytes:
    """Left-pad an address to a 32-byte word."""
    return address_to_bytes(address).rjust(WORD_SIZE, b"\x00")


def coerce_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    """Accept raw bytes or a (optionally 0x-prefixed) hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        s = value.strip()
        if s.startswith(("0x", "0X")):
            s = s[2:]
        return bytes.fromhex(s)
    raise TypeError(f"Expected bytes or hex string, got {type(value).__name__}")
