"""JSON Schema validation for colony documents.

Provides:
- A registry of every schema under ``colony/schemas`` for $ref resolution
- Cached validators
- Error lists in ``<json path>: <message>`` form
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List, Union

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from colony.core import SCHEMAS_DIR, load_json

REPUTATION_PROOF_SCHEMA = "reputation-proof.schema.json"
LEDGER_SNAPSHOT_SCHEMA = "ledger-snapshot.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Registry of all colony schemas, keyed by ``$id``."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.colony.local/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str, schemas_dir: Path = SCHEMAS_DIR) -> Draft202012Validator:
    """Validator for the named schema file in ``schemas_dir``."""
    schema = load_json(schemas_dir / schema_name)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema, registry=_schema_registry(schemas_dir))


def validate_against_schema(obj: Any, schema_name: Union[str, Path]) -> List[str]:
    """Validate ``obj``; returns error messages (empty if valid)."""
    validator = schema_validator(Path(schema_name).name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def list_schemas() -> List[str]:
    return sorted(p.name for p in SCHEMAS_DIR.glob("*.schema.json"))
