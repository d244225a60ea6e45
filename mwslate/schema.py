"""JSON Schema validation for slates and RPC parameters.

Provides:
- A registry of the schemas shipped in ``mwslate/schemas`` so ``$ref``
  resolves across files
- Cached validators per schema (and per RPC method)
- Error reporting that names the offending JSON path
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from mwslate.errors import InvalidSlate

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
SCHEMA_BASE_URI = "https://schemas.mwslate.dev/"


def load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMAS_DIR / name
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def schema_registry() -> Registry:
    """Registry of every shipped schema, keyed by its ``$id``."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_schema(schema_path.name)
        schema_id = schema.get("$id") or SCHEMA_BASE_URI + schema_path.name
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Validator for a shipped schema file."""
    return Draft202012Validator(load_schema(name), registry=schema_registry())


@lru_cache(maxsize=None)
def method_validator(api: str, method: str) -> Draft202012Validator:
    """Validator for the named parameters of ``method`` on the ``owner`` or ``foreign`` API."""
    ref = f"{SCHEMA_BASE_URI}{api}-rpc.schema.json#/$defs/{method}"
    return Draft202012Validator({"$ref": ref}, registry=schema_registry())


def has_method_schema(api: str, method: str) -> bool:
    return method in load_schema(f"{api}-rpc.schema.json").get("$defs", {})


def _format_path(error: Any) -> str:
    path = "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in error.absolute_path)
    return path.lstrip(".") or "$"


def validation_errors(validator: Draft202012Validator, obj: Any) -> List[Dict[str, str]]:
    errors = sorted(validator.iter_errors(obj), key=lambda e: list(map(str, e.absolute_path)))
    return [{"path": _format_path(e), "message": e.message} for e in errors]


def validate_slate_document(obj: Any, version: int) -> None:
    """Raise InvalidSlate naming the first offending path."""
    errors = validation_errors(schema_validator(f"slate-v{version}.schema.json"), obj)
    if errors:
        first = errors[0]
        raise InvalidSlate(
            f"Slate v{version} failed schema validation at {first['path']}: {first['message']}",
            path=first["path"],
            errors=errors,
        )
