from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema.validators import Draft202012Validator as Validator

SCHEMAS_ROOT = Path(__file__).resolve().parents[1] / "schemas"


def load_schema(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        schema = yaml.safe_load(f)
    Validator.check_schema(schema)
    return schema


@lru_cache(maxsize=None)
def schema_validator(name: str, schemas_root: Path | None = None) -> Validator:
    """Return a compiled validator for `<schemas_root>/<name>.schema.yaml`."""
    return Validator(load_schema((schemas_root or SCHEMAS_ROOT) / f"{name}.schema.yaml"))


def validate_obj(schema: dict[str, Any] | Validator, obj: Any) -> None:
    validator = schema if isinstance(schema, Validator) else Validator(schema)
    validator.validate(obj)
