from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Type

from jsonschema import Draft202012Validator
from pydantic import BaseModel

from . import models

SCHEMA_TARGETS: Dict[str, Type[BaseModel]] = {
    "HighlightedField": models.HighlightedField,
    "ChangeNote": models.ChangeNote,
    "TailorOutput": models.TailorOutput,
    "TailorParams": models.TailorParams,
    "TailorStatus": models.TailorStatus,
    "ChatResponse": models.ChatResponse,
}

_VALIDATORS: Dict[str, Draft202012Validator] = {}


def schema_for(name: str) -> Dict[str, Any]:
    return SCHEMA_TARGETS[name].model_json_schema()


def validator_for(name: str) -> Draft202012Validator:
    validator = _VALIDATORS.get(name)
    if validator is None:
        validator = Draft202012Validator(schema_for(name))
        _VALIDATORS[name] = validator
    return validator


def filter_valid(name: str, items: Iterable[Any]) -> List[Dict[str, Any]]:
    """Keep only items that validate against the named model schema."""
    validator = validator_for(name)
    return [item for item in items if isinstance(item, dict) and validator.is_valid(item)]


def export_schemas(target_dir: Path) -> None:
    target_dir.mkdir(parents=True, exist_ok=True)
    for name in SCHEMA_TARGETS:
        schema_path = target_dir / f"{name}.json"
        schema_path.write_text(json.dumps(schema_for(name), indent=2))
