from __future__ import annotations

import json

from libs.resume_ai import schemas


def test_filter_valid_change_notes() -> None:
    notes = [
        {"section": "summary", "change": "Tightened", "why": "Clarity"},
        {"section": "skills", "change": "Added Go", "why": "JD", "coachingNote": "Show a project"},
        {"section": "skills", "change": "Added Go"},
        {"section": "skills", "change": "x", "why": "y", "extra": True},
        "not a note",
    ]
    assert schemas.filter_valid("ChangeNote", notes) == notes[:2]


def test_export_schemas_writes_every_target(tmp_path) -> None:
    schemas.export_schemas(tmp_path)
    for name in schemas.SCHEMA_TARGETS:
        exported = json.loads((tmp_path / f"{name}.json").read_text())
        assert exported["title"] == name
