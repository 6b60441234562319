from __future__ import annotations

from libs.resume_ai.highlights import diff_highlights
from libs.resume_ai.models import ChangeType
from libs.resume_ai.reconcile import empty_document, reconcile_document


def _paths(highlights) -> dict:
    return {item.path: item.changeType for item in highlights}


def _base() -> dict:
    document = empty_document()
    document["contact"]["name"] = "Jane"
    document["summary"] = "Old"
    document["experience"] = [
        {"id": "e1", "company": "Acme", "bullets": ["a", "b"]},
        {"id": "e2", "company": "Globex", "bullets": []},
    ]
    return document


def test_identical_documents_have_no_highlights() -> None:
    base = _base()
    assert diff_highlights(base, reconcile_document(base, {})) == []


def test_section_and_contact_changes() -> None:
    base = _base()
    after = reconcile_document(base, {"summary": "New", "contact": {"name": "Janet"}})
    assert _paths(diff_highlights(base, after)) == {
        "contact.name": ChangeType.changed,
        "summary": ChangeType.changed,
    }


def test_entry_level_changes() -> None:
    base = _base()
    after = reconcile_document(
        base,
        {
            "experience": [
                {"id": "e1", "company": "Acme Corp", "bullets": ["a", "B", "c"]},
                {"id": "e3", "company": "Initech"},
            ]
        },
    )
    assert _paths(diff_highlights(base, after)) == {
        "experience.e1.company": ChangeType.changed,
        "experience.e1.bullets.1": ChangeType.changed,
        "experience.e1.bullets.2": ChangeType.added,
        "experience.e3": ChangeType.added,
        "experience.e2": ChangeType.removed,
    }


def test_shortened_list_reports_removed_indexes() -> None:
    base = _base()
    after = reconcile_document(
        base,
        {"experience": [{"id": "e1", "company": "Acme", "bullets": ["a"]}, base["experience"][1]]},
    )
    assert _paths(diff_highlights(base, after)) == {"experience.e1.bullets.1": ChangeType.removed}
