from __future__ import annotations

from typing import Any, Dict, List

from .models import CONTACT_FIELDS, ENTRY_SECTIONS, ChangeType, HighlightedField

_WHOLE_SECTIONS = ("summary", "sectionOrder", "skills")


def diff_highlights(before: Dict[str, Any], after: Dict[str, Any]) -> List[HighlightedField]:
    """List the fields that differ between two reconciled documents.

    Paths are dot-addressed: a bare section name, ``contact.<field>``,
    ``<section>.<entryId>`` for added/removed entries, and
    ``<section>.<entryId>.<field>[.<index>]`` inside surviving entries.
    """
    before = before if isinstance(before, dict) else {}
    after = after if isinstance(after, dict) else {}
    highlights: List[HighlightedField] = []

    before_contact = before.get("contact") if isinstance(before.get("contact"), dict) else {}
    after_contact = after.get("contact") if isinstance(after.get("contact"), dict) else {}
    for field in _ordered_keys(CONTACT_FIELDS, before_contact, after_contact):
        if before_contact.get(field, "") != after_contact.get(field, ""):
            highlights.append(_highlight(f"contact.{field}", ChangeType.changed))

    for section in _WHOLE_SECTIONS:
        if before.get(section) != after.get(section):
            highlights.append(_highlight(section, ChangeType.changed))

    for section in ENTRY_SECTIONS:
        highlights.extend(_diff_entries(section, before.get(section), after.get(section)))
    return highlights


def _diff_entries(section: str, before: Any, after: Any) -> List[HighlightedField]:
    before_by_id = _entries_by_id(before)
    after_by_id = _entries_by_id(after)
    highlights: List[HighlightedField] = []
    for entry_id, entry in after_by_id.items():
        prior = before_by_id.get(entry_id)
        if prior is None:
            highlights.append(_highlight(f"{section}.{entry_id}", ChangeType.added))
            continue
        prefix = f"{section}.{entry_id}"
        for field in _ordered_keys((), prior, entry):
            if field == "id":
                continue
            old, new = prior.get(field), entry.get(field)
            if old == new:
                continue
            if isinstance(old, list) or isinstance(new, list):
                highlights.extend(_diff_list(f"{prefix}.{field}", old, new))
            else:
                highlights.append(_highlight(f"{prefix}.{field}", ChangeType.changed))
    for entry_id in before_by_id:
        if entry_id not in after_by_id:
            highlights.append(_highlight(f"{section}.{entry_id}", ChangeType.removed))
    return highlights


def _diff_list(prefix: str, old: Any, new: Any) -> List[HighlightedField]:
    old_items = old if isinstance(old, list) else []
    new_items = new if isinstance(new, list) else []
    highlights: List[HighlightedField] = []
    for index in range(max(len(old_items), len(new_items))):
        path = f"{prefix}.{index}"
        if index >= len(old_items):
            highlights.append(_highlight(path, ChangeType.added))
        elif index >= len(new_items):
            highlights.append(_highlight(path, ChangeType.removed))
        elif old_items[index] != new_items[index]:
            highlights.append(_highlight(path, ChangeType.changed))
    return highlights


def _entries_by_id(value: Any) -> Dict[str, Dict[str, Any]]:
    entries: Dict[str, Dict[str, Any]] = {}
    if not isinstance(value, list):
        return entries
    for item in value:
        if isinstance(item, dict) and isinstance(item.get("id"), str):
            entries.setdefault(item["id"], item)
    return entries


def _ordered_keys(known: tuple, *records: Dict[str, Any]) -> List[str]:
    keys = list(known)
    for record in records:
        for key in record:
            if key not in keys:
                keys.append(key)
    return keys


def _highlight(path: str, change_type: ChangeType) -> HighlightedField:
    return HighlightedField(path=path, changeType=change_type)
