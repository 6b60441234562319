"""Merge model-proposed resume updates into the canonical document.

Models are allowed to return only the top-level keys they changed, so every
section missing from an update must survive untouched. The functions here are
total over any parsed JSON value: malformed input falls back to the prior
value instead of raising.
"""

from __future__ import annotations

import copy
import hashlib
import json
import re
from typing import Any, Dict, Iterable, List, Optional

from .models import CONTACT_FIELDS, DEFAULT_SECTION_ORDER, ENTRY_SECTIONS

_SKILL_DECORATION_RE = re.compile(r"^[\s\-‐-―•‣⁃∙▪●◦·*+>]+")
_NORMALIZE_RE = re.compile(r"[^a-z0-9]")
_DEFAULT_SKILLS_LABEL = "Skills"
_KNOWN_SECTIONS = ("contact", "summary", "sectionOrder", "skills") + ENTRY_SECTIONS


def derive_id(*parts: Any, length: int = 7) -> str:
    """Short id derived from content, so reconciling twice assigns the same ids."""
    seed = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha1(seed.encode("utf-8")).hexdigest()[:length]


def empty_contact() -> Dict[str, str]:
    return {field: "" for field in CONTACT_FIELDS}


def empty_document() -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "contact": empty_contact(),
        "summary": "",
        "sectionOrder": list(DEFAULT_SECTION_ORDER),
        "skills": [],
    }
    for section in ENTRY_SECTIONS:
        document[section] = []
    return document


def reconcile_document(
    canonical: Any, proposed: Any, *, preserve_cardinality: bool = False
) -> Dict[str, Any]:
    """Return a new canonical document with ``proposed`` applied on top.

    Each top-level section of ``proposed`` that is present and well-shaped
    replaces the prior section wholesale; ``contact`` merges field by field.
    Sections absent on both sides default to empty values, never ``None``.

    With ``preserve_cardinality`` entry arrays are edited in place instead:
    proposed entries are matched to prior entries by ``id`` and merged field
    by field, prior entries the proposal omits are kept and entries with an
    unknown id are dropped.
    """
    prior = canonical if isinstance(canonical, dict) else {}
    update = proposed if isinstance(proposed, dict) else {}

    result: Dict[str, Any] = {}
    for key, value in prior.items():
        if key not in _KNOWN_SECTIONS:
            result[key] = copy.deepcopy(value)

    result["contact"] = _merge_contact(prior.get("contact"), update.get("contact"))
    result["summary"] = _pick_string(update.get("summary"), prior.get("summary"))
    result["sectionOrder"] = _pick_section_order(
        update.get("sectionOrder"), prior.get("sectionOrder")
    )

    proposed_skills = update.get("skills")
    if isinstance(proposed_skills, list):
        result["skills"] = clean_skills(proposed_skills)
    else:
        result["skills"] = _coerce_skill_categories(prior.get("skills"))

    for section in ENTRY_SECTIONS:
        proposed_entries = update.get(section)
        if isinstance(proposed_entries, list) and preserve_cardinality:
            result[section] = _update_entries_in_place(
                _normalize_entries(prior.get(section), section), proposed_entries
            )
        elif isinstance(proposed_entries, list):
            result[section] = _normalize_entries(proposed_entries, section)
        else:
            result[section] = _normalize_entries(prior.get(section), section)
    return result


def clean_skills(categories: Iterable[Any]) -> List[Dict[str, Any]]:
    """Strip decoration, drop blanks and dedupe skills across all categories.

    Deduplication is case-insensitive and first-occurrence-wins in
    category-then-array order. Categories left empty are dropped.
    """
    seen: set[str] = set()
    cleaned: List[Dict[str, Any]] = []
    for category in _coerce_skill_categories(categories):
        skills: List[str] = []
        for raw in category.get("skills", []):
            if not isinstance(raw, str):
                continue
            skill = _SKILL_DECORATION_RE.sub("", raw).strip()
            if not skill:
                continue
            key = skill.casefold()
            if key in seen:
                continue
            seen.add(key)
            skills.append(skill)
        if skills:
            category["skills"] = skills
            cleaned.append(category)
    return cleaned


def merge_into_master(master: Any, incoming: Any) -> Dict[str, Any]:
    """Fold a freshly parsed resume into the long-lived master profile.

    Non-empty incoming contact fields win, entries already present in the
    master (matched on normalized identifying fields) are not duplicated and
    skills are unioned case-insensitively.
    """
    if not isinstance(master, dict) or not master:
        return reconcile_document(empty_document(), incoming)
    base = reconcile_document(master, {})
    other = reconcile_document(empty_document(), incoming)

    contact = dict(base["contact"])
    for field, value in other["contact"].items():
        if isinstance(value, str) and value.strip():
            contact[field] = value
    base["contact"] = contact
    if other["summary"].strip():
        base["summary"] = other["summary"]

    for section in ENTRY_SECTIONS:
        base[section] = _normalize_entries(
            _merge_entries(section, base[section], other[section]), section
        )
    base["skills"] = clean_skills(base["skills"] + other["skills"])
    return base


def _merge_contact(prior: Any, proposed: Any) -> Dict[str, str]:
    contact = empty_contact()
    for source in (prior, proposed):
        if not isinstance(source, dict):
            continue
        for field, value in source.items():
            if isinstance(value, str):
                contact[field] = value
    return contact


def _pick_string(proposed: Any, prior: Any) -> str:
    if isinstance(proposed, str):
        return proposed
    if isinstance(prior, str):
        return prior
    return ""


def _pick_section_order(proposed: Any, prior: Any) -> List[str]:
    for candidate in (proposed, prior):
        order = _valid_section_order(candidate)
        if order:
            return order
    return list(DEFAULT_SECTION_ORDER)


def _valid_section_order(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    order: List[str] = []
    for token in value:
        if isinstance(token, str) and token in DEFAULT_SECTION_ORDER and token not in order:
            order.append(token)
    return order


def _coerce_skill_categories(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    categories: List[Dict[str, Any]] = []
    loose: Optional[Dict[str, Any]] = None
    for index, item in enumerate(value):
        if isinstance(item, str):
            if loose is None:
                loose = {
                    "id": derive_id("skills", _DEFAULT_SKILLS_LABEL, index),
                    "label": _DEFAULT_SKILLS_LABEL,
                    "skills": [],
                }
                categories.append(loose)
            loose["skills"].append(item)
            continue
        if not isinstance(item, dict):
            continue
        category = copy.deepcopy(item)
        if not isinstance(category.get("id"), str):
            category["id"] = derive_id("skills", index, item)
        if not isinstance(category.get("label"), str):
            category["label"] = _DEFAULT_SKILLS_LABEL
        skills = category.get("skills")
        category["skills"] = list(skills) if isinstance(skills, list) else []
        categories.append(category)
    return categories


def _normalize_entries(value: Any, section: str) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    entries: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            continue
        entry = copy.deepcopy(item)
        entry_id = entry.get("id")
        if not isinstance(entry_id, str) or not entry_id.strip() or entry_id in seen:
            entry_id = derive_id(section, index, item)
            salt = 0
            while entry_id in seen:
                salt += 1
                entry_id = derive_id(section, index, item, salt)
            entry["id"] = entry_id
        seen.add(entry_id)
        entries.append(entry)
    return entries


def _update_entries_in_place(
    prior: List[Dict[str, Any]], proposed: List[Any]
) -> List[Dict[str, Any]]:
    updates: Dict[str, Dict[str, Any]] = {}
    for item in proposed:
        if isinstance(item, dict) and isinstance(item.get("id"), str):
            updates.setdefault(item["id"], item)
    entries: List[Dict[str, Any]] = []
    for entry in prior:
        update = updates.get(entry["id"])
        if update is not None:
            entry = {**entry, **copy.deepcopy(update), "id": entry["id"]}
        entries.append(entry)
    return entries


_IDENTITY_FIELDS = {
    "experience": ("company", "role"),
    "education": ("institution",),
}


def _identity(section: str, entry: Dict[str, Any]) -> tuple[str, ...]:
    fields = _IDENTITY_FIELDS.get(section, ("title", "name"))
    return tuple(_normalize_text(entry.get(field)) for field in fields)


def _normalize_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _NORMALIZE_RE.sub("", value.lower())


def _merge_entries(
    section: str, master: List[Dict[str, Any]], incoming: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    merged = list(master)
    known = {_identity(section, entry) for entry in master}
    for entry in incoming:
        identity = _identity(section, entry)
        if not any(identity):
            merged.append(entry)
            continue
        if identity in known:
            continue
        known.add(identity)
        merged.append(entry)
    return merged
