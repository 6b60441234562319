from __future__ import annotations

import json
from typing import Any, Dict, List

from .models import CONTACT_FIELDS, DEFAULT_SECTION_ORDER

_SECTION_LIST = ", ".join(DEFAULT_SECTION_ORDER)
_CONTACT_LIST = ", ".join(CONTACT_FIELDS)

TAILOR_INSTRUCTION = (
    "You are an expert resume writer tailoring a resume to a specific job description.\n"
    "Rewrite the resume so it speaks directly to the role without inventing experience.\n"
    "Keep every entry id unchanged. Do not add or remove entries.\n"
    "Reword bullets, reorder skills and sharpen the summary where it helps the match.\n"
    "Return ONLY one JSON object, no markdown, no prose, shaped as:\n"
    '{"updatedResume": <full resume object>, "changes": [{"section": str, "change": str, '
    '"why": str, "coachingNote": str (optional)}]}\n'
    f"Resume sections: contact ({_CONTACT_LIST}), {_SECTION_LIST}, sectionOrder.\n"
)

PARSE_INSTRUCTION = (
    "You convert plain resume text into structured JSON.\n"
    "Return ONLY one JSON object, no markdown, no prose.\n"
    f"contact: object with string fields {_CONTACT_LIST}.\n"
    "summary: string.\n"
    "experience: [{company, role, location, startDate, endDate, bullets: [str]}].\n"
    "education: [{institution, degree, field, startDate, endDate}].\n"
    "skills: [{label, skills: [str]}] grouped into sensible categories.\n"
    "projects, certifications, awards, publications: arrays of objects with a title or name.\n"
    "Use empty strings or empty arrays for anything the text does not mention.\n"
)

CHAT_INSTRUCTION = (
    "You are a resume coach editing the user's resume through conversation.\n"
    "Answer briefly. When the user asks for an edit, apply it.\n"
    "Return ONLY one JSON object, no markdown, shaped as:\n"
    '{"reply": str, "updatedResume": <only the top-level sections you changed, or null>}\n'
    "Never return sections you did not change. Keep entry ids unchanged.\n"
)


def compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def build_tailor_messages(
    resume_json: str,
    job_description: str,
    master_profile_json: str = "",
) -> List[Dict[str, str]]:
    """Single user message; callers cap each field before building it."""
    parts = [
        f"Resume (JSON):\n{resume_json}",
        f"Job description:\n{job_description}",
    ]
    if master_profile_json:
        parts.append(
            "Master profile (JSON, extra material you may draw on but must not copy "
            f"wholesale):\n{master_profile_json}"
        )
    return [{"role": "user", "content": "\n\n".join(parts)}]


def build_parse_messages(text: str) -> List[Dict[str, str]]:
    return [{"role": "user", "content": f"Resume text:\n{text}"}]


def build_chat_context(
    resume_json: str, job_description: str = "", bio: str = ""
) -> str:
    """Context block prepended to the chat instruction."""
    context = f"\nCurrent resume (JSON):\n{resume_json}\n"
    if job_description:
        context += f"\nTarget job description:\n{job_description}\n"
    if bio:
        context += f"\nAbout the user:\n{bio}\n"
    return context
