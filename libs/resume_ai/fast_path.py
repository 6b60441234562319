"""Synchronous generation paths that finish within one HTTP request.

``structure_resume`` turns pasted resume text into a document and
``chat_turn`` runs one coaching exchange that may edit the resume. Both
always hand back a fully reconciled document, never raw model output.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from . import logging as resume_logging
from . import prompts
from .errors import GenerationError, InvalidInputError, UnparseableOutputError
from .extraction import parse_model_json, recover_reply
from .generation import GenerationClient, truncate_text
from .llm_provider import EmptyResponseError, LLMProviderError
from .models import ChatMessage, ChatResponse
from .reconcile import empty_document, reconcile_document

CHAT_HISTORY_LIMIT = 6
CHAT_RESUME_CHAR_CAP = 6000
CHAT_JOB_DESCRIPTION_CHAR_CAP = 2000
CHAT_BIO_CHAR_CAP = 1000
PARSE_TEXT_CHAR_CAP = 30000

CHAT_UNAVAILABLE_REPLY = "I ran into an issue reaching the AI. Please try again."
CHAT_FALLBACK_REPLY = "I couldn't apply that edit. Please try again with a simpler request."
_CHAT_PRIMER_REPLY = '{"reply":"Got it, I have read your resume. What would you like to work on?","updatedResume":null}'

LOGGER = resume_logging.get_logger("fast_path")


def structure_resume(
    text: Optional[str],
    client: GenerationClient,
    *,
    max_output_tokens: Optional[int] = None,
) -> Dict[str, Any]:
    if not isinstance(text, str) or not text.strip():
        raise InvalidInputError("text is required")
    capped = truncate_text(text.strip(), PARSE_TEXT_CHAR_CAP)
    try:
        raw_text = client.generate(
            prompts.PARSE_INSTRUCTION,
            prompts.build_parse_messages(capped),
            max_output_tokens=max_output_tokens,
        )
    except EmptyResponseError as exc:
        raise GenerationError("AI backend returned no content") from exc
    except LLMProviderError as exc:
        raise GenerationError(f"AI backend unavailable: {exc}") from exc

    parsed = parse_model_json(raw_text)
    if isinstance(parsed, dict) and isinstance(parsed.get("resume"), dict):
        parsed = parsed["resume"]
    if not isinstance(parsed, dict):
        raise UnparseableOutputError("AI returned malformed JSON", raw_text=raw_text)
    return reconcile_document(empty_document(), parsed)


def chat_turn(
    messages: Sequence[ChatMessage | Dict[str, Any]],
    resume: Optional[Dict[str, Any]],
    job_description: Optional[str],
    bio: Optional[str],
    client: GenerationClient,
    *,
    max_output_tokens: Optional[int] = None,
) -> ChatResponse:
    history = [_as_message(message) for message in messages or []]
    history = [message for message in history if message is not None]
    if not history:
        raise InvalidInputError("messages required")

    resume = resume if isinstance(resume, dict) else {}
    resume_json = truncate_text(
        json.dumps(resume, ensure_ascii=False, separators=(",", ":")), CHAT_RESUME_CHAR_CAP
    )
    context = prompts.build_chat_context(
        resume_json,
        truncate_text((job_description or "").strip(), CHAT_JOB_DESCRIPTION_CHAR_CAP),
        truncate_text((bio or "").strip(), CHAT_BIO_CHAR_CAP),
    )
    conversation: List[Dict[str, str]] = [
        {"role": "user", "content": context},
        {"role": "assistant", "content": _CHAT_PRIMER_REPLY},
    ]
    conversation.extend(history[-CHAT_HISTORY_LIMIT:])

    try:
        raw_text = client.generate(
            prompts.CHAT_INSTRUCTION, conversation, max_output_tokens=max_output_tokens
        )
    except EmptyResponseError:
        return ChatResponse(reply=CHAT_UNAVAILABLE_REPLY, updatedResume=None)
    except LLMProviderError as exc:
        raise GenerationError(f"AI backend unavailable: {exc}") from exc

    try:
        parsed = parse_model_json(raw_text)
    except UnparseableOutputError:
        resume_logging.log_event(
            LOGGER, "chat_reply_unparseable", {"response_chars": len(raw_text)}
        )
        return ChatResponse(reply=recover_reply(raw_text) or CHAT_FALLBACK_REPLY, updatedResume=None)
    if not isinstance(parsed, dict):
        return ChatResponse(reply=recover_reply(raw_text) or CHAT_FALLBACK_REPLY, updatedResume=None)

    reply = parsed.get("reply")
    if not isinstance(reply, str) or not reply.strip():
        reply = CHAT_FALLBACK_REPLY
    proposed = parsed.get("updatedResume")
    updated = reconcile_document(resume, proposed) if isinstance(proposed, dict) else None
    return ChatResponse(reply=reply, updatedResume=updated)


def _as_message(message: Any) -> Optional[Dict[str, str]]:
    if isinstance(message, ChatMessage):
        return {"role": message.role, "content": message.content}
    if isinstance(message, dict):
        role = message.get("role")
        content = message.get("content")
        if role in ("user", "assistant") and isinstance(content, str):
            return {"role": role, "content": content}
    return None
