from __future__ import annotations

import json

import pytest

from libs.resume_ai import fast_path
from libs.resume_ai.errors import GenerationError, InvalidInputError, UnparseableOutputError
from libs.resume_ai.generation import TRUNCATION_MARKER, GenerationClient
from libs.resume_ai.llm_provider import LLMProvider, LLMProviderError, LLMResponse
from libs.resume_ai.models import ChatMessage, DEFAULT_SECTION_ORDER

RESUME = {
    "contact": {"name": "Jane Doe", "email": "jane@example.com"},
    "summary": "Backend engineer.",
    "experience": [{"id": "e1", "company": "Acme", "bullets": ["Built APIs"]}],
    "skills": [{"id": "s1", "label": "Languages", "skills": ["Go"]}],
}


class _FakeProvider(LLMProvider):
    def __init__(self, content="", error=None) -> None:
        self.content = content
        self.error = error
        self.calls: list[tuple[str, list]] = []

    def generate(self, instruction, messages, *, max_output_tokens=None):
        self.calls.append((instruction, list(messages)))
        if self.error:
            raise self.error
        return LLMResponse(content=self.content)


def _client(provider: LLMProvider) -> GenerationClient:
    return GenerationClient(provider, char_budget=100000)


def _user(text: str) -> ChatMessage:
    return ChatMessage(role="user", content=text)


def test_structure_resume_returns_fully_defaulted_document() -> None:
    provider = _FakeProvider(
        '```json\n{"contact": {"name": "Sam"}, "skills": ["Go", "go", "- SQL"], '
        '"experience": [{"company": "Acme", "bullets": ["x"]}]}\n```'
    )
    document = fast_path.structure_resume("Sam\nAcme engineer", _client(provider))
    assert document["contact"]["name"] == "Sam"
    assert document["contact"]["email"] == ""
    assert document["summary"] == ""
    assert document["sectionOrder"] == DEFAULT_SECTION_ORDER
    assert document["skills"][0]["skills"] == ["Go", "SQL"]
    assert document["experience"][0]["id"]
    assert document["publications"] == []


def test_structure_resume_rejects_blank_text() -> None:
    provider = _FakeProvider("{}")
    with pytest.raises(InvalidInputError):
        fast_path.structure_resume("   ", _client(provider))
    assert provider.calls == []


def test_structure_resume_empty_response_is_generation_error() -> None:
    with pytest.raises(GenerationError) as exc_info:
        fast_path.structure_resume("text", _client(_FakeProvider("")))
    assert exc_info.value.status_code == 502


def test_structure_resume_unparseable_carries_raw_text() -> None:
    with pytest.raises(UnparseableOutputError) as exc_info:
        fast_path.structure_resume("text", _client(_FakeProvider("I could not read that file")))
    assert exc_info.value.raw_text == "I could not read that file"


def test_chat_turn_reconciles_partial_update() -> None:
    provider = _FakeProvider(json.dumps({"reply": "Rewrote summary.", "updatedResume": {"summary": "New."}}))
    response = fast_path.chat_turn([_user("Rewrite my summary")], RESUME, None, None, _client(provider))
    assert response.reply == "Rewrote summary."
    assert response.updatedResume["summary"] == "New."
    assert response.updatedResume["experience"] == RESUME["experience"]
    assert response.updatedResume["skills"] == RESUME["skills"]


def test_chat_turn_answer_without_edit() -> None:
    provider = _FakeProvider('{"reply": "Use action verbs.", "updatedResume": null}')
    response = fast_path.chat_turn([_user("Tips?")], RESUME, None, None, _client(provider))
    assert response.reply == "Use action verbs."
    assert response.updatedResume is None


def test_chat_turn_empty_response_returns_apology() -> None:
    response = fast_path.chat_turn([_user("hi")], RESUME, None, None, _client(_FakeProvider("")))
    assert response.reply == fast_path.CHAT_UNAVAILABLE_REPLY
    assert response.updatedResume is None


def test_chat_turn_recovers_reply_from_unparseable_output() -> None:
    raw = '{"reply": "Added Rust.", "updatedResume": {"skills": [}'
    response = fast_path.chat_turn([_user("add rust")], RESUME, None, None, _client(_FakeProvider(raw)))
    assert response.reply == "Added Rust."
    assert response.updatedResume is None


def test_chat_turn_falls_back_when_reply_missing() -> None:
    response = fast_path.chat_turn(
        [_user("add rust")], RESUME, None, None, _client(_FakeProvider("totally broken"))
    )
    assert response.reply == fast_path.CHAT_FALLBACK_REPLY
    assert response.updatedResume is None


def test_chat_turn_requires_messages() -> None:
    with pytest.raises(InvalidInputError):
        fast_path.chat_turn([], RESUME, None, None, _client(_FakeProvider("{}")))


def test_chat_turn_backend_failure_is_generation_error() -> None:
    provider = _FakeProvider(error=LLMProviderError("connection refused"))
    with pytest.raises(GenerationError):
        fast_path.chat_turn([_user("hi")], RESUME, None, None, _client(provider))


def test_chat_turn_caps_context_and_history() -> None:
    provider = _FakeProvider('{"reply": "ok"}')
    history = [_user(f"message {index}") for index in range(10)]
    fast_path.chat_turn(
        history,
        {"summary": "x" * 7000},
        "j" * 2500,
        "b" * 1500,
        _client(provider),
    )
    _, messages = provider.calls[0]
    context = messages[0]["content"]
    assert context.count(TRUNCATION_MARKER) == 3
    assert "j" * 2001 not in context
    assert "b" * 1001 not in context
    assert [m["content"] for m in messages[2:]] == [f"message {index}" for index in range(4, 10)]
