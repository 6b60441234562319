from __future__ import annotations

import time
from typing import Dict, List, Optional, Sequence

from prometheus_client import Histogram

from . import logging as resume_logging
from .config import env_int
from .llm_provider import EmptyResponseError, LLMProvider, provider_from_env

TRUNCATION_MARKER = "...[truncated]"
DEFAULT_CHAR_BUDGET = 60000

LOGGER = resume_logging.get_logger("generation")

generation_duration_seconds = Histogram(
    "generation_duration_seconds", "Text-generation call duration", ["outcome"]
)


def truncate_text(value: Optional[str], limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cap ``value`` at ``limit`` characters, appending ``marker`` when cut."""
    if not isinstance(value, str):
        return ""
    if limit < 0 or len(value) <= limit:
        return value
    return value[:limit] + marker


class GenerationClient:
    """Single entry point for every text-generation call.

    Inputs are trimmed to a character budget before they leave the process,
    so an oversized resume never turns into a backend rejection. The instruction
    is capped first, then messages newest-first share what remains; messages
    that no longer fit are dropped.
    """

    def __init__(self, provider: LLMProvider, char_budget: int = DEFAULT_CHAR_BUDGET) -> None:
        self.provider = provider
        self.char_budget = char_budget

    def generate(
        self,
        instruction: str,
        messages: Sequence[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
        char_budget: Optional[int] = None,
    ) -> str:
        budget = char_budget if char_budget is not None else self.char_budget
        capped_instruction = truncate_text(instruction, budget)
        capped_messages = _fit_messages(messages, max(budget - len(capped_instruction), 0))
        started = time.monotonic()
        try:
            response = self.provider.generate(
                capped_instruction, capped_messages, max_output_tokens=max_output_tokens
            )
            text = response.content
            if not isinstance(text, str) or not text.strip():
                raise EmptyResponseError("generation returned no text")
        except Exception as exc:
            elapsed = time.monotonic() - started
            generation_duration_seconds.labels(outcome="failed").observe(elapsed)
            resume_logging.log_event(
                LOGGER,
                "generation_failed",
                {
                    "duration_ms": int(elapsed * 1000),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise
        elapsed = time.monotonic() - started
        generation_duration_seconds.labels(outcome="ok").observe(elapsed)
        resume_logging.log_event(
            LOGGER,
            "generation_finished",
            {
                "duration_ms": int(elapsed * 1000),
                "message_count": len(capped_messages),
                "response_chars": len(text),
            },
        )
        return text


def _fit_messages(messages: Sequence[Dict[str, str]], budget: int) -> List[Dict[str, str]]:
    fitted: List[Dict[str, str]] = []
    remaining = budget
    for message in reversed(list(messages)):
        if remaining <= 0:
            break
        content = message.get("content")
        content = content if isinstance(content, str) else ""
        capped = truncate_text(content, remaining)
        fitted.append({"role": message.get("role", "user"), "content": capped})
        remaining -= len(content)
    fitted.reverse()
    return fitted


def client_from_env(provider: Optional[LLMProvider] = None) -> GenerationClient:
    budget = env_int("GENERATION_CHAR_BUDGET", DEFAULT_CHAR_BUDGET)
    return GenerationClient(provider or provider_from_env(), char_budget=budget)
