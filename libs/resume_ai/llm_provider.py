from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from . import config

DEFAULT_BASE_URL = "https://api.openai.com"
_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


@dataclass
class LLMResponse:
    content: str


class LLMProviderError(Exception):
    pass


class EmptyResponseError(LLMProviderError):
    """The backend answered but produced no usable text."""


class LLMProvider:
    def generate(
        self,
        instruction: str,
        messages: Sequence[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
    ) -> LLMResponse:  # pragma: no cover - interface
        raise NotImplementedError


class MockLLMProvider(LLMProvider):
    """Echoes a fixed payload; used when no backend is configured."""

    def __init__(self, content: str = '{"reply": "Mock response"}') -> None:
        self.content = content

    def generate(
        self,
        instruction: str,
        messages: Sequence[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
    ) -> LLMResponse:
        return LLMResponse(content=self.content)


class OpenAIProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        timeout_s: float = 600.0,
        max_retries: int = 0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    def generate(
        self,
        instruction: str,
        messages: Sequence[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
    ) -> LLMResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "instructions": instruction,
            "input": [{"role": m["role"], "content": m["content"]} for m in messages],
        }
        if self.temperature is not None and _model_supports_temperature(self.model):
            payload["temperature"] = self.temperature
        token_cap = max_output_tokens if max_output_tokens is not None else self.max_output_tokens
        if token_cap is not None:
            payload["max_output_tokens"] = token_cap
        attempts = self.max_retries + 1
        retried_without_temperature = False
        attempt = 0
        while attempt < attempts:
            request = Request(
                f"{self.base_url}/v1/responses",
                data=json.dumps(payload).encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                method="POST",
            )
            try:
                with urlopen(request, timeout=self.timeout_s) as response:
                    body = response.read().decode("utf-8")
                data = json.loads(body)
                text = _extract_output_text(data)
                if not text:
                    raise EmptyResponseError("OpenAI API returned empty output")
                return LLMResponse(content=text)
            except HTTPError as exc:
                detail = exc.read().decode("utf-8") if exc.fp else str(exc)
                if (
                    "temperature" in payload
                    and not retried_without_temperature
                    and _is_unsupported_temperature_error(detail)
                ):
                    payload.pop("temperature", None)
                    retried_without_temperature = True
                    continue
                if exc.code in _TRANSIENT_STATUS and attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise LLMProviderError(f"OpenAI API error: {detail}") from exc
            except (URLError, TimeoutError) as exc:
                if attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise LLMProviderError(f"OpenAI API connection error: {exc}") from exc
        raise LLMProviderError("OpenAI API request failed after retries")


def resolve_provider(
    provider_name: str,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    temperature: Optional[float] = None,
    max_output_tokens: Optional[int] = None,
    timeout_s: Optional[float] = None,
    max_retries: Optional[int] = None,
) -> LLMProvider:
    name = (provider_name or "mock").lower()
    if name == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
        if not model:
            raise ValueError("OPENAI_MODEL is required when LLM_PROVIDER=openai")
        return OpenAIProvider(
            api_key=api_key,
            model=model,
            base_url=base_url or DEFAULT_BASE_URL,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout_s=timeout_s or 600.0,
            max_retries=max_retries or 0,
        )
    return MockLLMProvider()


def provider_from_env() -> LLMProvider:
    return resolve_provider(
        os.getenv("LLM_PROVIDER", "mock"),
        api_key=os.getenv("OPENAI_API_KEY"),
        model=os.getenv("OPENAI_MODEL"),
        base_url=os.getenv("OPENAI_BASE_URL"),
        temperature=config.parse_optional_float(os.getenv("OPENAI_TEMPERATURE")),
        timeout_s=config.parse_optional_float(os.getenv("OPENAI_TIMEOUT_S")),
        max_retries=config.parse_optional_int(os.getenv("OPENAI_MAX_RETRIES")),
    )


def _extract_output_text(response: Dict[str, Any]) -> str:
    parts: List[str] = []
    for item in response.get("output", []) or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content", []) or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                text = content.get("text")
                if isinstance(text, str):
                    parts.append(text)
    return "".join(parts).strip()


def _model_supports_temperature(model: str) -> bool:
    normalized = (model or "").strip().lower()
    # GPT-5 responses currently reject temperature.
    return not normalized.startswith("gpt-5")


def _is_unsupported_temperature_error(detail: str) -> bool:
    lowered = (detail or "").lower()
    return "unsupported parameter" in lowered and "temperature" in lowered

