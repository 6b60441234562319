"""Pull a JSON payload out of free-form model output and repair truncation.

Models are asked for bare JSON but routinely wrap it in markdown fences, add a
sentence of preamble, or stop mid-object when they hit the output token cap.
Everything here is pure and deterministic, so a failure is never retried.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .errors import UnparseableOutputError

_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[^\S\n]*\n?(.*?)\n?\s*```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[^\S\n]*\n?(.*)\Z", re.DOTALL)
_REPLY_RE = re.compile(r'"reply"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?\Z")
_PARTIAL_UNICODE_RE = re.compile(r"(\\+)u[0-9a-fA-F]{0,3}\Z")
_LITERALS = ("true", "false", "null")
_TOKEN_DELIMITERS = set(" \t\r\n,:]}")


def extract_json_payload(text: str) -> str:
    """Return the most likely JSON substring of ``text``.

    Priority: the first fenced code block, then the first ``{`` .. last ``}``
    span when the text does not already start with ``{``, else the trimmed
    text itself. An opening fence that never closes (output cut off by the
    token cap) yields everything after it, so the repairer can finish it.
    """
    if not isinstance(text, str):
        return ""
    raw = text.strip()
    fenced = _FENCE_RE.search(raw)
    if fenced:
        return fenced.group(1).strip()
    if raw.startswith("```"):
        opened = _OPEN_FENCE_RE.match(raw)
        if opened:
            return opened.group(1).strip()
    if not raw.startswith("{"):
        start = raw.find("{")
        end = raw.rfind("}")
        if start != -1 and end > start:
            return raw[start : end + 1]
        if start != -1 and end == -1:
            return raw[start:]
    return raw


@dataclass
class _Frame:
    closer: str
    expect: str
    empty: bool = True


@dataclass
class _SafePoint:
    end: int
    closers: str


@dataclass
class _RepairScan:
    text: str
    stack: List[_Frame] = field(default_factory=list)
    safe: Optional[_SafePoint] = None
    in_string: bool = False
    string_is_key: bool = False
    escape: bool = False

    def closers(self) -> str:
        return "".join(frame.closer for frame in reversed(self.stack))

    def mark_safe(self, end: int) -> None:
        self.safe = _SafePoint(end=end, closers=self.closers())

    def value_done(self, end: int) -> None:
        if self.stack:
            top = self.stack[-1]
            top.expect = "comma"
            top.empty = False
        self.mark_safe(end)

    def run(self) -> None:
        text = self.text
        length = len(text)
        i = 0
        while i < length:
            ch = text[i]
            if self.in_string:
                if self.escape:
                    self.escape = False
                elif ch == "\\":
                    self.escape = True
                elif ch == '"':
                    self.in_string = False
                    if self.string_is_key:
                        self.stack[-1].expect = "colon"
                    else:
                        self.value_done(i + 1)
                i += 1
                continue
            if ch.isspace():
                i += 1
                continue
            if ch == '"':
                self.in_string = True
                self.string_is_key = bool(
                    self.stack and self.stack[-1].closer == "}" and self.stack[-1].expect == "key"
                )
                i += 1
                continue
            if ch in "{[":
                if ch == "{":
                    self.stack.append(_Frame(closer="}", expect="key"))
                else:
                    self.stack.append(_Frame(closer="]", expect="value"))
                self.mark_safe(i + 1)
                i += 1
                continue
            if ch in "}]":
                if self.stack:
                    self.stack.pop()
                self.value_done(i + 1)
                i += 1
                continue
            if ch == ":":
                if self.stack and self.stack[-1].expect == "colon":
                    self.stack[-1].expect = "value"
                i += 1
                continue
            if ch == ",":
                if self.stack and self.stack[-1].expect == "comma":
                    top = self.stack[-1]
                    top.expect = "key" if top.closer == "}" else "value"
                i += 1
                continue
            j = i
            while j < length and text[j] not in _TOKEN_DELIMITERS:
                j += 1
            token = text[i:j]
            if j < length or token in _LITERALS or _NUMBER_RE.match(token):
                self.value_done(j)
            i = j


def repair_json(text: str) -> str:
    """Close whatever a truncated JSON document left open.

    Valid JSON comes back untouched. Otherwise the text is scanned once,
    tracking open containers, string state and escapes. A value string cut
    mid-way keeps its partial content and gets its closing quote; anything
    that cannot be closed into valid JSON (a half-written key, a dangling
    comma or colon, a partial literal) is cut back to the last complete
    value. The open containers are then closed innermost-first. Complete but
    malformed JSON (missing commas and the like) is not fixed.
    """
    if not isinstance(text, str):
        return text
    try:
        json.loads(text)
        return text
    except ValueError:
        pass
    scan = _RepairScan(text)
    scan.run()
    if scan.in_string and not scan.string_is_key:
        kept = text
        if scan.escape:
            kept = kept[:-1]
        partial = _PARTIAL_UNICODE_RE.search(kept)
        if partial and len(partial.group(1)) % 2 == 1:
            kept = kept[: partial.start() + len(partial.group(1)) - 1]
        return f'{kept}"{scan.closers()}'
    if scan.safe is not None:
        return text[: scan.safe.end] + scan.safe.closers
    suffix = '"' if scan.in_string else ""
    return f"{text}{suffix}{scan.closers()}"


def parse_model_json(raw_text: str) -> Any:
    """Extract, parse, and on failure repair-then-parse model output."""
    stripped = raw_text.strip() if isinstance(raw_text, str) else ""
    if stripped.startswith('"'):
        # Double-encoded payloads ("{\"reply\": ...}") show up from some models.
        try:
            decoded = json.loads(stripped)
        except ValueError:
            decoded = None
        if isinstance(decoded, str) and decoded.strip():
            return parse_model_json(decoded)
    candidate = extract_json_payload(raw_text)
    try:
        parsed = json.loads(candidate)
    except ValueError:
        repaired = repair_json(candidate)
        try:
            parsed = json.loads(repaired)
        except ValueError as exc:
            raise UnparseableOutputError(f"invalid_json:{exc}", raw_text=raw_text) from exc
    return parsed


def recover_reply(raw_text: str) -> str | None:
    """Best-effort ``"reply": "..."`` lookup for output that will not parse."""
    if not isinstance(raw_text, str):
        return None
    match = _REPLY_RE.search(raw_text)
    if not match:
        return None
    value = match.group(1)
    try:
        decoded = json.loads(f'"{value}"')
    except ValueError:
        return value
    return decoded if isinstance(decoded, str) else value
