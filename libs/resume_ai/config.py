from __future__ import annotations

import os


def parse_optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_optional_int(value: str | None) -> int | None:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def env_int(name: str, default: int) -> int:
    parsed = parse_optional_int(os.getenv(name))
    return default if parsed is None else parsed


def env_float(name: str, default: float) -> float:
    parsed = parse_optional_float(os.getenv(name))
    return default if parsed is None else parsed

