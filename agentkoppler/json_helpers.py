"""Small JSON helpers shared by the backend parsers and log statements."""

from __future__ import annotations

import json
from typing import Any


def to_bounded_json(payload: Any, max_len: int = 4000) -> str:
    """Serialize a value for a log line, truncating long output. Never raises."""
    try:
        raw = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        raw = repr(payload)
    if len(raw) > max_len:
        return raw[:max_len] + "...<truncated>"
    return raw


def parse_json_object(line: str | bytes) -> dict[str, Any] | None:
    """Decode one JSON line, returning None for blank, invalid or non-object input."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.strip()
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def string_value(value: Any) -> str:
    """Coerce JSON scalars to text; objects, arrays, null and bools become ''."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value) if not value.is_integer() else str(int(value))
    return ""
