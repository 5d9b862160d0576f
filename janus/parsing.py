"""Tolerant JSON parsing for model responses.

Models often wrap their JSON in prose or code fences. The contract here is:

* :func:`extract_first_json_object` returns the first balanced ``{...}`` span in
  the text, found by bracket-depth scanning that ignores braces inside JSON
  strings (escapes included). It returns ``None`` when no object closes.
* :func:`parse_json_object` decodes that span and returns a dict, or ``None``.
* The ``coerce_*``/``normalize_*``/``to_*`` helpers turn loosely typed fields
  into the expected shape with a caller-supplied default, never raising.
"""
from __future__ import annotations

import json
import math
from typing import Any, Dict, List


def extract_first_json_object(text: str | None) -> str | None:
    if not text:
        return None
    start = -1
    depth = 0
    in_string = False
    escape = False
    for index, char in enumerate(text):
        if start == -1:
            if char == "{":
                start = index
                depth = 1
            continue
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_object(text: str | None) -> Dict[str, Any] | None:
    snippet = extract_first_json_object(text)
    if snippet is None:
        return None
    try:
        parsed = json.loads(snippet)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def coerce_string(value: Any, fallback: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_confidence(value: Any, fallback: int = 50) -> int:
    number = coerce_number(value)
    if number is None:
        return fallback
    # half-up, so 49.5 becomes 50
    return max(0, min(100, int(math.floor(number + 0.5))))


def to_string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        items = [str(item).strip() for item in value if item is not None]
        return [item for item in items if item]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def first_present(record: Dict[str, Any], *keys: str) -> Any:
    """Return the first value in ``record`` under ``keys`` that is not None."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None
