"""Tolerant coercions for loosely-typed stored values."""

from __future__ import annotations

import json
from typing import Any


def to_string_array(value: Any) -> list[str]:
    """Coerce a stored list-ish value into a list of strings.

    Lists are stringified element-wise. Strings are tried as a JSON
    array first, then split on commas. Anything else is empty.
    """
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return [str(v) for v in parsed]
        except json.JSONDecodeError:
            pass
        return [s.strip() for s in value.split(",") if s.strip()]
    return []


def to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
