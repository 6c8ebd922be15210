"""Typed accessors for loosely-shaped JSON payloads.

External services return inconsistent shapes (missing fields, camelCase vs
snake_case, numbers as strings). Every accessor here returns a typed value
or the supplied default and never raises.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

# Epoch values above this are milliseconds
_MILLISECONDS_THRESHOLD = 1e12


def first_present(payload: Any, *keys: str) -> Any:
    """Value of the first key present (and not None) in a mapping."""
    if not isinstance(payload, Mapping):
        return None
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def get_mapping(payload: Any, *keys: str) -> Mapping[str, Any]:
    value = first_present(payload, *keys)
    return value if isinstance(value, Mapping) else {}


def get_list(payload: Any, *keys: str) -> list[Any]:
    value = first_present(payload, *keys)
    return list(value) if isinstance(value, list) else []


def as_str(value: Any, default: str | None = None) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or default
    return default


def as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    return result if math.isfinite(result) else default


def as_int(value: Any, default: int = 0) -> int:
    result = as_float(value, float("nan"))
    if math.isnan(result):
        return default
    return int(result)


def as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def as_count(value: Any) -> int:
    """Length of a list/dict, or the integer itself; 0 otherwise."""
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return max(0, as_int(value))


def as_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch seconds/milliseconds into aware UTC datetimes."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        seconds = value / 1000 if value > _MILLISECONDS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None
