"""Normalization helpers.

Centralizes defensive parsing of the loosely typed values the backend and
local callers hand us.  None of these helpers raise.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

_TRUE_TOKENS = frozenset({"true", "1", "y", "yes", "on"})


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return math.floor(parsed)


def non_negative_int(value: Any, default: int = 0) -> int:
    parsed = safe_int(value)
    if parsed is None or parsed < 0:
        return default
    return parsed


def trimmed(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def optional_trimmed(value: Any) -> str | None:
    text = trimmed(value)
    return text or None


def role_key(value: Any) -> str:
    """Case-insensitive comparison key for a role label."""
    return trimmed(value).lower()


def safe_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TOKENS
    return bool(value)


def first_present(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-None value among *keys*."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize timestamps to epoch milliseconds.

    - Missing/empty/non-positive -> None
    - Numbers and numeric strings are taken as milliseconds
    - ISO-8601 strings and datetimes are converted (naive values are UTC)
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        ms = math.floor(moment.timestamp() * 1000)
        return ms if ms > 0 else None
    if isinstance(value, (int, float)):
        numeric = safe_float(value)
        if numeric is None or numeric <= 0:
            return None
        return math.floor(numeric)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = safe_float(text)
        if numeric is not None:
            return math.floor(numeric) if numeric > 0 else None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return normalize_timestamp_ms(parsed)
    return None


def normalize_iso_timestamp(value: Any) -> str | None:
    """Normalize a join/creation time to an ISO-8601 string.

    Strings are kept as sent (trimmed); epoch milliseconds and datetimes
    are converted to UTC ISO strings.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return moment.isoformat()
    ms = normalize_timestamp_ms(value)
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=UTC).isoformat()


def json_clone(value: Any) -> Any:
    """Return a JSON-compatible deep copy of *value*.

    Mappings become dicts with string keys, tuples/sets become lists,
    pydantic models are dumped and callables are dropped.
    """

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        cloned: dict[str, Any] = {}
        for key, item in value.items():
            if callable(item):
                continue
            cloned[str(key)] = json_clone(item)
        return cloned
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_clone(item) for item in value if not callable(item)]
    if callable(value):
        return None
    return str(value)


def as_mapping(value: Any) -> dict[str, Any] | None:
    """Clone *value* when it is a mapping, else None."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        cloned = json_clone(value)
        return cloned if isinstance(cloned, dict) else None
    return None
