"""Redaction for DEBUG logging of backend traffic.

Requests carry the project API key and the caller's bearer token; responses
may embed whole turn histories.  :func:`redact_for_log` masks credentials,
clips long strings and long row lists, and never mutates its input.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

# Compared after lower-casing and dropping "_" / "-".
_CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "authorization",
        "accesstoken",
        "refreshtoken",
        "providertoken",
        "servicerolekey",
        "token",
        "password",
        "cookie",
        "secret",
    }
)

_BEARER_PREFIX = "bearer "
_MAX_DEPTH = 20


def _credential_key(key: str) -> bool:
    return key.lower().replace("_", "").replace("-", "") in _CREDENTIAL_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, max_items: int = 50, _depth: int = 0) -> Any:
    """Return a log-safe copy of *value*.

    Parameters
    ----------
    value : Any
        Payload, params or fault body about to be logged.
    max_string : int
        Strings longer than this are clipped.
    max_items : int
        Sequences longer than this keep their head and a count of the rest.
    """

    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if value[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
            return "Bearer <redacted>"
        if len(value) > max_string:
            return f"{value[:max_string]}...<truncated {len(value) - max_string} chars>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(key): (
                "<redacted>"
                if _credential_key(str(key))
                else redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            )
            for key, item in value.items()
        }

    if isinstance(value, Sequence):
        head = [
            redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for item in value[:max_items]
        ]
        if len(value) > max_items:
            head.append(f"<{len(value) - max_items} more>")
        return head

    return repr(value)
