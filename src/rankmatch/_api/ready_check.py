"""Ready-check endpoints.

Endpoints:
  - /api/rank/ready-check (ready signal)
  - /api/rank/ready-timeout (replace owners still missing at expiry)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from rankmatch._redact import redact_for_log
from rankmatch._transport import RemoteResponse, Transport
from rankmatch.exceptions import RankMatchRemoteError, RankMatchTransportError, ReadySignalError
from rankmatch.ingestion.normalize import as_mapping, safe_int, trimmed
from rankmatch.models.session import ReadyTimeoutRecord

_logger = logging.getLogger(__name__)

READY_CHECK_PATH = "/api/rank/ready-check"
READY_TIMEOUT_PATH = "/api/rank/ready-timeout"

_EXPIRED_ERRORS = frozenset({"missing_access_token", "unauthorized"})


def _payload_error(data: Any) -> str:
    """Error code of a failed response, looking into ``supabaseError`` too."""
    if not isinstance(data, dict):
        return ""
    nested = data.get("supabaseError") if isinstance(data.get("supabaseError"), dict) else {}
    for candidate in (data.get("error"), data.get("code"), nested.get("code"), nested.get("error")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def _payload_message(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    nested = data.get("supabaseError") if isinstance(data.get("supabaseError"), dict) else {}
    for candidate in (nested.get("message"), nested.get("details"), data.get("error"), data.get("message")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def _ready_signal_error(response: RemoteResponse) -> ReadySignalError:
    code = _payload_error(response.data)
    if code in _EXPIRED_ERRORS:
        reason = "expired"
    elif code in ("forbidden", "session_not_found"):
        reason = code
    else:
        reason = "failed"
    message = _payload_message(response.data) or f"HTTP {response.status}"
    return ReadySignalError(f"Ready signal failed: {message}", reason=reason, status_code=response.status)


async def post_ready_signal(
    transport: Transport,
    *,
    session_id: str,
    game_id: str,
    match_instance_id: str | None,
    window_seconds: int,
    access_token: str | None = None,
) -> dict[str, Any] | None:
    """Register the caller as ready; returns the server's ready-check payload.

    Raises
    ------
    ReadySignalError
        When the request fails.  ``reason`` tells whether the caller should
        refresh before retrying.
    """

    body = {
        "session_id": session_id,
        "game_id": game_id,
        "match_instance_id": match_instance_id,
        "window_seconds": window_seconds,
    }
    try:
        response = await transport.post_api(READY_CHECK_PATH, body, access_token=access_token)
    except RankMatchTransportError as exc:
        raise ReadySignalError(f"Ready signal failed: {exc}", status_code=exc.status_code) from exc

    if response.fault is not None:
        raise _ready_signal_error(response)

    data = response.data if isinstance(response.data, dict) else {}
    ready_check = data.get("readyCheck", data.get("ready_check"))
    return as_mapping(ready_check)


async def post_ready_timeout(
    transport: Transport,
    *,
    match_instance_id: str,
    game_id: str,
    room_id: str | None,
    missing_owner_ids: Sequence[str],
    access_token: str,
    now_ms: int,
) -> ReadyTimeoutRecord:
    """Ask the server to replace owners that missed the ready window."""

    body = {
        "match_instance_id": match_instance_id,
        "game_id": game_id,
        "room_id": room_id,
        "missing_owner_ids": list(missing_owner_ids),
    }
    response = await transport.post_api(READY_TIMEOUT_PATH, body, access_token=access_token)
    if response.fault is not None:
        data = response.data if isinstance(response.data, dict) else {}
        code = trimmed(data.get("error")) or "ready_timeout_failed"
        _logger.warning(
            "Ready-timeout replacement failed: status=%s error=%s hint=%s",
            response.status,
            code,
            data.get("hint"),
        )
        raise RankMatchRemoteError(
            f"Ready-timeout replacement failed: {code}",
            code=code,
            endpoint=READY_TIMEOUT_PATH,
            hint=trimmed(data.get("hint")),
            source="ready-timeout",
            remote_error=redact_for_log(data),
        )

    data = response.data if isinstance(response.data, dict) else {}
    assignments = [entry for entry in data.get("assignments") or [] if isinstance(entry, dict)]
    record = ReadyTimeoutRecord(
        triggered_at=now_ms,
        assignments=assignments,
        placeholders=safe_int(data.get("placeholders")) or 0,
        diagnostics=as_mapping(data.get("diagnostics")),
    )
    _logger.info(
        "Ready-timeout stand-ins triggered: %d assignment(s), %d placeholder(s)",
        len(record.assignments),
        record.placeholders,
    )
    return record
