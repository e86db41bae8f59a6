"""Latest-session lookup.

Endpoints:
  - /api/rank/latest-session (server-proxied)
  - /rest/v1/rpc/fetch_latest_rank_session_v2

Both return a :class:`~rankmatch.ingestion.tiers.TierResult`.  A lookup
that found nothing but reported a problem carries a remediation ``hint``
and/or the ``fault`` payload; a clean miss carries neither.
"""

from __future__ import annotations

import logging
from typing import Any

from rankmatch._api._common import (
    LATEST_SESSION_PROCEDURE,
    derive_latest_session_hint,
    first_row,
    is_procedure_missing,
)
from rankmatch._redact import redact_for_log
from rankmatch._transport import RemoteFault, Transport
from rankmatch.exceptions import RankMatchTransportError
from rankmatch.ingestion.normalize import optional_trimmed, trimmed
from rankmatch.ingestion.rows import map_session_row
from rankmatch.ingestion.tiers import TierResult
from rankmatch.models.session import SessionRow

_logger = logging.getLogger(__name__)

LATEST_SESSION_PATH = "/api/rank/latest-session"
API_SOURCE = "latest-session-api"

_FAILURE_KEYS = ("error", "message", "details", "hint", "supabaseError", "fallbackError", "via")


def _failure_payload(data: dict[str, Any], status: int) -> dict[str, Any]:
    diagnostics = data.get("diagnostics") if isinstance(data.get("diagnostics"), dict) else {}
    failure: dict[str, Any] = {"status": status}
    for key in _FAILURE_KEYS:
        if data.get(key) is not None:
            failure[key] = data[key]
    breaker = data.get("circuitBreaker") or diagnostics.get("circuitBreaker")
    if breaker is not None:
        failure["circuitBreaker"] = breaker
    return failure


def _fault_of(failure: dict[str, Any], status: int) -> RemoteFault:
    source = failure.get("supabaseError") or failure.get("error")
    if isinstance(source, dict):
        return RemoteFault.from_body(source, status=status)
    return RemoteFault(message=trimmed(source or failure.get("message")), status=status)


async def fetch_latest_session_via_api(
    transport: Transport,
    game_id: str,
    owner_id: str | None = None,
) -> TierResult[SessionRow]:
    """Ask the server-proxied API for the latest session of a game."""

    body: dict[str, Any] = {"game_id": game_id}
    if owner_id:
        body["owner_id"] = owner_id

    try:
        response = await transport.post_api(LATEST_SESSION_PATH, body)
    except RankMatchTransportError as exc:
        _logger.warning("Latest-session API request failed: %s", exc)
        return TierResult.unavailable(source=API_SOURCE, fault={"message": str(exc)})

    data = response.data if isinstance(response.data, dict) else {}
    failure = _failure_payload(data, response.status)
    diagnostics = data.get("diagnostics") if isinstance(data.get("diagnostics"), dict) else {}
    session = map_session_row(data.get("session"))
    fault = _fault_of(failure, response.status)
    payload_hint = optional_trimmed(failure.get("hint")) or optional_trimmed(diagnostics.get("hint"))

    via = diagnostics.get("via") or failure.get("via")
    recovered = response.ok and session is not None and isinstance(via, str) and via.lower().startswith("table")
    if recovered:
        merged = {**failure, **diagnostics, "via": via}
        hint = derive_latest_session_hint(
            fault,
            status=response.status,
            hint=payload_hint,
            circuit_breaker=merged.get("circuitBreaker"),
        )
        if any(failure.get(key) for key in ("error", "supabaseError", "fallbackError", "hint")) or diagnostics.get(
            "hint"
        ):
            _logger.info("Latest-session API recovered via table fallback: %s", redact_for_log(merged))
        return TierResult.success(session, source=API_SOURCE, hint=hint)

    has_problem = not response.ok or any(
        failure.get(key) for key in ("error", "supabaseError", "fallbackError", "hint")
    )
    if has_problem:
        hint = derive_latest_session_hint(
            fault,
            status=response.status,
            hint=payload_hint,
            circuit_breaker=failure.get("circuitBreaker"),
        )
        _logger.warning("Latest-session API failed: %s", redact_for_log(failure))
        if session is not None:
            return TierResult.success(session, source=API_SOURCE, hint=hint)
        return TierResult.unavailable(source=API_SOURCE, hint=hint, fault=failure)

    if session is not None:
        return TierResult.success(session, source=API_SOURCE)
    return TierResult.unavailable(source=API_SOURCE)


async def fetch_latest_session_via_rpc(
    transport: Transport,
    game_id: str,
    owner_id: str | None = None,
) -> TierResult[SessionRow]:
    """Call ``fetch_latest_rank_session_v2`` directly."""

    params: dict[str, Any] = {"p_game_id": game_id}
    if owner_id:
        params["p_owner_id"] = owner_id

    try:
        response = await transport.rpc(LATEST_SESSION_PROCEDURE, params)
    except RankMatchTransportError as exc:
        _logger.warning("%s request failed: %s", LATEST_SESSION_PROCEDURE, exc)
        return TierResult.unavailable(source=LATEST_SESSION_PROCEDURE, fault={"message": str(exc)})

    fault = response.fault
    if fault is None:
        session = map_session_row(first_row(response.data))
        if session is not None:
            return TierResult.success(session, source=LATEST_SESSION_PROCEDURE)
        _logger.debug("%s returned no session for game %s", LATEST_SESSION_PROCEDURE, game_id)
        return TierResult.unavailable(source=LATEST_SESSION_PROCEDURE)

    if fault.code.upper() == "PGRST203":
        _logger.warning(
            "%s is ambiguous (PGRST203); drop the legacy overloads: %s",
            LATEST_SESSION_PROCEDURE,
            fault.message,
        )
    elif not is_procedure_missing(fault):
        _logger.warning("%s failed: code=%s message=%s", LATEST_SESSION_PROCEDURE, fault.code, fault.message)

    hint = derive_latest_session_hint(fault)
    if hint is None:
        return TierResult.unavailable(source=LATEST_SESSION_PROCEDURE)
    return TierResult.unavailable(source=LATEST_SESSION_PROCEDURE, hint=hint, fault=fault.as_dict())

