"""Consolidated ready-snapshot procedure.

Endpoint:
  - /rest/v1/rpc/fetch_rank_match_ready_snapshot

One call returns the roster together with the room, the session and the
session meta.  Deployments that never installed the procedure fall back to
the per-table queries in :mod:`rankmatch._api.tables`; only definition
defects of an installed procedure are fatal.
"""

from __future__ import annotations

import logging
from typing import Any

from rankmatch._api._common import classify_remote_error, first_row
from rankmatch._transport import Transport
from rankmatch.exceptions import (
    OrderedSetAggregateError,
    RankMatchTransportError,
    ReturnTypeMismatchError,
    SqlSyntaxError,
)
from rankmatch.ingestion.tiers import TierResult

_logger = logging.getLogger(__name__)

SNAPSHOT_PROCEDURE = "fetch_rank_match_ready_snapshot"
_ENDPOINT = f"/rest/v1/rpc/{SNAPSHOT_PROCEDURE}"

_FATAL_ERRORS = (ReturnTypeMismatchError, SqlSyntaxError, OrderedSetAggregateError)


async def fetch_ready_snapshot(transport: Transport, game_id: str) -> TierResult[dict[str, Any]]:
    """Call the snapshot procedure and unwrap its envelope.

    Returns ``unavailable`` when the procedure is missing, fails for a
    non-fatal reason or returns nothing.
    """

    try:
        response = await transport.rpc(SNAPSHOT_PROCEDURE, {"p_game_id": game_id})
    except RankMatchTransportError as exc:
        _logger.warning("Snapshot procedure request failed: %s", exc)
        return TierResult.unavailable(source=SNAPSHOT_PROCEDURE)

    if response.fault is not None:
        error = classify_remote_error(response.fault, operation=SNAPSHOT_PROCEDURE, endpoint=_ENDPOINT)
        if isinstance(error, _FATAL_ERRORS):
            _logger.error("Snapshot procedure is broken: %s", error)
            return TierResult.failure(error, source=SNAPSHOT_PROCEDURE)
        _logger.debug(
            "Snapshot procedure unavailable (code=%s status=%s)",
            response.fault.code,
            response.fault.status,
        )
        return TierResult.unavailable(source=SNAPSHOT_PROCEDURE)

    envelope = first_row(response.data)
    if envelope is None:
        return TierResult.unavailable(source=SNAPSHOT_PROCEDURE)
    return TierResult.success(envelope, source=SNAPSHOT_PROCEDURE)
