"""Remote stand-in candidate query.

Endpoint:
  - /api/rank/async-standins
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from rankmatch._api._common import rows_of
from rankmatch._transport import Transport
from rankmatch.exceptions import RankMatchTransportError

_logger = logging.getLogger(__name__)

ASYNC_STANDINS_PATH = "/api/rank/async-standins"


async def fetch_standin_queue(
    transport: Transport,
    *,
    game_id: str,
    room_id: str | None,
    seat_requests: Sequence[dict[str, Any]],
    exclude_owner_ids: Sequence[str] = (),
) -> list[dict[str, Any]] | None:
    """Ranked substitute candidates for the given vacant seats.

    Returns ``None`` when the request fails and an empty list when the
    server has no candidates.  Failures are logged, never raised.
    """

    payload: dict[str, Any] = {
        "game_id": game_id,
        "room_id": room_id,
        "seat_requests": list(seat_requests),
    }
    if exclude_owner_ids:
        payload["exclude_owner_ids"] = list(exclude_owner_ids)

    try:
        response = await transport.post_api(ASYNC_STANDINS_PATH, payload)
    except RankMatchTransportError as exc:
        _logger.error("Async stand-in request failed: %s", exc)
        return None

    if response.fault is not None:
        _logger.warning(
            "Async stand-in request failed: status=%s error=%s hint=%s",
            response.status,
            response.fault.code or response.fault.message,
            response.fault.hint or None,
        )
        return None

    data = response.data if isinstance(response.data, dict) else {}
    queue = rows_of(data.get("queue")) if isinstance(data.get("queue"), list) else []
    _logger.debug("Async stand-in query returned %d candidate(s)", len(queue))
    return queue
