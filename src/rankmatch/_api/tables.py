"""Per-table queries used when the snapshot procedure is unavailable.

Endpoints:
  - /rest/v1/rank_match_roster
  - /rest/v1/rank_rooms
  - /rest/v1/rank_session_meta
  - /rest/v1/rank_turns
"""

from __future__ import annotations

import logging
from typing import Any

from rankmatch._api._common import first_row, raise_for_fault, rows_of
from rankmatch._transport import TableQuery, Transport

_logger = logging.getLogger(__name__)

ROSTER_TABLE = "rank_match_roster"
ROOMS_TABLE = "rank_rooms"
SESSION_META_TABLE = "rank_session_meta"
TURNS_TABLE = "rank_turns"

ROSTER_COLUMNS = (
    "id, match_instance_id, room_id, slot_index, slot_id, role, owner_id, hero_id, hero_name, "
    "hero_summary, ready, joined_at, slot_template_version, slot_template_source, "
    "slot_template_updated_at, updated_at, created_at, game_id, score, rating, battles, win_rate, "
    "status, standin, match_source"
)
ROOM_COLUMNS = (
    "id, owner_id, code, status, mode, realtime_mode, host_role_limit, blind_mode, score_window, "
    "updated_at, game_id"
)
SESSION_META_COLUMNS = (
    "session_id, selected_time_limit_seconds, time_vote, drop_in_bonus_seconds, turn_state, "
    "async_fill_snapshot, realtime_mode, extras, updated_at"
)
TURN_COLUMNS = "id, session_id, idx, role, public, is_visible, content, summary_payload, created_at"


async def fetch_roster_rows(transport: Transport, game_id: str) -> list[dict[str, Any]]:
    """All roster rows of a game, newest template version first.

    Raises the classified :class:`~rankmatch.exceptions.RankMatchRemoteError`
    when the table query fails.
    """
    query = (
        TableQuery(ROSTER_TABLE, ROSTER_COLUMNS)
        .eq("game_id", game_id)
        .order_by("slot_template_version", descending=True)
        .order_by("slot_index")
    )
    response = await transport.select(query)
    raise_for_fault(response, operation=ROSTER_TABLE, endpoint=f"/rest/v1/{ROSTER_TABLE}")
    return rows_of(response.data)


async def fetch_room(transport: Transport, room_id: str) -> dict[str, Any] | None:
    query = TableQuery(ROOMS_TABLE, ROOM_COLUMNS).eq("id", room_id).limited(1)
    response = await transport.select(query)
    if response.fault is not None:
        _logger.debug("Room lookup for %s failed: %s", room_id, response.fault.message)
        return None
    return first_row(response.data)


async def fetch_latest_room(transport: Transport, game_id: str) -> dict[str, Any] | None:
    query = (
        TableQuery(ROOMS_TABLE, ROOM_COLUMNS)
        .eq("game_id", game_id)
        .order_by("updated_at", descending=True)
        .limited(1)
    )
    response = await transport.select(query)
    if response.fault is not None:
        _logger.debug("Latest room lookup for game %s failed: %s", game_id, response.fault.message)
        return None
    return first_row(response.data)


async def fetch_session_meta_row(transport: Transport, session_id: str) -> dict[str, Any] | None:
    query = TableQuery(SESSION_META_TABLE, SESSION_META_COLUMNS).eq("session_id", session_id).limited(1)
    response = await transport.select(query)
    if response.fault is not None:
        _logger.debug("Session meta lookup for %s failed: %s", session_id, response.fault.message)
        return None
    return first_row(response.data)


async def fetch_turn_rows(transport: Transport, session_id: str, *, limit: int) -> list[dict[str, Any]]:
    """The newest ``limit + 1`` turns of a session, returned oldest first.

    The extra row lets the caller detect truncation.
    """
    query = (
        TableQuery(TURNS_TABLE, TURN_COLUMNS)
        .eq("session_id", session_id)
        .order_by("idx", descending=True)
        .limited(limit + 1)
    )
    response = await transport.select(query)
    raise_for_fault(response, operation=TURNS_TABLE, endpoint=f"/rest/v1/{TURNS_TABLE}")
    return list(reversed(rows_of(response.data)))
