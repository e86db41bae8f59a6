"""Remote reconciliation.

:func:`load_snapshot` reads everything the backend knows about a match and
returns it as one canonical :class:`~rankmatch.models.bundle.SnapshotBundle`.

Sources are tried in tiers:

1. the consolidated ``fetch_rank_match_ready_snapshot`` procedure;
2. the per-table roster query, joined client-side with room, session meta
   and turn lookups;
3. for the latest session, the server-proxied API when running
   interactively, then the ``fetch_latest_rank_session_v2`` procedure.

Once canonical state is built, vacant async-fill seats are filled from the
queue; when the queue is empty a single remote candidate query is made
before applying the engine again.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from rankmatch._api._common import HINT_LATEST_SESSION_FALLBACK
from rankmatch._api.sessions import fetch_latest_session_via_api, fetch_latest_session_via_rpc
from rankmatch._api.snapshot import fetch_ready_snapshot
from rankmatch._api.standins import fetch_standin_queue
from rankmatch._api.tables import (
    ROSTER_TABLE,
    TURNS_TABLE,
    fetch_latest_room,
    fetch_room,
    fetch_roster_rows,
    fetch_session_meta_row,
    fetch_turn_rows,
)
from rankmatch._transport import Transport
from rankmatch.assignment import (
    REALTIME_OFF,
    apply_async_fill_standins,
    build_seat_requests,
)
from rankmatch.config import RankMatchConfig
from rankmatch.exceptions import LatestSessionUnavailableError, RankMatchRemoteError, RankMatchTransportError
from rankmatch.ingestion.normalize import normalize_timestamp_ms, optional_trimmed, role_key, trimmed
from rankmatch.ingestion.rows import (
    DEFAULT_TEMPLATE_SOURCE,
    build_hero_map,
    build_hero_options,
    build_participant_pool,
    build_role_groups,
    build_slot_layout,
    empty_history,
    map_history_rows,
    map_room,
    map_roster_rows,
    map_session_meta_row,
    map_session_row,
    select_template_rows,
)
from rankmatch.ingestion.sanitize import sanitize_fill_queue
from rankmatch.ingestion.tiers import TierOutcome, TierResult, run_tiers
from rankmatch.models.bundle import SnapshotBundle
from rankmatch.models.match import MatchInfo, MatchSnapshot, Room
from rankmatch.models.roster import RosterSlot
from rankmatch.models.session import SessionHistory, SessionMeta, SessionRow
from rankmatch.models.template import SlotTemplate

_logger = logging.getLogger(__name__)

MATCH_SOURCE = "match-realtime"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _envelope_rows(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]


async def _roster_from_tables(transport: Transport, game_id: str) -> TierResult[dict[str, Any]]:
    rows = await fetch_roster_rows(transport, game_id)
    return TierResult.success({"roster": rows}, source=ROSTER_TABLE)


async def find_latest_session(
    transport: Transport,
    game_id: str,
    *,
    interactive: bool,
    owner_id: str | None = None,
) -> TierOutcome[SessionRow]:
    """Resolve the latest session of a game.

    Interactive callers go through the server-proxied API first; every
    caller ends with the direct procedure call.
    """

    strategies = []
    if interactive:
        strategies.append(functools.partial(fetch_latest_session_via_api, transport, game_id, owner_id))
    strategies.append(functools.partial(fetch_latest_session_via_rpc, transport, game_id, owner_id))
    return await run_tiers(strategies)


def _raise_if_session_unavailable(lookup: TierOutcome[SessionRow]) -> None:
    if lookup.value is not None or not lookup.has_diagnostics:
        return
    raise LatestSessionUnavailableError(
        "Could not load the match session.",
        code="latest_session_unavailable",
        hint=lookup.hint or HINT_LATEST_SESSION_FALLBACK,
        source=lookup.failed_source or "latest-session",
        remote_error=lookup.fault,
    )


async def _resolve_room(
    transport: Transport,
    game_id: str,
    envelope_room: Any,
    target_room_id: str | None,
) -> Room | None:
    if isinstance(envelope_room, Mapping):
        return map_room(envelope_room)
    if target_room_id:
        room = map_room(await fetch_room(transport, target_room_id))
        if room is not None:
            return room
    return map_room(await fetch_latest_room(transport, game_id))


async def load_session_history(
    transport: Transport,
    session_id: str | None,
    *,
    limit: int,
    now_ms: int,
) -> SessionHistory:
    """Most recent *limit* turns of a session.

    Failures are recorded in ``diagnostics`` instead of being raised.
    """

    if not session_id:
        return empty_history(None, now_ms=now_ms, diagnostics={"error": "missing_session_id"})
    try:
        rows = await fetch_turn_rows(transport, session_id, limit=limit)
    except RankMatchRemoteError as exc:
        _logger.error("Turn history query for session %s failed: %s", session_id, exc)
        return empty_history(
            session_id,
            now_ms=now_ms,
            diagnostics={"error": exc.remote_error or {"message": str(exc)}, "source": TURNS_TABLE},
        )
    except RankMatchTransportError as exc:
        _logger.error("Turn history request for session %s failed: %s", session_id, exc)
        return empty_history(
            session_id,
            now_ms=now_ms,
            diagnostics={"error": {"message": str(exc)}, "source": TURNS_TABLE},
        )
    return map_history_rows(rows, session_id=session_id, limit=limit, now_ms=now_ms)


async def _apply_standins(
    transport: Transport,
    *,
    game_id: str,
    room_id: str | None,
    roster: list[RosterSlot],
    session_meta: SessionMeta | None,
    hero_map: dict[str, dict[str, Any]],
) -> tuple[list[RosterSlot], SessionMeta | None, dict[str, dict[str, Any]]]:
    result = apply_async_fill_standins(roster, session_meta, hero_map)
    if result.applied:
        return result.roster, result.session_meta, result.hero_map

    async_fill = session_meta.async_fill if session_meta is not None else None
    if session_meta is None or async_fill is None:
        return roster, session_meta, hero_map
    if role_key(async_fill.mode) not in ("", REALTIME_OFF) or async_fill.fill_queue:
        return roster, session_meta, hero_map

    seat_requests = build_seat_requests(roster, async_fill, async_fill.host_role or "")
    if not seat_requests:
        return roster, session_meta, hero_map

    queue = await fetch_standin_queue(
        transport,
        game_id=game_id,
        room_id=room_id,
        seat_requests=seat_requests,
        exclude_owner_ids=[slot.owner_id for slot in roster if slot.owner_id],
    )
    if not queue:
        return roster, session_meta, hero_map

    patched_fill = async_fill.model_copy(update={"fill_queue": sanitize_fill_queue(queue)}, deep=True)
    patched_meta = session_meta.model_copy(update={"async_fill": patched_fill})
    reapplied = apply_async_fill_standins(roster, patched_meta, hero_map)
    if reapplied.applied:
        return reapplied.roster, reapplied.session_meta, reapplied.hero_map
    return roster, patched_meta, hero_map


async def load_snapshot(
    transport: Transport,
    game_id: str,
    *,
    config: RankMatchConfig,
    owner_id: str | None = None,
    now: Callable[[], int] = _now_ms,
) -> SnapshotBundle | None:
    """Reconcile the remote state of one match.

    Parameters
    ----------
    transport : Transport
        Backend transport.
    game_id : str
        Game whose match is loaded.  A blank id returns ``None``.
    config : RankMatchConfig
        Supplies ``interactive`` and ``history_limit``.
    owner_id : str or None
        Narrows the latest-session lookup to sessions owned by this user.
    now : callable
        Clock returning epoch milliseconds.

    Returns
    -------
    SnapshotBundle or None
        The canonical bundle.  A match with no roster yields a bundle that
        only carries the latest session id.

    Raises
    ------
    RankMatchRemoteError
        A classified backend failure, raised only after the fallback tiers
        were exhausted.  :class:`LatestSessionUnavailableError` when no
        roster exists and the session lookup reported a problem.
    RankMatchTransportError
        The backend could not be reached at all.
    """

    game_key = trimmed(game_id)
    if not game_key:
        return None

    source = await run_tiers(
        [
            functools.partial(fetch_ready_snapshot, transport, game_key),
            functools.partial(_roster_from_tables, transport, game_key),
        ]
    )
    envelope = source.value or {}
    _logger.debug("Roster for game %s loaded from %s", game_key, source.source)

    roster_rows = _envelope_rows(envelope.get("roster"))
    meta_envelope = envelope.get("session_meta") if isinstance(envelope.get("session_meta"), Mapping) else None
    session = map_session_row(envelope.get("session"))

    looked_up = False
    if not roster_rows:
        looked_up = True
        lookup = await find_latest_session(transport, game_key, interactive=config.interactive, owner_id=owner_id)
        if not (meta_envelope and meta_envelope.get("async_fill_snapshot")):
            _raise_if_session_unavailable(lookup)
            latest = lookup.value
            return SnapshotBundle(session_id=latest.id if latest is not None else None)
        if session is None:
            session = lookup.value

    selection = select_template_rows(roster_rows, version_override=envelope.get("slot_template_version"))
    roster = map_roster_rows(selection.rows)
    hero_map = build_hero_map(selection.rows)
    first = selection.rows[0] if selection.rows else {}

    template_source = (
        trimmed(envelope.get("slot_template_source"))
        or trimmed(first.get("slot_template_source"))
        or DEFAULT_TEMPLATE_SOURCE
    )
    if envelope.get("slot_template_updated_at") is not None:
        template_updated_at = normalize_timestamp_ms(envelope["slot_template_updated_at"]) or now()
    else:
        template_updated_at = selection.updated_at or now()
    match_instance_id = optional_trimmed(first.get("match_instance_id"))

    room = await _resolve_room(transport, game_key, envelope.get("room"), selection.room_id)
    room_id = (room.id if room is not None else None) or selection.room_id

    if session is None and not looked_up:
        lookup = await find_latest_session(transport, game_key, interactive=config.interactive, owner_id=owner_id)
        _raise_if_session_unavailable(lookup)
        session = lookup.value
    session_id = session.id if session is not None else None

    session_meta = map_session_meta_row(meta_envelope, now_ms=now()) if meta_envelope is not None else None
    if session_meta is None and session_id:
        session_meta = map_session_meta_row(await fetch_session_meta_row(transport, session_id), now_ms=now())

    history = None
    if session_id:
        history = await load_session_history(transport, session_id, limit=config.history_limit, now_ms=now())

    roster, session_meta, hero_map = await _apply_standins(
        transport,
        game_id=game_key,
        room_id=room_id,
        roster=roster,
        session_meta=session_meta,
        hero_map=hero_map,
    )

    groups = build_role_groups(roster)
    layout = build_slot_layout(roster)
    match_mode = (room.mode if room is not None else "") or (session.mode if session is not None else "")
    match_info = MatchInfo(
        instance_id=match_instance_id,
        match_code=room.code if room is not None else "",
        match_type=(room.mode if room is not None else "") or "standard",
        blind_mode=room.blind_mode if room is not None else False,
        max_window=room.score_window if room is not None else None,
        hero_map=hero_map,
        assignments=groups,
        roles=groups,
        slot_layout=layout,
        rooms=[room] if room is not None else [],
        turn_timer=session_meta.turn_timer if session_meta is not None else None,
        source=MATCH_SOURCE,
    )

    return SnapshotBundle(
        roster=roster,
        participant_pool=build_participant_pool(roster),
        hero_options=build_hero_options(roster),
        hero_map=hero_map,
        slot_template=SlotTemplate(
            slots=layout,
            roles=groups,
            version=selection.version,
            source=template_source,
            updated_at=template_updated_at,
        ),
        match_snapshot=MatchSnapshot(match=match_info, mode=match_mode, created_at=template_updated_at),
        session_meta=session_meta,
        session_history=history,
        host_owner_id=room.owner_id if room is not None else None,
        host_role_limit=room.host_role_limit if room is not None else None,
        realtime_mode=(room.realtime_mode if room is not None else "") or None,
        match_mode=match_mode,
        slot_template_version=selection.version,
        slot_template_updated_at=template_updated_at,
        match_instance_id=match_instance_id,
        room=room,
        room_id=room_id,
        session_id=session_id,
    )
