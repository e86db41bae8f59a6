"""Async-fill assignment engine.

When a match is not realtime-coordinated ("off" mode), vacant seats of the
host's role are filled with stand-ins drawn from the participant pool.  This
module computes seat eligibility (:func:`build_async_fill_snapshot`) and
performs the substitution (:func:`apply_async_fill_standins`).

Everything here is pure: the engine proposes a roster and a session-meta
patch, the store decides whether to write it.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, NamedTuple

from rankmatch.ingestion.normalize import optional_trimmed, role_key, trimmed
from rankmatch.ingestion.sanitize import sanitize_participant_pool, sort_roster
from rankmatch.models._base import UNASSIGNED_ROLE
from rankmatch.models.roster import AsyncFillSnapshot, Candidate, RosterSlot, SeatAssignment, SeatLimit
from rankmatch.models.session import SessionMeta

_logger = logging.getLogger(__name__)

REALTIME_OFF = "off"
DEFAULT_HOST_ROLE_LIMIT = 3

#: Seat role keys that accept any candidate role.
GENERIC_ROLE_KEYS: frozenset[str] = frozenset({"", UNASSIGNED_ROLE, "none", "any"})

STANDIN_HERO_NAME = "Async stand-in"
STANDIN_STATUS = "standin"
MATCH_SOURCE_POOL = "participant_pool"
MATCH_SOURCE_PLACEHOLDER = "async_standin_placeholder"


def normalize_realtime_mode(value: Any) -> str:
    key = role_key(value)
    return key or REALTIME_OFF


def _seat_assignment(slot: RosterSlot) -> SeatAssignment:
    return SeatAssignment(
        slot_index=slot.slot_index,
        slot_id=slot.slot_id,
        owner_id=slot.owner_id or None,
        hero_id=slot.hero_id or None,
        hero_name=slot.hero_name or None,
        role=slot.role or None,
        ready=slot.ready,
        joined_at=slot.joined_at,
    )


def resolve_host_role(roster: Sequence[RosterSlot], host_owner_id: str | None) -> str:
    """Role of the host's seat, else the first non-empty role."""
    owner = trimmed(host_owner_id)
    if owner:
        for slot in roster:
            if slot.owner_id == owner and slot.role:
                return slot.role
    for slot in roster:
        if slot.role:
            return slot.role
    return UNASSIGNED_ROLE


def seat_limit(total: int, cap: int | None, *, default_cap: int = DEFAULT_HOST_ROLE_LIMIT) -> int:
    """``max(1, min(cap or default, total))``."""
    limit = cap if cap is not None and cap > 0 else default_cap
    return max(1, min(limit, total))


def build_async_fill_snapshot(
    roster: Sequence[RosterSlot],
    participant_pool: Iterable[Candidate | Mapping[str, Any]],
    *,
    realtime_mode: Any = REALTIME_OFF,
    host_owner_id: str | None = None,
    host_role_limit: int | None = None,
    now_ms: int,
    default_cap: int = DEFAULT_HOST_ROLE_LIMIT,
) -> AsyncFillSnapshot | None:
    """Compute seat eligibility and the stand-in queue for the host role.

    Returns ``None`` for realtime-coordinated matches.  ``fill_queue`` holds
    at most one candidate per pending seat, ordered by owner id.
    """

    if normalize_realtime_mode(realtime_mode) != REALTIME_OFF:
        return None

    owner = optional_trimmed(host_owner_id)
    ordered = sorted(roster, key=lambda slot: slot.slot_index)
    if not ordered:
        return AsyncFillSnapshot(
            mode=REALTIME_OFF,
            host_owner_id=owner,
            seat_limit=SeatLimit(allowed=seat_limit(0, host_role_limit, default_cap=default_cap), total=0),
            generated_at=now_ms,
        )

    host_role = resolve_host_role(ordered, owner)
    host_key = role_key(host_role)
    host_seats = [slot for slot in ordered if role_key(slot.role) == host_key]
    total = len(host_seats)
    allowed = seat_limit(total, host_role_limit, default_cap=default_cap)

    eligible = host_seats[:allowed]
    overflow = host_seats[allowed:]
    pending = [slot.slot_index for slot in eligible if slot.is_vacant]
    seated = {slot.owner_id for slot in ordered if slot.owner_id}

    pool = [
        candidate
        for candidate in sanitize_participant_pool(list(participant_pool), host_role)
        if candidate.role_key == host_key and candidate.owner_id not in seated
    ]

    queue: list[Candidate] = []
    if pending and pool:
        queue = sorted(pool, key=lambda candidate: candidate.owner_id)[: len(pending)]

    return AsyncFillSnapshot(
        mode=REALTIME_OFF,
        host_owner_id=owner,
        host_role=host_role,
        seat_limit=SeatLimit(allowed=allowed, total=total),
        seat_indexes=[slot.slot_index for slot in eligible],
        pending_seat_indexes=pending,
        assigned=[_seat_assignment(slot) for slot in eligible],
        overflow=[_seat_assignment(slot) for slot in overflow],
        fill_queue=queue,
        pool_size=len(pool),
        generated_at=now_ms,
    )


def derive_vacancy_indexes(async_fill: AsyncFillSnapshot | None, roster: Sequence[RosterSlot]) -> list[int]:
    """Pending seats plus eligible seats that have no owner, ascending."""
    if async_fill is None:
        return []
    by_index = {slot.slot_index: slot for slot in roster}
    vacancies = {index for index in async_fill.pending_seat_indexes if index >= 0}
    for index in async_fill.seat_indexes:
        seat = by_index.get(index)
        if index >= 0 and (seat is None or seat.is_vacant):
            vacancies.add(index)
    return sorted(vacancies)


class StandinPriority(NamedTuple):
    """Ordering key for stand-in selection; lower is better."""

    role_penalty: int
    stats_penalty: int
    stat_diff: float
    queue_index: int


def standin_priority(seat: RosterSlot, candidate: Candidate, queue_index: int) -> StandinPriority:
    """Rank *candidate* for *seat*.

    Role penalty is 0 for a matching (or generic) seat role, 1 for another
    role and 2 when the candidate has no role.  Stats penalty is 0 when both
    sides carry a rating, 1 when only scores compare and 2 otherwise.
    """

    seat_key = role_key(seat.role)
    candidate_key = role_key(candidate.role)
    role_penalty = 0
    if seat_key not in GENERIC_ROLE_KEYS:
        if not candidate_key:
            role_penalty = 2
        elif candidate_key != seat_key:
            role_penalty = 1

    stats_penalty = 2
    diff = math.inf
    if seat.rating is not None and candidate.rating is not None:
        stats_penalty = 0
        diff = abs(seat.rating - candidate.rating)
    elif seat.score is not None and candidate.score is not None:
        stats_penalty = 1
        diff = abs(seat.score - candidate.score)

    return StandinPriority(role_penalty, stats_penalty, diff, queue_index)


@dataclasses.dataclass(frozen=True)
class StandinResult:
    roster: list[RosterSlot]
    session_meta: SessionMeta | None
    hero_map: dict[str, dict[str, Any]]
    applied: bool = False
    collaborators: list[str] = dataclasses.field(default_factory=list)


def _placeholder_seat(slot_index: int, role: str) -> RosterSlot:
    return RosterSlot(slot_index=slot_index, role=role, status="vacant")


def _fill_seat(seat: RosterSlot, candidate: Candidate) -> RosterSlot:
    is_placeholder = candidate.placeholder
    owner_id = candidate.owner_id if candidate.owner_id and not is_placeholder else seat.owner_id
    placeholder_owner_id = (
        candidate.placeholder_owner_id
        or seat.placeholder_owner_id
        or (candidate.owner_id if is_placeholder and candidate.owner_id else None)
    )
    return seat.model_copy(
        update={
            "owner_id": owner_id or placeholder_owner_id or "",
            "placeholder_owner_id": placeholder_owner_id,
            "hero_id": candidate.hero_id or seat.hero_id,
            "hero_name": candidate.hero_name or seat.hero_name or STANDIN_HERO_NAME,
            "role": seat.role or candidate.role or UNASSIGNED_ROLE,
            "ready": True,
            "joined_at": candidate.joined_at or seat.joined_at,
            "standin": True,
            "match_source": MATCH_SOURCE_PLACEHOLDER if is_placeholder else candidate.match_source or MATCH_SOURCE_POOL,
            "score": candidate.score if candidate.score is not None else seat.score,
            "rating": candidate.rating if candidate.rating is not None else seat.rating,
            "battles": candidate.battles if candidate.battles is not None else seat.battles,
            "win_rate": candidate.win_rate if candidate.win_rate is not None else seat.win_rate,
            "status": candidate.status or seat.status or STANDIN_STATUS,
            "standin_placeholder": is_placeholder or seat.standin_placeholder,
        }
    )


def apply_async_fill_standins(
    roster: Sequence[RosterSlot],
    session_meta: SessionMeta | None,
    hero_map: Mapping[str, dict[str, Any]] | None = None,
) -> StandinResult:
    """Fill vacant eligible seats from the async-fill queue.

    Each vacant seat (ascending index) takes the unused queue candidate with
    the lowest :class:`StandinPriority`.  Seats with no roster row yet get a
    placeholder row.  Seats left unfilled stay pending.  Re-applying on a
    filled roster with a drained queue returns ``applied=False``.
    """

    unchanged = StandinResult(list(roster), session_meta, dict(hero_map or {}))
    if session_meta is None:
        return unchanged
    async_fill = session_meta.async_fill
    if async_fill is None or normalize_realtime_mode(async_fill.mode) != REALTIME_OFF:
        return unchanged

    queue = [
        (index, candidate)
        for index, candidate in enumerate(async_fill.fill_queue)
        if candidate.owner_id or candidate.hero_id or candidate.hero_name
    ]
    if not queue:
        return unchanged

    vacancies = derive_vacancy_indexes(async_fill, roster)
    if not vacancies:
        return unchanged

    seats: list[RosterSlot] = list(roster)
    position_by_index = {slot.slot_index: position for position, slot in enumerate(seats)}
    host_role = trimmed(async_fill.host_role) or UNASSIGNED_ROLE
    next_hero_map = {key: dict(value) for key, value in (hero_map or {}).items()}
    collaborators = [slot.owner_id for slot in seats if slot.owner_id]
    used: set[int] = set()
    assigned_indexes: list[int] = []
    assigned_entries: list[SeatAssignment] = []

    for slot_index in vacancies:
        position = position_by_index.get(slot_index)
        if position is None:
            seats.append(_placeholder_seat(slot_index, host_role))
            position = len(seats) - 1
            position_by_index[slot_index] = position
        seat = seats[position]
        if seat.owner_id:
            continue

        best: tuple[StandinPriority, int, Candidate] | None = None
        for queue_index, candidate in queue:
            if queue_index in used:
                continue
            priority = standin_priority(seat, candidate, queue_index)
            if best is None or priority < best[0]:
                best = (priority, queue_index, candidate)
        if best is None:
            continue

        _, queue_index, candidate = best
        used.add(queue_index)
        filled = _fill_seat(seat, candidate)
        seats[position] = filled
        assigned_indexes.append(slot_index)
        if candidate.owner_id and not candidate.placeholder and candidate.owner_id not in collaborators:
            collaborators.append(candidate.owner_id)
        if candidate.hero_id and candidate.hero_name:
            existing = next_hero_map.get(candidate.hero_id, {})
            next_hero_map[candidate.hero_id] = {**existing, "name": existing.get("name") or candidate.hero_name}

        assigned_entries.append(
            SeatAssignment(
                slot_index=slot_index,
                slot_id=filled.slot_id,
                owner_id=filled.owner_id or None,
                hero_id=filled.hero_id or None,
                hero_name=filled.hero_name or None,
                role=filled.role or None,
                ready=True,
                joined_at=filled.joined_at,
                score=filled.score,
                rating=filled.rating,
                match_source=filled.match_source or None,
                placeholder=filled.standin_placeholder,
            )
        )

    if not assigned_entries:
        return unchanged

    pending = (set(async_fill.pending_seat_indexes) | set(vacancies)) - set(assigned_indexes)
    next_fill = async_fill.model_copy(
        update={
            "pending_seat_indexes": sorted(pending),
            "assigned": [*async_fill.assigned, *assigned_entries],
            "fill_queue": [candidate for index, candidate in queue if index not in used],
        },
        deep=True,
    )
    next_meta = session_meta.model_copy(update={"async_fill": next_fill})
    _logger.debug("Assigned %d stand-in(s) to seats %s", len(assigned_entries), assigned_indexes)
    return StandinResult(
        roster=sort_roster(seats),
        session_meta=next_meta,
        hero_map=next_hero_map,
        applied=True,
        collaborators=collaborators,
    )


def build_role_averages(roster: Sequence[RosterSlot]) -> dict[str, dict[str, float | None]]:
    """Mean score and rating of seated owners, per role key."""
    totals: dict[str, list[float]] = {}
    for slot in roster:
        key = role_key(slot.role)
        if not key or not slot.owner_id:
            continue
        aggregate = totals.setdefault(key, [0.0, 0.0, 0.0, 0.0])
        if slot.score is not None:
            aggregate[0] += slot.score
            aggregate[1] += 1
        if slot.rating is not None:
            aggregate[2] += slot.rating
            aggregate[3] += 1
    return {
        key: {
            "score": round(values[0] / values[1]) if values[1] else None,
            "rating": round(values[2] / values[3]) if values[3] else None,
        }
        for key, values in totals.items()
    }


def build_seat_requests(
    roster: Sequence[RosterSlot],
    async_fill: AsyncFillSnapshot | None,
    host_role: str = "",
) -> list[dict[str, Any]]:
    """Describe vacant seats for the remote stand-in candidate query.

    A generic seat role is sent as ``None``.  Reference stats come from the
    seat itself, else from the average of the seat's role.
    """

    vacancies = derive_vacancy_indexes(async_fill, roster)
    if async_fill is None or not vacancies:
        return []

    by_index = {slot.slot_index: slot for slot in roster}
    averages = build_role_averages(roster)
    requests: list[dict[str, Any]] = []
    for slot_index in vacancies:
        seat = by_index.get(slot_index)
        seat_role = (seat.role if seat is not None else "") or async_fill.host_role or host_role or UNASSIGNED_ROLE
        key = role_key(seat_role)
        average = averages.get(key, {})
        score = seat.score if seat is not None and seat.score is not None else average.get("score")
        rating = seat.rating if seat is not None and seat.rating is not None else average.get("rating")
        requests.append(
            {
                "slot_index": slot_index,
                "role": None if key in GENERIC_ROLE_KEYS else seat_role,
                "score": score,
                "rating": rating,
            }
        )
    return requests
