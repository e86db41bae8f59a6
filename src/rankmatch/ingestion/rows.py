"""Remote row mapping.

Turns the rows returned by the backend tables and procedures into
canonical models.  The backend speaks snake_case; every value still goes
through the coercers of :mod:`rankmatch.ingestion.normalize` because older
deployments send numbers as strings and timestamps in mixed formats.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from rankmatch.ingestion.normalize import (
    as_mapping,
    first_present,
    normalize_timestamp_ms,
    optional_trimmed,
    safe_bool,
    safe_float,
    safe_int,
    trimmed,
)
from rankmatch.ingestion.sanitize import (
    sanitize_history_turns,
    sanitize_participant_pool,
    sanitize_roster,
    sanitize_roster_slot,
    sanitize_session_meta,
)
from rankmatch.models._base import UNASSIGNED_ROLE
from rankmatch.models.match import Room
from rankmatch.models.roster import Candidate, RosterSlot
from rankmatch.models.session import SessionHistory, SessionMeta, SessionRow
from rankmatch.models.template import RoleGroup, RoleMember, SlotLayoutEntry

#: Source recorded on session meta read from the backend.
REMOTE_META_SOURCE = "supabase"
HISTORY_SOURCE = "rank_turns"
DEFAULT_TEMPLATE_SOURCE = "room-stage"

_UNKNOWN_ROOM = "__unknown__"


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------


def map_roster_row(row: Any, fallback_index: int = 0) -> RosterSlot | None:
    """Map one ``rank_match_roster`` row."""
    if not isinstance(row, Mapping):
        return None
    return sanitize_roster_slot(row, fallback_index)


def map_roster_rows(rows: Sequence[Any]) -> list[RosterSlot]:
    return sanitize_roster(list(rows))


def build_hero_map(rows: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Hero id -> summary, falling back to ``{"name": hero_name}``."""
    hero_map: dict[str, dict[str, Any]] = {}
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        hero_id = optional_trimmed(row.get("hero_id"))
        if hero_id is None:
            continue
        summary = as_mapping(row.get("hero_summary"))
        if summary:
            hero_map[hero_id] = summary
            continue
        hero_name = trimmed(row.get("hero_name"))
        if hero_name:
            hero_map[hero_id] = {"name": hero_name}
    return hero_map


def build_role_groups(roster: Sequence[RosterSlot]) -> list[RoleGroup]:
    """Group seats by role label, in first-seen order."""
    groups: dict[str, list[RoleMember]] = {}
    for slot in roster:
        groups.setdefault(slot.role or UNASSIGNED_ROLE, []).append(
            RoleMember(
                owner_id=slot.owner_id,
                hero_id=slot.hero_id,
                hero_name=slot.hero_name,
                ready=slot.ready,
                slot_index=slot.slot_index,
            )
        )
    return [RoleGroup(role=role, slots=len(members), members=members) for role, members in groups.items()]


def build_slot_layout(roster: Sequence[RosterSlot]) -> list[SlotLayoutEntry]:
    return [
        SlotLayoutEntry(
            slot_id=slot.slot_id,
            slot_index=slot.slot_index,
            role=slot.role,
            owner_id=slot.owner_id,
            hero_id=slot.hero_id,
            hero_name=slot.hero_name,
            ready=slot.ready,
            joined_at=slot.joined_at,
        )
        for slot in roster
    ]


def build_participant_pool(roster: Sequence[RosterSlot]) -> list[Candidate]:
    """Seated owners as candidates; vacant seats contribute nothing."""
    return sanitize_participant_pool(
        [
            {
                "owner_id": slot.owner_id,
                "hero_id": slot.hero_id or None,
                "hero_name": slot.hero_name,
                "role": slot.role,
                "joined_at": slot.joined_at,
                "match_source": slot.match_source or ("participant_pool" if slot.standin else ""),
                "score": slot.score,
                "rating": slot.rating,
                "battles": slot.battles,
                "win_rate": slot.win_rate,
                "status": slot.status,
            }
            for slot in roster
        ]
    )


def build_hero_options(roster: Sequence[RosterSlot]) -> list[str]:
    options: list[str] = []
    for slot in roster:
        if slot.hero_id and slot.hero_id not in options:
            options.append(slot.hero_id)
    return options


# ---------------------------------------------------------------------------
# Template selection
# ---------------------------------------------------------------------------


def _row_version(row: Mapping[str, Any]) -> int:
    return safe_int(row.get("slot_template_version")) or 0


def _row_timestamp(row: Mapping[str, Any]) -> int | None:
    for key in ("slot_template_updated_at", "updated_at", "created_at"):
        parsed = normalize_timestamp_ms(row.get(key))
        if parsed is not None:
            return parsed
    return None


@dataclasses.dataclass(frozen=True)
class TemplateSelection:
    """Roster rows of the winning template version and room."""

    rows: list[dict[str, Any]]
    version: int
    room_id: str | None
    updated_at: int | None


def select_template_rows(rows: Sequence[Mapping[str, Any]], *, version_override: Any = None) -> TemplateSelection:
    """Pick the rows of the newest template.

    The highest ``slot_template_version`` wins (an explicit override from the
    snapshot envelope takes precedence when it is higher).  Among rooms on
    that version, the room whose rows were updated last wins; the first room
    seen wins ties.
    """

    best = safe_int(version_override)
    for row in rows:
        version = _row_version(row)
        if best is None or version > best:
            best = version
    best_version = best if best is not None else 0

    by_room: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        if _row_version(row) != best_version:
            continue
        room_key = optional_trimmed(row.get("room_id")) or _UNKNOWN_ROOM
        by_room.setdefault(room_key, []).append(dict(row))

    target_rows: list[dict[str, Any]] = []
    target_room: str | None = None
    target_updated: int | None = None
    for room_key, room_rows in by_room.items():
        stamps = [stamp for stamp in map(_row_timestamp, room_rows) if stamp is not None]
        latest = max(stamps) if stamps else None
        newer = latest is not None and (target_updated is None or latest > target_updated)
        if not target_rows or newer:
            target_rows = room_rows
            target_room = None if room_key == _UNKNOWN_ROOM else room_key
            target_updated = latest

    return TemplateSelection(rows=target_rows, version=best_version, room_id=target_room, updated_at=target_updated)


# ---------------------------------------------------------------------------
# Room and session
# ---------------------------------------------------------------------------


def map_room(row: Any) -> Room | None:
    if not isinstance(row, Mapping):
        return None
    limit = safe_int(first_present(row, "host_role_limit", "hostRoleLimit"))
    updated_at = first_present(row, "updated_at", "updatedAt")
    return Room(
        id=optional_trimmed(row.get("id")),
        code=trimmed(row.get("code")),
        status=trimmed(row.get("status")),
        mode=trimmed(row.get("mode")),
        realtime_mode=trimmed(first_present(row, "realtime_mode", "realtimeMode")),
        host_role_limit=limit,
        blind_mode=safe_bool(first_present(row, "blind_mode", "blindMode")),
        score_window=safe_float(first_present(row, "score_window", "scoreWindow")),
        updated_at=str(updated_at) if updated_at is not None else None,
        owner_id=optional_trimmed(first_present(row, "owner_id", "ownerId")),
    )


def map_session_row(row: Any) -> SessionRow | None:
    """Map a session row; rows without an id are rejected."""
    if not isinstance(row, Mapping):
        return None
    session_id = optional_trimmed(row.get("id"))
    if session_id is None:
        return None
    created_at = first_present(row, "created_at", "createdAt")
    updated_at = first_present(row, "updated_at", "updatedAt")
    return SessionRow(
        id=session_id,
        status=trimmed(row.get("status")),
        owner_id=optional_trimmed(first_present(row, "owner_id", "ownerId")),
        created_at=str(created_at) if created_at is not None else None,
        updated_at=str(updated_at) if updated_at is not None else None,
        mode=trimmed(first_present(row, "match_mode", "matchMode", "mode")),
    )


def map_session_meta_row(row: Any, *, now_ms: int) -> SessionMeta | None:
    """Map a ``rank_session_meta`` row (or the envelope's ``session_meta``).

    Returns ``None`` when the row carries none of the known sections.
    """

    if not isinstance(row, Mapping):
        return None
    updated_at = normalize_timestamp_ms(row.get("updated_at"))
    stamp = {"updatedAt": updated_at} if updated_at is not None else {}
    patch: dict[str, Any] = {}

    time_limit = row.get("selected_time_limit_seconds")
    if time_limit is not None:
        patch["turnTimer"] = {"baseSeconds": safe_float(time_limit) or 0, **stamp, "source": REMOTE_META_SOURCE}
    if row.get("time_vote"):
        patch["vote"] = {"turnTimer": row["time_vote"]}
    bonus = row.get("drop_in_bonus_seconds")
    if bonus is not None:
        patch["dropIn"] = {"bonusSeconds": safe_float(bonus) or 0, **stamp}
    if row.get("async_fill_snapshot"):
        patch["asyncFill"] = row["async_fill_snapshot"]
    if row.get("turn_state"):
        patch["turnState"] = row["turn_state"]
    if row.get("extras"):
        patch["extras"] = row["extras"]
    if row.get("realtime_mode"):
        patch["realtimeMode"] = row["realtime_mode"]

    if not patch:
        return None
    patch["source"] = REMOTE_META_SOURCE
    patch.update(stamp)
    return sanitize_session_meta(patch, None, now_ms=now_ms)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def map_history_rows(
    rows: Sequence[Any],
    *,
    session_id: str,
    limit: int,
    now_ms: int,
) -> SessionHistory:
    """Build a history snapshot from ``rank_turns`` rows fetched with ``limit + 1``.

    Turns are sorted by ``idx`` and deduplicated on ``(idx, role)``; counts
    cover the unique turns and only the newest *limit* are kept.
    """

    fetched = [row for row in rows if isinstance(row, Mapping)]
    unique = sanitize_history_turns(fetched)
    truncated = len(unique) > limit
    turns = unique[-limit:] if truncated else unique

    return SessionHistory(
        session_id=session_id,
        turns=turns,
        total_count=len(unique),
        public_count=sum(1 for turn in unique if turn.public),
        hidden_count=sum(1 for turn in unique if not turn.public),
        suppressed_count=sum(1 for turn in unique if turn.public and not turn.is_visible),
        truncated=truncated,
        last_idx=turns[-1].idx if turns else None,
        updated_at=now_ms,
        source=HISTORY_SOURCE,
        diagnostics={"truncated": True, "limit": limit, "fetched": len(fetched)} if truncated else None,
    )


def empty_history(session_id: str | None, *, now_ms: int, diagnostics: dict[str, Any]) -> SessionHistory:
    return SessionHistory(
        session_id=session_id,
        updated_at=now_ms,
        source=HISTORY_SOURCE,
        diagnostics=diagnostics,
    )
