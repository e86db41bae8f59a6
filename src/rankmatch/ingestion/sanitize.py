"""Entity sanitizers.

One function per canonical entity.  Each accepts whatever the backend or a
local caller produced (mixed key spellings, strings for numbers, missing
fields), drops what cannot be coerced and fills defaults.  Sanitizers never
raise.

Patch sanitizers take ``(patch, previous)``.  A ``None`` patch is the
documented "clear" signal and yields the empty value stamped with ``now_ms``;
keys absent from a patch keep their previous value.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from rankmatch.ingestion.normalize import (
    as_mapping,
    first_present,
    json_clone,
    non_negative_int,
    normalize_iso_timestamp,
    normalize_timestamp_ms,
    optional_trimmed,
    role_key,
    safe_bool,
    safe_float,
    safe_int,
    trimmed,
)
from rankmatch.models._base import UNASSIGNED_ROLE
from rankmatch.models.match import HeroSelection, MatchInfo, MatchSnapshot, MatchState, Participation
from rankmatch.models.roster import AsyncFillSnapshot, Candidate, RosterSlot, SeatAssignment, SeatLimit
from rankmatch.models.session import (
    HistoryTurn,
    ReadyCheck,
    ReadyCheckStatus,
    SessionHistory,
    SessionMeta,
    TurnState,
)
from rankmatch.models.template import RoleGroup, RoleMember, SlotLayoutEntry, SlotTemplate

_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)

_MISSING: Any = object()

_UPDATED_AT_KEYS = ("updatedAt", "updated_at", "updated_at_ms")


def _as_dict(value: Any) -> dict[str, Any] | None:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    return None


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the value of the first present key, or ``_MISSING``."""
    for key in keys:
        if key in data:
            return data[key]
    return _MISSING


def _validate_or_none(model_cls: type[TModel], data: Any) -> TModel | None:
    if isinstance(data, model_cls):
        return data.model_copy(deep=True)
    if not isinstance(data, Mapping):
        return None
    try:
        return model_cls.model_validate(json_clone(data))
    except ValidationError as exc:
        _logger.debug("Dropping invalid %s payload: %s", model_cls.__name__, exc)
        return None


def _index_list(values: Any) -> list[int]:
    if not isinstance(values, (list, tuple)):
        return []
    result: list[int] = []
    for value in values:
        parsed = safe_int(value)
        if parsed is not None and parsed >= 0:
            result.append(parsed)
    return result


def _id_list(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple, set)):
        return []
    result: list[str] = []
    for value in values:
        text = trimmed(value)
        if text and text not in result:
            result.append(text)
    return result


def explicit_updated_at(patch: Any) -> int | None:
    """Extract an explicit ``updatedAt`` from a raw patch, if one is carried."""
    data = _as_dict(patch)
    if data is None:
        return None
    return normalize_timestamp_ms(first_present(data, *_UPDATED_AT_KEYS))


# ---------------------------------------------------------------------------
# Roster and candidates
# ---------------------------------------------------------------------------


def sanitize_roster_slot(entry: Any, fallback_index: int = 0) -> RosterSlot | None:
    data = _as_dict(entry)
    if data is None:
        return None

    slot_index = safe_int(first_present(data, "slotIndex", "slot_index"))
    hero_summary = first_present(data, "heroSummary", "hero_summary")
    hero_summary = as_mapping(hero_summary)
    hero_name = trimmed(first_present(data, "heroName", "hero_name"))
    if not hero_name and hero_summary and isinstance(hero_summary.get("name"), str):
        hero_name = hero_summary["name"]
    match_source = trimmed(first_present(data, "matchSource", "match_source"))

    return RosterSlot(
        slot_id=optional_trimmed(first_present(data, "slotId", "slot_id")),
        slot_index=slot_index if slot_index is not None and slot_index >= 0 else fallback_index,
        role=trimmed(first_present(data, "role", "roleName", "role_name")) or UNASSIGNED_ROLE,
        owner_id=trimmed(first_present(data, "ownerId", "owner_id", "ownerID")),
        hero_id=trimmed(first_present(data, "heroId", "hero_id", "heroID")),
        hero_name=hero_name,
        ready=first_present(data, "ready", "occupant_ready") is True,
        joined_at=normalize_iso_timestamp(first_present(data, "joinedAt", "joined_at")),
        standin=data.get("standin") is True or match_source == "participant_pool",
        match_source=match_source,
        score=safe_float(data.get("score")),
        rating=safe_float(data.get("rating")),
        battles=safe_int(data.get("battles")),
        win_rate=safe_float(first_present(data, "winRate", "win_rate")),
        status=trimmed(data.get("status")),
        hero_summary=hero_summary,
        placeholder_owner_id=optional_trimmed(first_present(data, "placeholderOwnerId", "placeholder_owner_id")),
        standin_placeholder=first_present(data, "standinPlaceholder", "standin_placeholder") is True,
    )


def sort_roster(roster: Iterable[RosterSlot]) -> list[RosterSlot]:
    """Order seats by slot index, then join time; equal keys keep input order."""

    def _key(slot: RosterSlot) -> tuple[int, int, str]:
        joined = trimmed(slot.joined_at)
        return (slot.slot_index, 0 if joined else 1, joined)

    return sorted(roster, key=_key)


def sanitize_roster(entries: Any) -> list[RosterSlot]:
    """Sanitize a roster; the result has unique, ascending slot indexes.

    When two rows claim the same slot index the first one is kept.
    """

    if not isinstance(entries, (list, tuple)):
        return []
    by_index: dict[int, RosterSlot] = {}
    for position, entry in enumerate(entries):
        slot = sanitize_roster_slot(entry, position)
        if slot is None:
            continue
        if slot.slot_index in by_index:
            _logger.debug("Dropping duplicate roster row for slot %s", slot.slot_index)
            continue
        by_index[slot.slot_index] = slot
    return sort_roster(by_index.values())


def sanitize_candidate(entry: Any, fallback_role: str | None = None, *, require_owner: bool = True) -> Candidate | None:
    data = _as_dict(entry)
    if data is None:
        return None

    role = trimmed(first_present(data, "role", "roleName", "role_name", "role_label") or fallback_role or "")
    owner_id = trimmed(first_present(data, "ownerId", "owner_id", "ownerID"))
    hero_id = optional_trimmed(first_present(data, "heroId", "hero_id", "heroID"))
    hero_name = first_present(data, "heroName", "hero_name")
    hero_name = hero_name if isinstance(hero_name, str) else ""
    if require_owner and not owner_id:
        return None
    if not owner_id and not hero_id and not hero_name:
        return None

    return Candidate(
        owner_id=owner_id,
        hero_id=hero_id,
        hero_name=hero_name,
        role=role,
        role_key=role_key(role),
        score=safe_float(data.get("score")),
        rating=safe_float(data.get("rating")),
        battles=safe_int(data.get("battles")),
        win_rate=safe_float(first_present(data, "winRate", "win_rate")),
        match_source=trimmed(first_present(data, "matchSource", "match_source")),
        joined_at=normalize_iso_timestamp(first_present(data, "joinedAt", "joined_at")),
        status=trimmed(data.get("status")),
        placeholder=data.get("placeholder") is True,
        placeholder_owner_id=optional_trimmed(first_present(data, "placeholderOwnerId", "placeholder_owner_id")),
    )


def sanitize_participant_pool(pool: Any, fallback_role: str | None = None) -> list[Candidate]:
    """Sanitize a participant pool, deduplicating by owner (most recent wins)."""
    if not isinstance(pool, (list, tuple)):
        return []
    by_owner: dict[str, Candidate] = {}
    for entry in pool:
        candidate = sanitize_candidate(entry, fallback_role)
        if candidate is None:
            continue
        by_owner.pop(candidate.owner_id, None)
        by_owner[candidate.owner_id] = candidate
    return list(by_owner.values())


def sanitize_fill_queue(queue: Any) -> list[Candidate]:
    """Sanitize a substitute queue, keeping its order.

    Queue entries need an owner, a hero id or a hero name to be usable.
    """
    if not isinstance(queue, (list, tuple)):
        return []
    result: list[Candidate] = []
    for entry in queue:
        candidate = sanitize_candidate(entry, require_owner=False)
        if candidate is not None:
            result.append(candidate)
    return result


def _seat_assignment(entry: Any) -> SeatAssignment | None:
    data = _as_dict(entry)
    if data is None:
        return None
    slot_index = safe_int(first_present(data, "slotIndex", "slot_index"))
    if slot_index is None or slot_index < 0:
        return None
    return SeatAssignment(
        slot_index=slot_index,
        slot_id=optional_trimmed(first_present(data, "slotId", "slot_id")),
        owner_id=optional_trimmed(first_present(data, "ownerId", "owner_id")),
        hero_id=optional_trimmed(first_present(data, "heroId", "hero_id")),
        hero_name=optional_trimmed(first_present(data, "heroName", "hero_name")),
        role=optional_trimmed(data.get("role")),
        ready=safe_bool(data.get("ready")),
        joined_at=normalize_iso_timestamp(first_present(data, "joinedAt", "joined_at")),
        score=safe_float(data.get("score")),
        rating=safe_float(data.get("rating")),
        match_source=optional_trimmed(first_present(data, "matchSource", "match_source")),
        placeholder=data.get("placeholder") is True,
    )


def sanitize_async_fill(value: Any) -> AsyncFillSnapshot | None:
    data = _as_dict(value)
    if data is None:
        return None
    limit = _as_dict(first_present(data, "seatLimit", "seat_limit")) or {}
    assigned = [seat for seat in map(_seat_assignment, data.get("assigned") or []) if seat is not None]
    overflow = [seat for seat in map(_seat_assignment, data.get("overflow") or []) if seat is not None]
    return AsyncFillSnapshot(
        mode=role_key(data.get("mode")) or "off",
        host_owner_id=optional_trimmed(first_present(data, "hostOwnerId", "host_owner_id")),
        host_role=optional_trimmed(first_present(data, "hostRole", "host_role")),
        seat_limit=SeatLimit(
            allowed=non_negative_int(limit.get("allowed")),
            total=non_negative_int(limit.get("total")),
        ),
        seat_indexes=_index_list(first_present(data, "seatIndexes", "seat_indexes")),
        pending_seat_indexes=_index_list(first_present(data, "pendingSeatIndexes", "pending_seat_indexes")),
        assigned=assigned,
        overflow=overflow,
        fill_queue=sanitize_fill_queue(first_present(data, "fillQueue", "fill_queue")),
        pool_size=non_negative_int(first_present(data, "poolSize", "pool_size")),
        generated_at=normalize_timestamp_ms(first_present(data, "generatedAt", "generated_at")) or 0,
    )


# ---------------------------------------------------------------------------
# Slot template
# ---------------------------------------------------------------------------


def sanitize_slot_layout(slots: Any) -> list[SlotLayoutEntry]:
    if not isinstance(slots, (list, tuple)):
        return []
    result: list[SlotLayoutEntry] = []
    for position, slot in enumerate(slots):
        data = _as_dict(slot)
        if data is None:
            continue
        slot_index = safe_int(first_present(data, "slotIndex", "slot_index"))
        hero_name = first_present(data, "heroName", "hero_name")
        result.append(
            SlotLayoutEntry(
                slot_id=optional_trimmed(first_present(data, "slotId", "slot_id")),
                slot_index=slot_index if slot_index is not None else position,
                role=trimmed(data.get("role")),
                owner_id=trimmed(first_present(data, "ownerId", "owner_id")),
                hero_id=trimmed(first_present(data, "heroId", "hero_id")),
                hero_name=hero_name if isinstance(hero_name, str) else "",
                ready=data.get("ready") is True or data.get("occupant_ready") is True,
                joined_at=normalize_iso_timestamp(first_present(data, "joinedAt", "joined_at")),
            )
        )
    return result


def _role_member(member: Any, position: int) -> RoleMember | None:
    data = _as_dict(member)
    if data is None:
        return None
    slot_index = safe_int(first_present(data, "slotIndex", "slot_index"))
    hero_name = first_present(data, "heroName", "hero_name")
    return RoleMember(
        owner_id=trimmed(first_present(data, "ownerId", "owner_id")),
        hero_id=trimmed(first_present(data, "heroId", "hero_id")),
        hero_name=hero_name if isinstance(hero_name, str) else "",
        ready=data.get("ready") is True,
        slot_index=slot_index if slot_index is not None else position,
    )


def sanitize_role_groups(roles: Any) -> list[RoleGroup]:
    if not isinstance(roles, (list, tuple)):
        return []
    result: list[RoleGroup] = []
    for position, role in enumerate(roles):
        data = _as_dict(role)
        if data is None:
            continue
        raw_members = data.get("members") if isinstance(data.get("members"), (list, tuple)) else []
        members = [m for m in (_role_member(member, i) for i, member in enumerate(raw_members)) if m is not None]
        role_slots = sanitize_slot_layout(first_present(data, "roleSlots", "role_slots"))
        slot_count = safe_int(data.get("slots"))
        if slot_count is None or slot_count < 0:
            slot_count = len(role_slots) or len(members)
        result.append(
            RoleGroup(
                role=trimmed(data.get("role")) or f"role {position + 1}",
                slots=slot_count,
                members=members,
                role_slots=role_slots,
            )
        )
    return result


def sanitize_slot_template(patch: Any, previous: SlotTemplate | None, *, now_ms: int) -> SlotTemplate:
    if patch is None:
        return SlotTemplate(updated_at=now_ms)

    base = previous if previous is not None else SlotTemplate()
    update: dict[str, Any] = {}
    data = _as_dict(patch) or {}

    if "slots" in data:
        update["slots"] = sanitize_slot_layout(data["slots"])
    if "roles" in data:
        update["roles"] = sanitize_role_groups(data["roles"])
    version = safe_int(data.get("version"))
    if version is not None:
        update["version"] = version
    if "source" in data:
        update["source"] = trimmed(data["source"]) if isinstance(data["source"], str) else base.source
    updated_at = explicit_updated_at(data)
    if updated_at is not None:
        update["updated_at"] = updated_at

    result = base.model_copy(update=update, deep=True)
    if not result.updated_at:
        result = result.model_copy(update={"updated_at": now_ms})
    return result


# ---------------------------------------------------------------------------
# Turn state and session meta
# ---------------------------------------------------------------------------


def sanitize_turn_state(patch: Any, previous: TurnState | None, *, now_ms: int) -> TurnState:
    if patch is None:
        return TurnState(updated_at=now_ms)

    base = previous if previous is not None else TurnState()
    data = _as_dict(patch)
    if data is None:
        return base.model_copy(deep=True)

    update: dict[str, Any] = {}

    version = safe_int(data.get("version"))
    if version is not None and version > 0:
        update["version"] = version
    turn_number = safe_int(first_present(data, "turnNumber", "turn_number"))
    if turn_number is not None and turn_number >= 0:
        update["turn_number"] = turn_number

    for field_name, keys in (
        ("scheduled_at", ("scheduledAt", "scheduled_at")),
        ("deadline", ("deadline",)),
        ("drop_in_bonus_applied_at", ("dropInBonusAppliedAt", "drop_in_bonus_applied_at")),
    ):
        raw = _pick(data, *keys)
        if raw is not _MISSING:
            parsed = safe_int(raw)
            update[field_name] = parsed if parsed is not None and parsed > 0 else 0

    for field_name, keys in (
        ("duration_seconds", ("durationSeconds", "duration_seconds")),
        ("remaining_seconds", ("remainingSeconds", "remaining_seconds")),
        ("drop_in_bonus_seconds", ("dropInBonusSeconds", "drop_in_bonus_seconds")),
    ):
        raw = _pick(data, *keys)
        if raw is not _MISSING:
            parsed_float = safe_float(raw)
            update[field_name] = parsed_float if parsed_float is not None and parsed_float >= 0 else 0

    raw_turn = _pick(data, "dropInBonusTurn", "drop_in_bonus_turn")
    if raw_turn is not _MISSING:
        update["drop_in_bonus_turn"] = non_negative_int(raw_turn)

    for field_name in ("status", "source"):
        if field_name in data:
            value = data[field_name]
            update[field_name] = value.strip() if isinstance(value, str) else getattr(base, field_name)

    updated_at = explicit_updated_at(data)
    if updated_at is not None:
        update["updated_at"] = updated_at

    return base.model_copy(update=update, deep=True)


def sanitize_session_meta(patch: Any, previous: SessionMeta | None, *, now_ms: int) -> SessionMeta:
    if patch is None:
        return SessionMeta(updated_at=now_ms)

    base = previous if previous is not None else SessionMeta()
    data = _as_dict(patch)
    if data is None:
        return base.model_copy(deep=True)

    update: dict[str, Any] = {}
    for field_name, keys in (
        ("turn_timer", ("turnTimer", "turn_timer")),
        ("vote", ("vote",)),
        ("drop_in", ("dropIn", "drop_in")),
        ("extras", ("extras",)),
    ):
        raw = _pick(data, *keys)
        if raw is not _MISSING:
            update[field_name] = as_mapping(raw)

    raw_fill = _pick(data, "asyncFill", "async_fill")
    if raw_fill is not _MISSING:
        update["async_fill"] = sanitize_async_fill(raw_fill)

    raw_turn_state = _pick(data, "turnState", "turn_state")
    if raw_turn_state is not _MISSING:
        update["turn_state"] = sanitize_turn_state(raw_turn_state, base.turn_state, now_ms=now_ms)

    raw_mode = _pick(data, "realtimeMode", "realtime_mode")
    if raw_mode is not _MISSING:
        update["realtime_mode"] = role_key(raw_mode)

    if "source" in data:
        update["source"] = data["source"].strip() if isinstance(data["source"], str) else base.source

    updated_at = explicit_updated_at(data)
    if updated_at is not None:
        update["updated_at"] = updated_at

    return base.model_copy(update=update, deep=True)


_VOLATILE_KEYS = frozenset({"updated_at", "updatedAt", "generated_at", "generatedAt"})


def _strip_volatile(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _strip_volatile(item) for key, item in value.items() if key not in _VOLATILE_KEYS}
    if isinstance(value, list):
        return [_strip_volatile(item) for item in value]
    return value


def normalize_turn_state_for_comparison(value: TurnState | None) -> dict[str, Any]:
    return _strip_volatile((value or TurnState()).model_dump(mode="json"))


def normalize_session_meta_for_comparison(value: SessionMeta | None) -> dict[str, Any]:
    """Session meta without its update stamps (at any depth) and provenance ``source``."""
    normalized = _strip_volatile((value or SessionMeta()).model_dump(mode="json"))
    normalized.pop("source", None)
    return normalized


def structurally_equal(left: BaseModel | None, right: BaseModel | None, *, ignore: Iterable[str] = ()) -> bool:
    """Compare two models ignoring update stamps at any depth and the top-level *ignore* fields."""
    if left is None or right is None:
        return left is right
    normalized = []
    for model in (left, right):
        dumped = _strip_volatile(model.model_dump(mode="json"))
        for field_name in ignore:
            dumped.pop(field_name, None)
        normalized.append(dumped)
    return normalized[0] == normalized[1]


def session_meta_structurally_equal(left: SessionMeta | None, right: SessionMeta | None) -> bool:
    """Compare two session metas ignoring their volatile timestamps."""
    return normalize_session_meta_for_comparison(left) == normalize_session_meta_for_comparison(right)


# ---------------------------------------------------------------------------
# Ready check
# ---------------------------------------------------------------------------


def sanitize_ready_check(value: Any) -> ReadyCheck:
    data = _as_dict(value)
    if data is None:
        return ReadyCheck()
    status_raw = role_key(data.get("status"))
    try:
        status = ReadyCheckStatus(status_raw)
    except ValueError:
        status = ReadyCheckStatus.IDLE
    ready_ids = _id_list(first_present(data, "readyOwnerIds", "ready_owner_ids"))
    missing_ids = _id_list(first_present(data, "missingOwnerIds", "missing_owner_ids"))
    ready_count = safe_int(first_present(data, "readyCount", "ready_count"))
    total_count = safe_int(first_present(data, "totalCount", "total_count"))
    return ReadyCheck(
        status=status,
        expires_at_ms=normalize_timestamp_ms(first_present(data, "expiresAtMs", "expires_at_ms", "expiresAt")),
        ready_owner_ids=ready_ids,
        missing_owner_ids=missing_ids,
        ready_count=ready_count if ready_count is not None and ready_count >= 0 else len(ready_ids),
        total_count=total_count if total_count is not None and total_count >= 0 else len(ready_ids) + len(missing_ids),
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def sanitize_history_turn(turn: Any, fallback_idx: int = 0) -> HistoryTurn | None:
    data = _as_dict(turn)
    if data is None:
        return None
    idx = safe_int(data.get("idx"))
    content = data.get("content")
    summary = first_present(data, "summaryPayload", "summary_payload")
    if summary is None and isinstance(data.get("summary"), Mapping):
        summary = data["summary"]
    is_visible = data.get("isVisible") is not False and data.get("is_visible") is not False
    return HistoryTurn(
        id=optional_trimmed(first_present(data, "id", "turn_id")),
        idx=idx if idx is not None else fallback_idx,
        role=trimmed(data.get("role")) or "system",
        content=content if isinstance(content, str) else "",
        public=data.get("public") is not False,
        is_visible=is_visible,
        created_at=normalize_iso_timestamp(first_present(data, "createdAt", "created_at")),
        summary_payload=as_mapping(summary),
        metadata=as_mapping(data.get("metadata")),
    )


def sanitize_history_turns(turns: Any) -> list[HistoryTurn]:
    """Sanitize turns ordered by ``idx``; ``(idx, role)`` collisions keep the first."""
    if not isinstance(turns, (list, tuple)):
        return []
    seen: set[tuple[int, str]] = set()
    result: list[HistoryTurn] = []
    for position, turn in enumerate(turns):
        sanitized = sanitize_history_turn(turn, position)
        if sanitized is None:
            continue
        key = (sanitized.idx, sanitized.role)
        if key in seen:
            _logger.warning("Dropping duplicate history turn idx=%s role=%s", sanitized.idx, sanitized.role)
            continue
        seen.add(key)
        result.append(sanitized)
    return sorted(result, key=lambda item: item.idx)


def sanitize_session_history(patch: Any, previous: SessionHistory | None, *, now_ms: int) -> SessionHistory:
    if patch is None:
        return SessionHistory(updated_at=now_ms)

    base = previous if previous is not None else SessionHistory()
    data = _as_dict(patch) or {}
    update: dict[str, Any] = {}

    raw_session = _pick(data, "sessionId", "session_id")
    if raw_session is not _MISSING:
        update["session_id"] = optional_trimmed(raw_session)
    if "turns" in data:
        update["turns"] = sanitize_history_turns(data["turns"])
    for field_name, keys in (
        ("total_count", ("totalCount", "total_count")),
        ("public_count", ("publicCount", "public_count")),
        ("hidden_count", ("hiddenCount", "hidden_count")),
        ("suppressed_count", ("suppressedCount", "suppressed_count")),
    ):
        raw = _pick(data, *keys)
        if raw is not _MISSING:
            update[field_name] = non_negative_int(raw)
    if "truncated" in data:
        update["truncated"] = bool(data["truncated"])
    raw_last = _pick(data, "lastIdx", "last_idx")
    if raw_last is not _MISSING:
        update["last_idx"] = safe_int(raw_last)
    updated_at = explicit_updated_at(data)
    if updated_at is not None:
        update["updated_at"] = updated_at
    if "source" in data:
        update["source"] = data["source"].strip() if isinstance(data["source"], str) else base.source
    if "diagnostics" in data:
        update["diagnostics"] = as_mapping(data["diagnostics"])

    result = base.model_copy(update=update, deep=True)
    if not result.updated_at:
        result = result.model_copy(update={"updated_at": now_ms})
    return result


# ---------------------------------------------------------------------------
# Hero selection, match snapshot, whole state
# ---------------------------------------------------------------------------


def sanitize_hero_map(value: Any) -> dict[str, dict[str, Any]] | None:
    data = as_mapping(value)
    if data is None:
        return None
    return {key: entry for key, entry in data.items() if isinstance(entry, dict)}


def sanitize_hero_selection(payload: Any, *, now_ms: int) -> HeroSelection:
    data = _as_dict(payload) or {}
    viewer_id = trimmed(first_present(data, "viewerId", "viewer_id"))
    owner_raw = first_present(data, "ownerId", "owner_id")
    return HeroSelection(
        hero_id=trimmed(first_present(data, "heroId", "hero_id")),
        viewer_id=viewer_id,
        owner_id=trimmed(owner_raw) if owner_raw is not None else viewer_id,
        role=trimmed(data.get("role")),
        hero_meta=as_mapping(first_present(data, "heroMeta", "hero_meta")),
        updated_at=now_ms,
    )


def sanitize_match_snapshot(payload: Any, *, now_ms: int) -> MatchSnapshot:
    data = _as_dict(payload) or {}
    match = _validate_or_none(MatchInfo, data.get("match"))
    created_at = normalize_timestamp_ms(first_present(data, "createdAt", "created_at"))
    return MatchSnapshot(
        match=match,
        pending_match=as_mapping(first_present(data, "pendingMatch", "pending_match")),
        viewer_id=trimmed(first_present(data, "viewerId", "viewer_id")),
        hero_id=trimmed(first_present(data, "heroId", "hero_id")),
        role=trimmed(data.get("role")),
        mode=trimmed(data.get("mode")),
        created_at=created_at or now_ms,
    )


def sanitize_match_state(value: Any) -> MatchState:
    """Rebuild a :class:`MatchState` from a persisted record.

    Each section is validated on its own; a corrupt section falls back to
    its empty value instead of discarding the whole record.
    """

    data = _as_dict(value)
    if data is None:
        return MatchState()

    update: dict[str, Any] = {}
    for field_name, model_cls in (
        ("participation", Participation),
        ("hero_selection", HeroSelection),
        ("match_snapshot", MatchSnapshot),
        ("slot_template", SlotTemplate),
        ("session_meta", SessionMeta),
        ("session_history", SessionHistory),
    ):
        raw = first_present(data, field_name, _camel(field_name))
        if raw is None:
            continue
        section = _validate_or_none(model_cls, raw)
        if section is None:
            _logger.warning("Discarding corrupt persisted section %s", field_name)
            continue
        update[field_name] = section

    for field_name in ("post_check", "confirmation"):
        raw = first_present(data, field_name, _camel(field_name))
        if raw is not None:
            update[field_name] = as_mapping(raw)

    updated_at = normalize_timestamp_ms(first_present(data, "updated_at", "updatedAt"))
    update["updated_at"] = updated_at or 0
    return MatchState().model_copy(update=update)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
