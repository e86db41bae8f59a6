from __future__ import annotations

import math

from rankmatch.assignment import (
    apply_async_fill_standins,
    build_async_fill_snapshot,
    build_role_averages,
    build_seat_requests,
    derive_vacancy_indexes,
    seat_limit,
    standin_priority,
)
from rankmatch.ingestion.sanitize import sanitize_fill_queue, sanitize_roster
from rankmatch.models.roster import AsyncFillSnapshot, Candidate, RosterSlot
from rankmatch.models.session import SessionMeta


def _host_roster(vacant: set[int], seats: int = 5) -> list[RosterSlot]:
    return sanitize_roster(
        [
            {
                "slot_index": index,
                "role": "attack",
                "owner_id": "" if index in vacant else f"owner-{index}",
                "rating": 1500,
            }
            for index in range(seats)
        ]
    )


def test_seat_limit() -> None:
    assert seat_limit(5, None) == 3
    assert seat_limit(5, 0) == 3
    assert seat_limit(2, 4) == 2
    assert seat_limit(0, None) == 1


def test_async_fill_caps_eligible_seats() -> None:
    roster = _host_roster({1, 4})
    pool = [{"owner_id": f"sub-{name}", "role": "attack"} for name in ("c", "a", "b")]

    fill = build_async_fill_snapshot(roster, pool, host_owner_id="owner-0", now_ms=42)

    assert fill is not None
    assert fill.seat_limit.allowed == 3
    assert fill.seat_limit.total == 5
    assert fill.seat_indexes == [0, 1, 2]
    assert fill.pending_seat_indexes == [1]
    assert [seat.slot_index for seat in fill.overflow] == [3, 4]
    assert [candidate.owner_id for candidate in fill.fill_queue] == ["sub-a"]
    assert fill.pool_size == 3
    assert fill.generated_at == 42


def test_async_fill_pool_excludes_seated_and_other_roles() -> None:
    roster = _host_roster({2}, seats=3)
    pool = [
        {"owner_id": "owner-0", "role": "attack"},
        {"owner_id": "healer", "role": "support"},
        {"owner_id": "sub", "role": "Attack"},
    ]

    fill = build_async_fill_snapshot(roster, pool, host_owner_id="owner-0", now_ms=1)

    assert fill is not None
    assert [candidate.owner_id for candidate in fill.fill_queue] == ["sub"]
    assert fill.pool_size == 1


def test_async_fill_is_none_for_realtime_matches() -> None:
    assert build_async_fill_snapshot(_host_roster({1}), [], realtime_mode="pulse", now_ms=1) is None
    assert build_async_fill_snapshot(_host_roster({1}), [], realtime_mode=None, now_ms=1) is not None


def test_standin_priority_prefers_role_then_rating() -> None:
    seat = RosterSlot(slot_index=1, role="attack", rating=1500)
    near = Candidate(owner_id="near", role="attack", rating=1490)
    far = Candidate(owner_id="far", role="attack", rating=1800)
    off_role = Candidate(owner_id="off", role="support", rating=1500)
    no_role = Candidate(owner_id="none", rating=1500)

    assert standin_priority(seat, near, 1) < standin_priority(seat, far, 0)
    assert standin_priority(seat, far, 0) < standin_priority(seat, off_role, 0)
    assert standin_priority(seat, off_role, 0) < standin_priority(seat, no_role, 0)

    unrated = standin_priority(seat, Candidate(owner_id="x", role="attack"), 0)
    assert unrated.stats_penalty == 2
    assert math.isinf(unrated.stat_diff)


def test_generic_seat_role_accepts_any_candidate() -> None:
    seat = RosterSlot(slot_index=0, role="unassigned")

    assert standin_priority(seat, Candidate(owner_id="x", role="support"), 0).role_penalty == 0
    assert standin_priority(seat, Candidate(owner_id="y"), 0).role_penalty == 0


def _meta_with_queue(roster: list[RosterSlot], queue: list[dict[str, object]]) -> SessionMeta:
    fill = build_async_fill_snapshot(roster, [], host_owner_id="owner-0", now_ms=1)
    assert fill is not None
    return SessionMeta(async_fill=fill.model_copy(update={"fill_queue": sanitize_fill_queue(queue)}))


def test_apply_standins_fills_closest_rating() -> None:
    roster = _host_roster({1}, seats=3)
    meta = _meta_with_queue(
        roster,
        [
            {"owner_id": "far", "role": "attack", "rating": 1800, "hero_id": "h-far", "hero_name": "Far"},
            {"owner_id": "near", "role": "attack", "rating": 1490, "hero_id": "h-near", "hero_name": "Near"},
        ],
    )

    result = apply_async_fill_standins(roster, meta, {})

    assert result.applied
    seat = result.roster[1]
    assert seat.owner_id == "near"
    assert seat.ready is True
    assert seat.standin is True
    assert seat.match_source == "participant_pool"
    assert result.hero_map["h-near"] == {"name": "Near"}
    assert result.session_meta is not None
    fill = result.session_meta.async_fill
    assert fill is not None
    assert fill.pending_seat_indexes == []
    assert [candidate.owner_id for candidate in fill.fill_queue] == ["far"]
    assert "near" in result.collaborators


def test_apply_standins_is_idempotent_once_filled() -> None:
    roster = _host_roster({1}, seats=3)
    meta = _meta_with_queue(roster, [{"owner_id": "sub", "role": "attack"}])

    first = apply_async_fill_standins(roster, meta, {})
    second = apply_async_fill_standins(first.roster, first.session_meta, first.hero_map)

    assert first.applied
    assert not second.applied
    assert second.roster == first.roster


def test_apply_standins_adds_placeholder_seat_for_missing_row() -> None:
    roster = _host_roster(set(), seats=1)
    fill = AsyncFillSnapshot(
        host_role="attack",
        seat_indexes=[0, 1],
        pending_seat_indexes=[1],
        fill_queue=sanitize_fill_queue([{"hero_id": "h9"}]),
    )

    result = apply_async_fill_standins(roster, SessionMeta(async_fill=fill))

    assert result.applied
    assert [slot.slot_index for slot in result.roster] == [0, 1]
    added = result.roster[1]
    assert added.role == "attack"
    assert added.hero_id == "h9"
    assert added.hero_name == "Async stand-in"
    assert added.standin is True


def test_apply_standins_noop_without_queue_or_meta() -> None:
    roster = _host_roster({1}, seats=3)

    assert not apply_async_fill_standins(roster, None).applied
    assert not apply_async_fill_standins(roster, _meta_with_queue(roster, [])).applied


def test_build_seat_requests_uses_role_averages() -> None:
    roster = sanitize_roster(
        [
            {"slot_index": 0, "role": "attack", "owner_id": "a", "score": 100, "rating": 1400},
            {"slot_index": 1, "role": "attack", "owner_id": "b", "score": 200, "rating": 1600},
            {"slot_index": 2, "role": "attack", "owner_id": ""},
        ]
    )
    fill = build_async_fill_snapshot(roster, [], host_owner_id="a", now_ms=1)

    requests = build_seat_requests(roster, fill, "attack")

    assert requests == [{"slot_index": 2, "role": "attack", "score": 150, "rating": 1500}]


def test_build_seat_requests_sends_generic_role_as_none() -> None:
    roster = sanitize_roster([{"slot_index": 0, "owner_id": ""}])
    fill = build_async_fill_snapshot(roster, [], now_ms=1)

    assert build_seat_requests(roster, fill)[0]["role"] is None


def test_derive_vacancy_indexes_merges_pending_and_unowned_seats() -> None:
    roster = _host_roster({1}, seats=2)
    fill = AsyncFillSnapshot(seat_indexes=[0, 1], pending_seat_indexes=[3])

    assert derive_vacancy_indexes(fill, roster) == [1, 3]
    assert derive_vacancy_indexes(None, roster) == []


def test_build_role_averages_skips_vacant_seats() -> None:
    roster = sanitize_roster(
        [
            {"slot_index": 0, "role": "attack", "owner_id": "a", "score": 100, "rating": 1400},
            {"slot_index": 1, "role": "Attack", "owner_id": "b", "score": 200, "rating": 1600},
            {"slot_index": 2, "role": "support", "owner_id": "c", "rating": 1200},
            {"slot_index": 3, "role": "support", "owner_id": "", "rating": 9000},
        ]
    )

    assert build_role_averages(roster) == {
        "attack": {"score": 150, "rating": 1500},
        "support": {"score": None, "rating": 1200},
    }
