from __future__ import annotations

from rankmatch.ingestion.sanitize import (
    sanitize_history_turns,
    sanitize_match_state,
    sanitize_participant_pool,
    sanitize_ready_check,
    sanitize_roster,
    sanitize_session_meta,
    session_meta_structurally_equal,
)
from rankmatch.models.match import HeroSelection, MatchState, Participation
from rankmatch.models.roster import AsyncFillSnapshot, SeatLimit
from rankmatch.models.session import ReadyCheckStatus, SessionHistory, SessionMeta, TurnState


def test_roster_is_sorted_and_unique_by_slot_index() -> None:
    roster = sanitize_roster(
        [
            {"slotIndex": 2, "ownerId": "c", "role": "attack"},
            {"slot_index": 0, "owner_id": "a", "ready": True},
            {"slot_index": 2, "owner_id": "dup"},
            {"slot_index": 1, "owner_id": "b", "ready": "true"},
            "garbage",
        ]
    )

    assert [slot.slot_index for slot in roster] == [0, 1, 2]
    assert roster[2].owner_id == "c"
    assert roster[0].role == "unassigned"
    assert roster[0].ready is True
    # Only a literal ``True`` counts as ready.
    assert roster[1].ready is False


def test_roster_slot_falls_back_to_position_and_summary_name() -> None:
    roster = sanitize_roster([{"owner_id": "a", "hero_summary": {"name": "Nova"}}])

    assert roster[0].slot_index == 0
    assert roster[0].hero_name == "Nova"


def test_participant_pool_requires_owner_and_keeps_latest_entry() -> None:
    pool = sanitize_participant_pool(
        [
            {"owner_id": "a", "hero_id": "h1", "role": "Attack"},
            {"hero_id": "orphan"},
            {"owner_id": "a", "hero_id": "h2", "role": "Attack"},
        ]
    )

    assert len(pool) == 1
    assert pool[0].hero_id == "h2"
    assert pool[0].role_key == "attack"


def test_ready_check_invalid_status_and_counts() -> None:
    check = sanitize_ready_check(
        {
            "status": "unknown",
            "readyOwnerIds": ["a", "a", " b "],
            "missingOwnerIds": ["c"],
            "expiresAtMs": "1000",
        }
    )

    assert check.status is ReadyCheckStatus.IDLE
    assert check.ready_owner_ids == ["a", "b"]
    assert check.ready_count == 2
    assert check.total_count == 3
    assert check.expires_at_ms == 1000
    assert sanitize_ready_check(None).status is ReadyCheckStatus.IDLE


def test_history_turns_drop_duplicates_and_sort() -> None:
    turns = sanitize_history_turns(
        [
            {"idx": 3, "role": "user", "content": "c"},
            {"idx": 1, "role": "user", "content": "a"},
            {"idx": 3, "role": "user", "content": "dup"},
            {"idx": 3, "role": "assistant", "content": "d", "public": False},
        ]
    )

    assert [(turn.idx, turn.role) for turn in turns] == [(1, "user"), (3, "user"), (3, "assistant")]
    assert turns[1].content == "c"
    assert turns[2].public is False


def test_session_meta_patch_keeps_absent_keys() -> None:
    previous = sanitize_session_meta({"vote": {"turnTimer": {"a": 30}}, "realtimeMode": "OFF"}, None, now_ms=1)
    patched = sanitize_session_meta({"extras": {"readyCheck": {"status": "pending"}}}, previous, now_ms=2)

    assert patched.vote == {"turnTimer": {"a": 30}}
    assert patched.realtime_mode == "off"
    assert patched.extras == {"readyCheck": {"status": "pending"}}
    assert sanitize_session_meta(None, patched, now_ms=5) == SessionMeta(updated_at=5)


def test_structural_equality_ignores_timestamps() -> None:
    left = SessionMeta(vote={"a": 1}, updated_at=10, turn_state=TurnState(turn_number=2, updated_at=10))
    right = SessionMeta(vote={"a": 1}, updated_at=99, turn_state=TurnState(turn_number=2, updated_at=99))

    assert session_meta_structurally_equal(left, right)
    assert not session_meta_structurally_equal(left, right.model_copy(update={"vote": {"a": 2}}))


def test_structural_equality_ignores_nested_stamps_and_source() -> None:
    left = SessionMeta(
        turn_timer={"baseSeconds": 60, "updatedAt": 10},
        async_fill=AsyncFillSnapshot(seat_indexes=[0], generated_at=10),
        source="remote-meta",
    )
    right = SessionMeta(
        turn_timer={"baseSeconds": 60, "updatedAt": 99},
        async_fill=AsyncFillSnapshot(seat_indexes=[0], generated_at=99),
        source="match-participation",
    )

    assert session_meta_structurally_equal(left, right)
    assert not session_meta_structurally_equal(left, right.model_copy(update={"turn_timer": {"baseSeconds": 30}}))


def test_persisted_state_hydrates_to_the_same_state() -> None:
    state = MatchState(
        participation=Participation(roster=sanitize_roster([{"slot_index": 0, "owner_id": "a"}]), updated_at=5),
        hero_selection=HeroSelection(hero_id="h1", owner_id="a", updated_at=5),
        session_meta=SessionMeta(
            async_fill=AsyncFillSnapshot(seat_limit=SeatLimit(allowed=1, total=1), seat_indexes=[0]),
            extras={"readyCheck": {"status": "pending"}},
            updated_at=6,
        ),
        session_history=SessionHistory(session_id="s1", updated_at=7),
        confirmation={"ok": True},
        updated_at=8,
    )

    assert sanitize_match_state(state.model_dump(mode="json")) == state


def test_corrupt_section_falls_back_to_empty_value() -> None:
    restored = sanitize_match_state(
        {
            "participation": {"roster": "not-a-list"},
            "session_history": {"session_id": "s1"},
            "updated_at": 9,
        }
    )

    assert restored.participation == Participation()
    assert restored.session_history.session_id == "s1"
    assert restored.updated_at == 9
    assert sanitize_match_state("nope") == MatchState()
