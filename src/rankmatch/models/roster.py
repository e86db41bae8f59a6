"""Roster seat and substitute candidate models."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from rankmatch.models._base import UNASSIGNED_ROLE, RankBaseModel


class RosterSlot(RankBaseModel):
    """One seat of a match roster.

    ``owner_id`` is an empty string for a vacant seat, never ``None``.
    ``slot_index`` is the unique ordering key of the roster.
    """

    slot_id: str | None = None
    slot_index: int = 0
    role: str = UNASSIGNED_ROLE
    owner_id: str = ""
    hero_id: str = ""
    hero_name: str = ""
    ready: bool = False
    joined_at: str | None = None
    standin: bool = False
    match_source: str = ""
    score: float | None = None
    rating: float | None = None
    battles: int | None = None
    win_rate: float | None = None
    status: str = ""
    hero_summary: dict[str, Any] | None = None
    placeholder_owner_id: str | None = None
    standin_placeholder: bool = False

    @property
    def is_vacant(self) -> bool:
        return not self.owner_id


class Candidate(RankBaseModel):
    """A participant that may stand in for a vacant seat."""

    owner_id: str = ""
    hero_id: str | None = None
    hero_name: str = ""
    role: str = ""
    role_key: str = ""
    score: float | None = None
    rating: float | None = None
    battles: int | None = None
    win_rate: float | None = None
    match_source: str = ""
    joined_at: str | None = None
    status: str = ""
    placeholder: bool = False
    placeholder_owner_id: str | None = None


class SeatAssignment(RankBaseModel):
    """A seat as recorded in an async-fill snapshot."""

    slot_index: int = 0
    slot_id: str | None = None
    owner_id: str | None = None
    hero_id: str | None = None
    hero_name: str | None = None
    role: str | None = None
    ready: bool = False
    joined_at: str | None = None
    score: float | None = None
    rating: float | None = None
    match_source: str | None = None
    placeholder: bool = False


class SeatLimit(RankBaseModel):
    allowed: int = 0
    total: int = 0


class AsyncFillSnapshot(RankBaseModel):
    """Seat eligibility and substitute queue for non-realtime matches.

    Only meaningful when ``mode == "off"``.  ``seat_indexes`` never holds
    more than ``seat_limit.allowed`` entries.
    """

    mode: str = "off"
    host_owner_id: str | None = None
    host_role: str | None = None
    seat_limit: SeatLimit = Field(default_factory=SeatLimit)
    seat_indexes: list[int] = Field(default_factory=list)
    pending_seat_indexes: list[int] = Field(default_factory=list)
    assigned: list[SeatAssignment] = Field(default_factory=list)
    overflow: list[SeatAssignment] = Field(default_factory=list)
    fill_queue: list[Candidate] = Field(default_factory=list)
    pool_size: int = 0
    generated_at: int = 0
