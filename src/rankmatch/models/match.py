"""Per-match state models.

:class:`MatchState` is the full cached record for one game id.  The empty
state is simply ``MatchState()``.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from rankmatch.models._base import RankBaseModel
from rankmatch.models.roster import Candidate, RosterSlot
from rankmatch.models.session import SessionHistory, SessionMeta
from rankmatch.models.template import RoleGroup, SlotLayoutEntry, SlotTemplate


class Room(RankBaseModel):
    id: str | None = None
    code: str = ""
    status: str = ""
    mode: str = ""
    realtime_mode: str = ""
    host_role_limit: int | None = None
    blind_mode: bool = False
    score_window: float | None = None
    updated_at: str | None = None
    owner_id: str | None = None


class Participation(RankBaseModel):
    roster: list[RosterSlot] = Field(default_factory=list)
    hero_options: list[str] = Field(default_factory=list)
    hero_map: dict[str, dict[str, Any]] | None = None
    participant_pool: list[Candidate] = Field(default_factory=list)
    updated_at: int = 0


class HeroSelection(RankBaseModel):
    hero_id: str = ""
    viewer_id: str = ""
    owner_id: str = ""
    role: str = ""
    hero_meta: dict[str, Any] | None = None
    updated_at: int = 0


class MatchInfo(RankBaseModel):
    """Match descriptor assembled during reconciliation."""

    instance_id: str | None = None
    match_code: str = ""
    match_type: str = "standard"
    blind_mode: bool = False
    max_window: float | None = None
    hero_map: dict[str, dict[str, Any]] = Field(default_factory=dict)
    assignments: list[RoleGroup] = Field(default_factory=list)
    roles: list[RoleGroup] = Field(default_factory=list)
    slot_layout: list[SlotLayoutEntry] = Field(default_factory=list)
    rooms: list[Room] = Field(default_factory=list)
    turn_timer: dict[str, Any] | None = None
    source: str = ""


class MatchSnapshot(RankBaseModel):
    match: MatchInfo | None = None
    pending_match: dict[str, Any] | None = None
    viewer_id: str = ""
    hero_id: str = ""
    role: str = ""
    mode: str = ""
    created_at: int = 0


class MatchState(RankBaseModel):
    """Cached matchmaking-readiness state of one game id."""

    participation: Participation = Field(default_factory=Participation)
    hero_selection: HeroSelection | None = None
    match_snapshot: MatchSnapshot | None = None
    slot_template: SlotTemplate = Field(default_factory=SlotTemplate)
    session_meta: SessionMeta = Field(default_factory=SessionMeta)
    session_history: SessionHistory = Field(default_factory=SessionHistory)
    post_check: dict[str, Any] | None = None
    confirmation: dict[str, Any] | None = None
    updated_at: int = 0
