"""Canonical output of remote reconciliation."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from rankmatch.models._base import RankBaseModel
from rankmatch.models.match import MatchSnapshot, Room
from rankmatch.models.roster import Candidate, RosterSlot
from rankmatch.models.session import SessionHistory, SessionMeta
from rankmatch.models.template import SlotTemplate


class SnapshotBundle(RankBaseModel):
    """Everything one reconciliation pass learned about a match.

    The bundle is a proposal: it is folded into the cache through the
    store setters, never written directly.
    """

    roster: list[RosterSlot] = Field(default_factory=list)
    participant_pool: list[Candidate] = Field(default_factory=list)
    hero_options: list[str] = Field(default_factory=list)
    hero_map: dict[str, dict[str, Any]] = Field(default_factory=dict)
    slot_template: SlotTemplate | None = None
    match_snapshot: MatchSnapshot | None = None
    session_meta: SessionMeta | None = None
    session_history: SessionHistory | None = None
    host_owner_id: str | None = None
    host_role_limit: int | None = None
    realtime_mode: str | None = None
    match_mode: str = ""
    slot_template_version: int | None = None
    slot_template_updated_at: int | None = None
    match_instance_id: str | None = None
    room: Room | None = None
    room_id: str | None = None
    session_id: str | None = None
