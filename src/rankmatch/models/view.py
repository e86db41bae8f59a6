"""Consumer-ready projection of cached match state."""

from __future__ import annotations

from pydantic import Field

from rankmatch.models._base import RankBaseModel
from rankmatch.models.match import MatchSnapshot, Room
from rankmatch.models.roster import RosterSlot
from rankmatch.models.session import ReadyCheck, SessionHistory, SessionMeta
from rankmatch.models.template import RoleGroup, SlotTemplate


class ViewerIdentity(RankBaseModel):
    hero_id: str = ""
    role: str = ""
    owner_id: str = ""
    viewer_id: str = ""
    hero_name: str = ""


class MatchViewState(RankBaseModel):
    """Flattened view of one match for presentation layers."""

    game_id: str = ""
    snapshot: MatchSnapshot | None = None
    roster: list[RosterSlot] = Field(default_factory=list)
    assignments: list[RoleGroup] = Field(default_factory=list)
    viewer: ViewerIdentity = Field(default_factory=ViewerIdentity)
    room: Room | None = None
    match_mode: str = ""
    match_instance_id: str = ""
    session_id: str = ""
    has_active_key: bool = False
    roster_ready_count: int = 0
    total_slots: int = 0
    slot_template: SlotTemplate = Field(default_factory=SlotTemplate)
    slot_template_version: int = 0
    slot_template_updated_at: int = 0
    session_meta: SessionMeta = Field(default_factory=SessionMeta)
    session_history: SessionHistory = Field(default_factory=SessionHistory)
    ready_check: ReadyCheck = Field(default_factory=ReadyCheck)
    allow_start: bool = False
    missing_key: bool = False

    @property
    def viewer_ready(self) -> bool:
        owner = self.viewer.owner_id or self.viewer.viewer_id
        return bool(owner) and owner in self.ready_check.ready_owner_ids
