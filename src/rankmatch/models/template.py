"""Slot template (versioned seat/role layout) models."""

from __future__ import annotations

from pydantic import Field

from rankmatch.models._base import RankBaseModel


class SlotLayoutEntry(RankBaseModel):
    slot_id: str | None = None
    slot_index: int = 0
    role: str = ""
    owner_id: str = ""
    hero_id: str = ""
    hero_name: str = ""
    ready: bool = False
    joined_at: str | None = None


class RoleMember(RankBaseModel):
    owner_id: str = ""
    hero_id: str = ""
    hero_name: str = ""
    ready: bool = False
    slot_index: int = 0


class RoleGroup(RankBaseModel):
    """Seats sharing one role label."""

    role: str = ""
    slots: int = 0
    members: list[RoleMember] = Field(default_factory=list)
    role_slots: list[SlotLayoutEntry] = Field(default_factory=list)


class SlotTemplate(RankBaseModel):
    """Versioned seat/role layout of a match.

    The highest observed ``version`` wins; equal versions are ordered by
    ``updated_at``.
    """

    slots: list[SlotLayoutEntry] = Field(default_factory=list)
    roles: list[RoleGroup] = Field(default_factory=list)
    version: int = 0
    source: str = ""
    updated_at: int = 0
