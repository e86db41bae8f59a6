"""Read-only identity snapshots supplied by the host application."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from rankmatch.models._base import RankBaseModel


class AuthSnapshot(RankBaseModel):
    """Current auth session as seen by the host application."""

    user_id: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int | None = None


class KeyringEntry(RankBaseModel):
    """One stored model-provider credential of a user."""

    id: str = ""
    provider: str = ""
    label: str = Field(default="", validation_alias=AliasChoices("label", "modelLabel", "model_label"))
    is_active: bool = False


class KeyringSnapshot(RankBaseModel):
    user_id: str = ""
    entries: list[KeyringEntry] = Field(default_factory=list)
