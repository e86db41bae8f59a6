"""Realtime change notifications and per-game sync diagnostics."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field

from rankmatch.models._base import RankBaseModel


class ChannelStatus(StrEnum):
    SUBSCRIBED = "SUBSCRIBED"
    SUBSCRIBING = "SUBSCRIBING"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


class RealtimeChange(RankBaseModel):
    """A row change broadcast for one of the match tables.

    Only ``table`` and ``new`` are inspected; the rest is kept for
    diagnostics.
    """

    table: str = ""
    event_type: str = Field(default="", validation_alias=AliasChoices("event_type", "eventType", "event"))
    commit_timestamp: str | None = None
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def session_id(self) -> str:
        record = self.new or {}
        value = record.get("session_id", record.get("sessionId"))
        return str(value).strip() if value is not None else ""


class SyncDiagnostics(RankBaseModel):
    """What the client last learned while syncing one game."""

    session_id: str | None = None
    room_id: str | None = None
    slot_template_version: int | None = None
    slot_template_updated_at: int | None = None
    pending_refresh: bool = False
    last_refresh_requested_at: int | None = None
    last_refresh_at: int | None = None
    last_refresh_source: str = ""
    last_refresh_error: str | None = None
    last_refresh_hint: str | None = None
    realtime_status: str = ""
    realtime_error: dict[str, Any] | None = None
    last_event: dict[str, Any] | None = None
