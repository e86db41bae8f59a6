"""Session-level models: turn state, session meta, ready check, history."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field

from rankmatch.models._base import RankBaseModel
from rankmatch.models.roster import AsyncFillSnapshot


class TurnState(RankBaseModel):
    version: int = 1
    turn_number: int = 0
    scheduled_at: int = 0
    deadline: int = 0
    duration_seconds: float = 0
    remaining_seconds: float = 0
    status: str = ""
    drop_in_bonus_seconds: float = 0
    drop_in_bonus_applied_at: int = 0
    drop_in_bonus_turn: int = 0
    source: str = ""
    updated_at: int = 0


class SessionMeta(RankBaseModel):
    """Auxiliary per-session configuration.

    ``turn_timer``, ``vote``, ``drop_in`` and ``extras`` are free-form
    payloads owned by other features; this package only reads
    ``extras["readyCheck"]`` and ``extras["readyTimeout"]``.
    """

    turn_timer: dict[str, Any] | None = None
    vote: dict[str, Any] | None = None
    drop_in: dict[str, Any] | None = None
    async_fill: AsyncFillSnapshot | None = None
    turn_state: TurnState = Field(default_factory=TurnState)
    extras: dict[str, Any] | None = None
    realtime_mode: str = ""
    source: str = ""
    updated_at: int = 0


class ReadyCheckStatus(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"


class ReadyCheck(RankBaseModel):
    """Bounded voting window confirming participant readiness."""

    status: ReadyCheckStatus = ReadyCheckStatus.IDLE
    expires_at_ms: int | None = None
    ready_owner_ids: list[str] = Field(default_factory=list)
    missing_owner_ids: list[str] = Field(default_factory=list)
    ready_count: int = 0
    total_count: int = 0

    @property
    def window_active(self) -> bool:
        return self.status in (ReadyCheckStatus.PENDING, ReadyCheckStatus.READY)


class ReadyTimeoutRecord(RankBaseModel):
    triggered_at: int = 0
    assignments: list[dict[str, Any]] = Field(default_factory=list)
    placeholders: int = 0
    diagnostics: dict[str, Any] | None = None


class HistoryTurn(RankBaseModel):
    id: str | None = None
    idx: int = 0
    role: str = "system"
    content: str = ""
    public: bool = True
    is_visible: bool = True
    created_at: str | None = None
    summary_payload: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class SessionHistory(RankBaseModel):
    """Most recent turns of a session, ordered by ``idx``."""

    session_id: str | None = None
    turns: list[HistoryTurn] = Field(default_factory=list)
    total_count: int = 0
    public_count: int = 0
    hidden_count: int = 0
    suppressed_count: int = 0
    truncated: bool = False
    last_idx: int | None = None
    updated_at: int = 0
    source: str = ""
    diagnostics: dict[str, Any] | None = None


class SessionRow(RankBaseModel):
    id: str
    status: str = ""
    owner_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    mode: str = ""
