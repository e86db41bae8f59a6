"""Canonical models for rankmatch."""

from rankmatch.models._base import UNASSIGNED_ROLE, RankBaseModel
from rankmatch.models.bundle import SnapshotBundle
from rankmatch.models.identity import AuthSnapshot, KeyringEntry, KeyringSnapshot
from rankmatch.models.match import (
    HeroSelection,
    MatchInfo,
    MatchSnapshot,
    MatchState,
    Participation,
    Room,
)
from rankmatch.models.realtime import ChannelStatus, RealtimeChange, SyncDiagnostics
from rankmatch.models.roster import AsyncFillSnapshot, Candidate, RosterSlot, SeatAssignment, SeatLimit
from rankmatch.models.session import (
    HistoryTurn,
    ReadyCheck,
    ReadyCheckStatus,
    ReadyTimeoutRecord,
    SessionHistory,
    SessionMeta,
    SessionRow,
    TurnState,
)
from rankmatch.models.template import RoleGroup, RoleMember, SlotLayoutEntry, SlotTemplate
from rankmatch.models.view import MatchViewState, ViewerIdentity

__all__ = [
    "UNASSIGNED_ROLE",
    "AsyncFillSnapshot",
    "AuthSnapshot",
    "Candidate",
    "ChannelStatus",
    "HeroSelection",
    "HistoryTurn",
    "KeyringEntry",
    "KeyringSnapshot",
    "MatchInfo",
    "MatchSnapshot",
    "MatchState",
    "MatchViewState",
    "Participation",
    "RealtimeChange",
    "RankBaseModel",
    "ReadyCheck",
    "ReadyCheckStatus",
    "ReadyTimeoutRecord",
    "RoleGroup",
    "RoleMember",
    "Room",
    "RosterSlot",
    "SeatAssignment",
    "SeatLimit",
    "SessionHistory",
    "SessionMeta",
    "SessionRow",
    "SlotLayoutEntry",
    "SlotTemplate",
    "SnapshotBundle",
    "SyncDiagnostics",
    "TurnState",
    "ViewerIdentity",
]
