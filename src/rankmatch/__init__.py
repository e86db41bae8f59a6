"""rankmatch - Async client keeping rank match readiness state in sync."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("rankmatch")
except PackageNotFoundError:
    __version__ = "0+local"
from rankmatch.client import RankMatchClient
from rankmatch.config import RankMatchConfig
from rankmatch.exceptions import (
    AmbiguousOverloadError,
    CredentialExpiredError,
    LatestSessionUnavailableError,
    OrderedSetAggregateError,
    PermissionDeniedError,
    ProcedureMissingError,
    RankMatchConfigError,
    RankMatchError,
    RankMatchRemoteError,
    RankMatchTransportError,
    ReadySignalError,
    ReturnTypeMismatchError,
    SqlSyntaxError,
    TransientServerError,
)
from rankmatch.models import (
    AsyncFillSnapshot,
    AuthSnapshot,
    ChannelStatus,
    KeyringSnapshot,
    MatchState,
    MatchViewState,
    ReadyCheck,
    ReadyCheckStatus,
    RealtimeChange,
    RosterSlot,
    SessionMeta,
    SlotTemplate,
    SnapshotBundle,
    SyncDiagnostics,
)
from rankmatch.ready_check import ReadyCheckOrchestrator
from rankmatch.state.store import MatchStore

__all__ = [
    "__version__",
    "AmbiguousOverloadError",
    "AsyncFillSnapshot",
    "AuthSnapshot",
    "ChannelStatus",
    "CredentialExpiredError",
    "KeyringSnapshot",
    "LatestSessionUnavailableError",
    "MatchState",
    "MatchStore",
    "MatchViewState",
    "OrderedSetAggregateError",
    "PermissionDeniedError",
    "ProcedureMissingError",
    "RankMatchClient",
    "RankMatchConfig",
    "RankMatchConfigError",
    "RankMatchError",
    "RankMatchRemoteError",
    "RankMatchTransportError",
    "ReadyCheck",
    "ReadyCheckOrchestrator",
    "ReadyCheckStatus",
    "ReadySignalError",
    "RealtimeChange",
    "ReturnTypeMismatchError",
    "RosterSlot",
    "SessionMeta",
    "SlotTemplate",
    "SnapshotBundle",
    "SqlSyntaxError",
    "SyncDiagnostics",
    "TransientServerError",
]
