"""High-level async client for rank match readiness."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from rankmatch._client import commands as _commands
from rankmatch._client import reads as _reads
from rankmatch._client.realtime import InvalidationEvent, SyncCoordinator
from rankmatch._transport import RestTransport, Transport
from rankmatch.config import RankMatchConfig
from rankmatch.exceptions import RankMatchError
from rankmatch.models.bundle import SnapshotBundle
from rankmatch.models.identity import AuthSnapshot, KeyringSnapshot
from rankmatch.models.match import Room
from rankmatch.models.realtime import SyncDiagnostics
from rankmatch.models.session import ReadyCheck, ReadyTimeoutRecord
from rankmatch.models.view import MatchViewState
from rankmatch.ready_check import ReadyCheckOrchestrator
from rankmatch.state.events import Listener
from rankmatch.state.persistence import JsonFileStorage, StateStorage
from rankmatch.state.store import MatchStore

_logger = logging.getLogger(__name__)

AuthProvider = Callable[[], AuthSnapshot | Mapping[str, Any] | None]
KeyringProvider = Callable[[], KeyringSnapshot | Mapping[str, Any] | None]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class RankMatchClient:
    """Async client keeping the readiness state of rank matches.

    Usage::

        async with RankMatchClient(config, auth=read_auth) as client:
            await client.refresh(game_id)
            view = client.view_state(game_id)

    Auth and keyring snapshots are read through the injected providers
    each time they are needed; the client never signs users in.
    """

    def __init__(
        self,
        config: RankMatchConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        storage: StateStorage | None = None,
        auth: AuthProvider | None = None,
        keyring: KeyringProvider | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._injected_transport = transport
        self._transport: Transport | None = None
        self._auth_provider = auth
        self._keyring_provider = keyring
        self._clock = clock

        if storage is None and config.storage_dir:
            storage = JsonFileStorage(config.storage_dir)
        self._store = MatchStore(
            storage=storage,
            clock=clock,
            ttl=config.session_ttl,
            sweep_interval=config.sweep_interval,
            background_sweeps=config.background_sweeps,
            default_host_role_limit=config.host_role_limit_default,
        )
        self._sync = SyncCoordinator(
            sync=self.sync,
            debounce=config.invalidate_debounce,
            clock=clock,
            logger=_logger,
        )
        self._rooms: dict[str, Room] = {}
        self._orchestrators: dict[str, ReadyCheckOrchestrator] = {}

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RankMatchClient:
        if self._injected_transport is not None:
            self._transport = self._injected_transport
        else:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = RestTransport(self._config, self._http_session, access_token=self._access_token)
        self._store.init()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        for orchestrator in self._orchestrators.values():
            orchestrator.stop()
        self._orchestrators.clear()
        self._sync.close()
        self._store.dispose()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    @property
    def config(self) -> RankMatchConfig:
        return self._config

    @property
    def store(self) -> MatchStore:
        """The match state cache backing this client."""
        return self._store

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise RankMatchError("Client not initialized. Use 'async with RankMatchClient(...) as client:'")
        return self._transport

    def _auth_snapshot(self) -> AuthSnapshot | None:
        value = self._auth_provider() if self._auth_provider is not None else None
        if value is None or isinstance(value, AuthSnapshot):
            return value
        return AuthSnapshot.model_validate(dict(value))

    def _keyring_snapshot(self) -> KeyringSnapshot | None:
        value = self._keyring_provider() if self._keyring_provider is not None else None
        if value is None or isinstance(value, KeyringSnapshot):
            return value
        return KeyringSnapshot.model_validate(dict(value))

    def _access_token(self) -> str | None:
        auth = self._auth_snapshot()
        return (auth.access_token or None) if auth is not None else None

    def _remember_bundle(self, game_id: str, bundle: SnapshotBundle) -> None:
        self._sync.remember(game_id, bundle)
        if bundle.room is not None:
            self._rooms[game_id] = bundle.room

    def _seed_from_cache(self, game_id: str) -> None:
        state = self._store.read(game_id)
        room_id = None
        match = state.match_snapshot.match if state.match_snapshot is not None else None
        if match is not None and match.rooms:
            room_id = match.rooms[0].id
        self._sync.seed(game_id, session_id=state.session_history.session_id, room_id=room_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_snapshot(self, game_id: str) -> SnapshotBundle | None:
        """Reconcile *game_id* with the backend without touching the cache."""
        return await _reads.load_snapshot(self, game_id=game_id)

    async def sync(self, game_id: str) -> SnapshotBundle | None:
        """Reconcile *game_id* and fold the result into the cache.

        Raises the classified :class:`~rankmatch.exceptions.RankMatchRemoteError`
        when reconciliation fails; the cache is left untouched in that case.
        """
        return await _reads.sync(self, game_id=game_id)

    async def refresh(self, game_id: str) -> MatchViewState:
        """Sync *game_id*, sharing an in-flight sync when one is running.

        Failures are recorded in :meth:`diagnostics` instead of being raised.
        """
        if not self._sync.diagnostics(game_id).session_id:
            self._seed_from_cache(game_id)
        await asyncio.shield(self._sync.refresh(game_id))
        return self.view_state(game_id)

    def invalidate(self, game_id: str, event: InvalidationEvent = None) -> bool:
        """Report a realtime change or channel status for *game_id*.

        Row changes are debounced into one refresh; changes to another
        session's meta are ignored; ``CHANNEL_ERROR`` refreshes at once.
        """
        return self._sync.invalidate(game_id, event)

    def view_state(self, game_id: str) -> MatchViewState:
        return _reads.view_state(self, game_id=game_id)

    def diagnostics(self, game_id: str) -> SyncDiagnostics:
        return self._sync.diagnostics(game_id)

    def subscribe(self, game_id: str, listener: Listener) -> Callable[[], None]:
        return self._store.subscribe(game_id, listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def ready_check(
        self,
        game_id: str,
        *,
        on_open: Callable[[MatchViewState], None] | None = None,
    ) -> ReadyCheckOrchestrator:
        """The ready-check orchestrator of *game_id*, created on first use."""
        return _commands.ready_check(self, game_id=game_id, on_open=on_open)

    async def request_ready_signal(self, game_id: str) -> ReadyCheck | None:
        return await _commands.request_ready_signal(self, game_id=game_id)

    async def request_ready_timeout(self, game_id: str) -> ReadyTimeoutRecord | None:
        return await _commands.request_ready_timeout(self, game_id=game_id)

    def clear(self, game_id: str) -> None:
        """Forget everything known about *game_id*, cached state included."""
        _commands.clear(self, game_id=game_id)
