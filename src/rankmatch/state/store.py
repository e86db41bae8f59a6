"""Per-match state cache.

This is the only component allowed to write match state.  Reconciled
snapshots and local mutations reach it through :meth:`MatchStore.update` or
one of the entity setters built on top of it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from rankmatch.assignment import build_async_fill_snapshot
from rankmatch.ingestion.normalize import json_clone, safe_int
from rankmatch.ingestion.sanitize import (
    explicit_updated_at,
    sanitize_hero_map,
    sanitize_hero_selection,
    sanitize_match_snapshot,
    sanitize_match_state,
    sanitize_participant_pool,
    sanitize_roster,
    sanitize_session_history,
    sanitize_session_meta,
    sanitize_slot_template,
    structurally_equal,
)
from rankmatch.models.match import MatchState, Participation
from rankmatch.state.events import NO_CHANGE, ChangeSummary, Listener, StateChange, _NoChange
from rankmatch.state.persistence import MemoryStorage, StateStorage, storage_key
from rankmatch.state.policy import is_expired, resolve_session_meta_write, should_accept_slot_template

_logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 6 * 60 * 60
SWEEP_INTERVAL_SECONDS = 5 * 60

PARTICIPATION_SOURCE = "match-participation"

Mutator = Callable[[MatchState], "MatchState | _NoChange | None"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _game_key(game_id: Any) -> str:
    return str(game_id or "").strip()


class MatchStore:
    """In-memory cache of :class:`MatchState` per game id, with persistence.

    The in-memory entry is authoritative; persistence failures are logged and
    otherwise ignored.  Every accepted update persists the full state and
    notifies subscribers synchronously with a deep copy.

    Parameters
    ----------
    storage : StateStorage or None
        Durable backend.  Defaults to :class:`MemoryStorage`.
    clock : callable
        Returns the current time in epoch milliseconds.
    ttl : float
        Seconds after which an untouched entry is evicted by the sweep.
    sweep_interval : float
        Seconds between periodic sweeps.
    background_sweeps : bool
        Whether :meth:`init` starts the periodic sweep task.
    """

    def __init__(
        self,
        *,
        storage: StateStorage | None = None,
        clock: Callable[[], int] = _now_ms,
        ttl: float = SESSION_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        background_sweeps: bool = True,
        default_host_role_limit: int = 3,
    ) -> None:
        self._storage: StateStorage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._ttl_ms = int(max(0.0, ttl) * 1000)
        self._sweep_interval = sweep_interval
        self._background_sweeps = background_sweeps
        self._default_host_role_limit = default_host_role_limit
        self._entries: dict[str, MatchState] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._last_sweep_ms = 0
        self._sweep_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Start the periodic sweep when an event loop is running."""
        if not self._background_sweeps or self._sweep_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("No running event loop; periodic sweeps disabled")
            return
        self.sweep(force=True)
        self._sweep_task = loop.create_task(self._sweep_loop())

    def dispose(self) -> None:
        """Cancel the sweep task and drop all listeners."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        self._listeners.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception:
                _logger.warning("Match state sweep failed", exc_info=True)

    # ------------------------------------------------------------------
    # Core entry points
    # ------------------------------------------------------------------

    def _hydrate(self, key: str) -> MatchState:
        try:
            record = self._storage.load(storage_key(key))
        except (OSError, ValueError):
            _logger.warning("Failed to load persisted match state for %s", key, exc_info=True)
            record = None
        return sanitize_match_state(record) if record is not None else MatchState()

    def _entry(self, key: str) -> MatchState:
        self._maybe_sweep()
        state = self._entries.get(key)
        if state is None:
            state = self._hydrate(key)
            self._entries[key] = state
        return state

    def _persist(self, key: str, state: MatchState) -> None:
        try:
            self._storage.save(storage_key(key), state.model_dump(mode="json"))
        except (OSError, TypeError, ValueError):
            _logger.warning("Failed to persist match state for %s", key, exc_info=True)

    def _notify(self, key: str, state: MatchState) -> None:
        listeners = self._listeners.get(key)
        if not listeners:
            return
        summary = ChangeSummary.of(state)
        for listener in list(listeners):
            change = StateChange(
                game_key=storage_key(key),
                game_id=key,
                state=state.model_copy(deep=True),
                summary=summary,
            )
            try:
                listener(change)
            except Exception:
                _logger.warning("Match state listener failed for %s", key, exc_info=True)

    def read(self, game_id: str) -> MatchState:
        """Return a deep copy of the state of *game_id*, hydrating it if needed."""
        key = _game_key(game_id)
        if not key:
            return MatchState()
        return self._entry(key).model_copy(deep=True)

    def update(self, game_id: str, mutate: Mutator) -> MatchState:
        """Apply *mutate* to the current state of *game_id*.

        ``mutate`` receives a deep copy and returns the next state, or
        ``NO_CHANGE`` (or ``None``) to leave the entry untouched without
        persisting or notifying.  Accepted states are stamped with the
        store clock.
        """

        key = _game_key(game_id)
        if not key:
            return MatchState()
        current = self._entry(key)
        result = mutate(current.model_copy(deep=True))
        if result is None or isinstance(result, _NoChange):
            return current.model_copy(deep=True)

        next_state = result.model_copy(update={"updated_at": self._clock()})
        self._entries[key] = next_state
        self._persist(key, next_state)
        self._notify(key, next_state)
        return next_state.model_copy(deep=True)

    def subscribe(self, game_id: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *game_id*; returns an unsubscribe callable."""
        key = _game_key(game_id)
        if not key or not callable(listener):
            return lambda: None
        self._listeners.setdefault(key, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if not listeners:
                return
            with contextlib.suppress(ValueError):
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)

        return _unsubscribe

    def clear(self, game_id: str) -> None:
        """Drop the entry and its persisted record, then emit the empty state."""
        key = _game_key(game_id)
        if not key:
            return
        self._entries.pop(key, None)
        try:
            self._storage.remove(storage_key(key))
        except OSError:
            _logger.warning("Failed to remove persisted match state for %s", key, exc_info=True)
        self._notify(key, MatchState())

    def consume(self, game_id: str) -> MatchState:
        """Read then clear."""
        state = self.read(game_id)
        self.clear(game_id)
        return state

    def sweep(self, *, force: bool = False) -> list[str]:
        """Evict entries whose ``updated_at`` is older than the TTL.

        Unforced sweeps are throttled to half the sweep interval and skipped
        when the TTL is zero.  Returns the evicted game ids.
        """

        now = self._clock()
        if not force:
            if self._ttl_ms == 0:
                return []
            if now - self._last_sweep_ms < self._sweep_interval * 1000 / 2:
                return []
        self._last_sweep_ms = now

        evicted: list[str] = []
        for key, state in list(self._entries.items()):
            if not state.updated_at:
                # Never written; nothing to clear.
                self._entries.pop(key, None)
                continue
            if is_expired(state.updated_at, now_ms=now, ttl_ms=self._ttl_ms):
                evicted.append(key)
        for key in evicted:
            _logger.debug("Evicting stale match state for %s", key)
            self.clear(key)
        return evicted

    def _maybe_sweep(self) -> None:
        if self._background_sweeps:
            self.sweep()

    # ------------------------------------------------------------------
    # Entity setters
    # ------------------------------------------------------------------

    def set_participation(self, game_id: str, payload: Mapping[str, Any] | None = None) -> MatchState:
        """Replace participation and rebuild the async-fill snapshot.

        ``payload`` accepts ``roster``, ``heroOptions``, ``heroMap``,
        ``participantPool``, ``realtimeMode``, ``hostOwnerId`` and
        ``hostRoleLimit`` (camelCase or snake_case).
        """

        data = dict(payload or {})
        roster = sanitize_roster(data.get("roster"))
        hero_options = [str(option) for option in data.get("heroOptions") or data.get("hero_options") or [] if option]
        pool = sanitize_participant_pool(data.get("participantPool") or data.get("participant_pool"))
        hero_map = sanitize_hero_map(data.get("heroMap") or data.get("hero_map"))
        realtime_mode = data.get("realtimeMode", data.get("realtime_mode", data.get("mode")))
        host_owner_id = data.get("hostOwnerId", data.get("host_owner_id"))
        host_role_limit = safe_int(data.get("hostRoleLimit", data.get("host_role_limit")))
        now = self._clock()

        participation = Participation(
            roster=roster,
            hero_options=hero_options,
            hero_map=hero_map,
            participant_pool=pool,
            updated_at=now,
        )
        async_fill = build_async_fill_snapshot(
            roster,
            pool,
            realtime_mode=realtime_mode,
            host_owner_id=host_owner_id,
            host_role_limit=host_role_limit,
            now_ms=now,
            default_cap=self._default_host_role_limit,
        )

        def _mutate(state: MatchState) -> MatchState | _NoChange:
            update: dict[str, Any] = {}
            if not structurally_equal(state.participation, participation):
                update["participation"] = participation
            sanitized = sanitize_session_meta(
                {"async_fill": async_fill, "source": PARTICIPATION_SOURCE},
                state.session_meta,
                now_ms=now,
            )
            session_meta = resolve_session_meta_write(
                state.session_meta, sanitized, explicit_updated_at=None, now_ms=now
            )
            if session_meta is not None:
                update["session_meta"] = session_meta
            return state.model_copy(update=update) if update else NO_CHANGE

        return self.update(game_id, _mutate)

    def set_hero_selection(self, game_id: str, payload: Mapping[str, Any] | None = None) -> MatchState:
        selection = sanitize_hero_selection(payload, now_ms=self._clock())
        return self.update(game_id, lambda state: state.model_copy(update={"hero_selection": selection}))

    def set_match_snapshot(self, game_id: str, payload: Any = None) -> MatchState:
        snapshot = sanitize_match_snapshot(payload, now_ms=self._clock())

        def _mutate(state: MatchState) -> MatchState | _NoChange:
            if structurally_equal(state.match_snapshot, snapshot, ignore=("created_at",)):
                return NO_CHANGE
            return state.model_copy(update={"match_snapshot": snapshot})

        return self.update(game_id, _mutate)

    def set_slot_template(self, game_id: str, payload: Any) -> MatchState:
        """Write a slot template unless an equal-or-newer version is cached."""
        now = self._clock()

        def _mutate(state: MatchState) -> MatchState | _NoChange:
            incoming = sanitize_slot_template(payload, state.slot_template, now_ms=now)
            if payload is not None and not should_accept_slot_template(state.slot_template, incoming):
                _logger.debug(
                    "Ignoring stale slot template v%s (cached v%s)", incoming.version, state.slot_template.version
                )
                return NO_CHANGE
            return state.model_copy(update={"slot_template": incoming})

        return self.update(game_id, _mutate)

    def set_session_meta(self, game_id: str, payload: Any) -> MatchState:
        """Merge a session-meta patch.

        The write is a no-op unless it changes a structural field, advances
        the turn-state timestamp or carries an explicit newer ``updatedAt``.
        """

        now = self._clock()
        explicit = explicit_updated_at(payload)

        def _mutate(state: MatchState) -> MatchState | _NoChange:
            previous = state.session_meta
            sanitized = sanitize_session_meta(payload, previous, now_ms=now)
            resolved = resolve_session_meta_write(previous, sanitized, explicit_updated_at=explicit, now_ms=now)
            if resolved is None:
                return NO_CHANGE
            return state.model_copy(update={"session_meta": resolved})

        return self.update(game_id, _mutate)

    def set_session_history(self, game_id: str, payload: Any) -> MatchState:
        now = self._clock()

        def _mutate(state: MatchState) -> MatchState | _NoChange:
            history = sanitize_session_history(payload, state.session_history, now_ms=now)
            if structurally_equal(state.session_history, history):
                return NO_CHANGE
            return state.model_copy(update={"session_history": history})

        return self.update(game_id, _mutate)

    def set_post_check(self, game_id: str, payload: Mapping[str, Any] | None) -> MatchState:
        value = json_clone(payload) if isinstance(payload, Mapping) else None
        return self.update(game_id, lambda state: state.model_copy(update={"post_check": value}))

    def set_confirmation(self, game_id: str, payload: Mapping[str, Any] | None) -> MatchState:
        """Record a confirmation payload; a falsy payload is ignored."""
        if not payload or not isinstance(payload, Mapping):
            return self.read(game_id)
        value = json_clone(payload)
        return self.update(game_id, lambda state: state.model_copy(update={"confirmation": value}))

