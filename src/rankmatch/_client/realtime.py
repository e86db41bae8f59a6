"""Internal sync coordination for RankMatchClient.

Owns:
- coalescing concurrent refreshes of one game into a single in-flight sync
- debouncing realtime invalidation bursts before a refresh
- the per-game :class:`~rankmatch.models.realtime.SyncDiagnostics`
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from rankmatch._api.tables import SESSION_META_TABLE
from rankmatch.exceptions import RankMatchRemoteError, RankMatchTransportError
from rankmatch.models.bundle import SnapshotBundle
from rankmatch.models.realtime import ChannelStatus, RealtimeChange, SyncDiagnostics

_STATUS_LABELS: dict[str, str] = {
    ChannelStatus.SUBSCRIBED: "connected",
    ChannelStatus.SUBSCRIBING: "connecting",
    ChannelStatus.CLOSED: "closed",
}

InvalidationEvent = RealtimeChange | Mapping[str, Any] | str | None


class SyncCoordinator:
    def __init__(
        self,
        *,
        sync: Callable[[str], Awaitable[SnapshotBundle | None]],
        debounce: float,
        clock: Callable[[], int],
        logger: logging.Logger,
    ) -> None:
        self._sync = sync
        self._debounce = max(0.0, debounce)
        self._clock = clock
        self._logger = logger
        self._diagnostics: dict[str, SyncDiagnostics] = {}
        self._refreshes: dict[str, asyncio.Task[SyncDiagnostics]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def diagnostics(self, game_id: str) -> SyncDiagnostics:
        return self._diagnostics.get(game_id) or SyncDiagnostics()

    def _patch(self, game_id: str, **changes: Any) -> SyncDiagnostics:
        updated = self.diagnostics(game_id).model_copy(update=changes)
        self._diagnostics[game_id] = updated
        return updated

    def remember(self, game_id: str, bundle: SnapshotBundle) -> None:
        """Keep the latest ids learned from a reconciled bundle."""
        current = self.diagnostics(game_id)
        self._patch(
            game_id,
            session_id=bundle.session_id if bundle.session_id is not None else current.session_id,
            room_id=bundle.room_id if bundle.room_id is not None else current.room_id,
            slot_template_version=(
                bundle.slot_template_version
                if bundle.slot_template_version is not None
                else current.slot_template_version
            ),
            slot_template_updated_at=(
                bundle.slot_template_updated_at
                if bundle.slot_template_updated_at is not None
                else current.slot_template_updated_at
            ),
        )

    def seed(self, game_id: str, *, session_id: str | None, room_id: str | None) -> None:
        """Start from ids found in the persisted cache, if none are known yet."""
        current = self.diagnostics(game_id)
        self._patch(
            game_id,
            session_id=current.session_id or session_id,
            room_id=current.room_id or room_id,
        )

    def forget(self, game_id: str) -> None:
        timer = self._timers.pop(game_id, None)
        if timer is not None:
            timer.cancel()
        task = self._refreshes.pop(game_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._diagnostics.pop(game_id, None)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._refreshes.values():
            if not task.done():
                task.cancel()
        self._refreshes.clear()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, game_id: str) -> asyncio.Task[SyncDiagnostics]:
        """Return the in-flight refresh of *game_id*, starting one if needed."""
        task = self._refreshes.get(game_id)
        if task is not None and not task.done():
            return task
        self._patch(game_id, pending_refresh=True, last_refresh_requested_at=self._clock())
        task = asyncio.ensure_future(self._run_refresh(game_id))
        self._refreshes[game_id] = task
        task.add_done_callback(lambda done: self._refresh_done(game_id, done))
        return task

    def _refresh_done(self, game_id: str, task: asyncio.Task[SyncDiagnostics]) -> None:
        if self._refreshes.get(game_id) is task:
            self._refreshes.pop(game_id, None)

    async def _run_refresh(self, game_id: str) -> SyncDiagnostics:
        try:
            bundle = await self._sync(game_id)
        except RankMatchRemoteError as exc:
            self._logger.warning("Sync of game %s failed: %s (hint: %s)", game_id, exc, exc.hint)
            return self._patch(
                game_id,
                pending_refresh=False,
                last_refresh_at=self._clock(),
                last_refresh_source="snapshot",
                last_refresh_error=str(exc) or "load_failed",
                last_refresh_hint=exc.hint or self.diagnostics(game_id).last_refresh_hint,
            )
        except RankMatchTransportError as exc:
            self._logger.warning("Sync of game %s failed: %s", game_id, exc)
            return self._patch(
                game_id,
                pending_refresh=False,
                last_refresh_at=self._clock(),
                last_refresh_source="snapshot",
                last_refresh_error=str(exc) or "load_failed",
            )
        except BaseException:
            self._patch(game_id, pending_refresh=False)
            raise

        return self._patch(
            game_id,
            pending_refresh=False,
            last_refresh_at=self._clock(),
            last_refresh_source="snapshot" if bundle is not None else "reset",
            last_refresh_error=None,
            last_refresh_hint=None,
        )

    def _spawn_refresh(self, game_id: str) -> None:
        task = self.refresh(game_id)
        task.add_done_callback(self._log_unexpected)

    def _log_unexpected(self, task: asyncio.Task[SyncDiagnostics]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Background sync failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, game_id: str, event: InvalidationEvent = None) -> bool:
        """Handle a realtime notification for *game_id*.

        Returns ``True`` when a refresh was scheduled or started.
        """

        if isinstance(event, str):
            return self._on_status(game_id, event)

        change: RealtimeChange | None
        if isinstance(event, RealtimeChange):
            change = event
        elif isinstance(event, Mapping):
            change = RealtimeChange.model_validate(dict(event))
        else:
            change = None

        if change is not None and change.table == SESSION_META_TABLE:
            session_id = self.diagnostics(game_id).session_id
            if not session_id or change.session_id != session_id:
                self._logger.debug("Ignoring session meta change for another session of game %s", game_id)
                return False

        if game_id in self._timers:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running event loop; invalidation of game %s dropped", game_id)
            return False

        now = self._clock()
        last_event = None
        if change is not None:
            last_event = {
                "event": change.event_type or None,
                "table": change.table or None,
                "commitTimestamp": change.commit_timestamp,
                "receivedAt": now,
            }
        self._patch(game_id, realtime_status="connected", realtime_error=None, last_event=last_event)
        self._timers[game_id] = loop.call_later(self._debounce, self._fire, game_id)
        return True

    def _fire(self, game_id: str) -> None:
        self._timers.pop(game_id, None)
        self._spawn_refresh(game_id)

    def _on_status(self, game_id: str, status: str) -> bool:
        normalized = status.strip().upper()
        label = _STATUS_LABELS.get(normalized, normalized.lower())
        if normalized != ChannelStatus.CHANNEL_ERROR:
            self._patch(game_id, realtime_status=label)
            return False
        self._logger.warning("Realtime channel error for game %s; refreshing", game_id)
        self._patch(game_id, realtime_status=label, realtime_error={"status": normalized})
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._spawn_refresh(game_id)
        return True
