"""Ready-check orchestration for one match.

The backend owns the ready-check window; this module sends the local
viewer's ready signal, counts the window down and, once it elapses with
owners still missing, asks the backend to replace them with stand-ins.
Results are folded back into ``session_meta.extras`` through the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from rankmatch._api.ready_check import post_ready_signal, post_ready_timeout
from rankmatch._transport import Transport
from rankmatch.config import clamp_ready_window
from rankmatch.exceptions import RankMatchRemoteError, RankMatchTransportError, ReadySignalError
from rankmatch.ingestion.sanitize import sanitize_ready_check
from rankmatch.models.session import ReadyCheck, ReadyCheckStatus, ReadyTimeoutRecord
from rankmatch.models.view import MatchViewState
from rankmatch.state.store import MatchStore

_logger = logging.getLogger(__name__)

READY_CHECK_SOURCE = "match-ready-ready-check"
READY_TIMEOUT_SOURCE = "match-ready-timeout"

DEFAULT_TICK_INTERVAL = 0.25


def _now_ms() -> int:
    return int(time.time() * 1000)


def _timeout_extras(record: ReadyTimeoutRecord) -> dict[str, Any]:
    return {
        "triggeredAt": record.triggered_at,
        "assignments": record.assignments,
        "placeholders": record.placeholders,
        "diagnostics": record.diagnostics,
    }


class ReadyCheckOrchestrator:
    """Drive the ready-check window of one game.

    Parameters
    ----------
    game_id : str
        Game whose match is being readied.
    transport : Transport
        Backend transport used for the ready and timeout requests.
    store : MatchStore
        Cache receiving ``extras.readyCheck`` / ``extras.readyTimeout``.
    view : callable
        Returns the current :class:`MatchViewState` of the game.
    refresh : callable
        Coroutine function re-syncing the game from the backend.
    access_token : callable
        Returns the caller's access token, or ``None`` when signed out.
    on_open : callable or None
        Invoked once per ready window when the window is ``ready`` and the
        local viewer is among the ready owners.
    window_seconds : int
        Requested window length, clamped to the range the backend accepts.
    tick_interval : float
        Seconds between countdown ticks while :meth:`start` is running.
    clock : callable
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        game_id: str,
        *,
        transport: Transport,
        store: MatchStore,
        view: Callable[[], MatchViewState],
        refresh: Callable[[], Awaitable[Any]],
        access_token: Callable[[], str | None],
        on_open: Callable[[MatchViewState], None] | None = None,
        window_seconds: int = 15,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._game_id = game_id
        self._transport = transport
        self._store = store
        self._view = view
        self._refresh = refresh
        self._access_token = access_token
        self.on_open = on_open
        self._window_seconds = clamp_ready_window(window_seconds)
        self._tick_interval = tick_interval
        self._clock = clock

        self._signal_task: asyncio.Task[ReadyCheck | None] | None = None
        self._timeout_task: asyncio.Task[ReadyTimeoutRecord | None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        # Deadline the timeout replacement already fired for.
        self._timeout_latch: int | None = None
        self._opened = False

        self.countdown_ms: int | None = None
        self.last_error: Exception | None = None

    @property
    def game_id(self) -> str:
        return self._game_id

    @property
    def signal_busy(self) -> bool:
        return self._signal_task is not None and not self._signal_task.done()

    @property
    def timeout_busy(self) -> bool:
        return self._timeout_task is not None and not self._timeout_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking every ``tick_interval`` seconds."""
        if self._tick_task is not None and not self._tick_task.done():
            return
        self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())

    def stop(self) -> None:
        """Cancel the tick loop and every outstanding request."""
        for task in (self._tick_task, self._signal_task, self._timeout_task, *self._background):
            if task is not None and not task.done():
                task.cancel()
        self._tick_task = None
        self._signal_task = None
        self._timeout_task = None
        self._background.clear()

    async def _tick_loop(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                _logger.warning("Ready-check tick failed for game %s", self._game_id, exc_info=True)
            await asyncio.sleep(self._tick_interval)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Ready-check refresh failed for game %s: %s", self._game_id, exc)

    def _schedule_refresh(self) -> None:
        self._spawn(self._refresh())

    def _merge_extras(self, patch: dict[str, Any], *, source: str) -> None:
        current = self._store.read(self._game_id).session_meta.extras or {}
        self._store.set_session_meta(self._game_id, {"extras": {**current, **patch}, "source": source})

    # ------------------------------------------------------------------
    # Ready signal
    # ------------------------------------------------------------------

    async def signal_ready(self) -> ReadyCheck | None:
        """Tell the backend the local viewer is ready.

        A newer call cancels the request still in flight; the cancelled
        call returns ``None`` without reporting an error.

        Returns
        -------
        ReadyCheck or None
            The window as reported by the backend, or ``None`` when start is
            not allowed, the session is unknown or the call was superseded.

        Raises
        ------
        ReadySignalError
            The backend rejected the signal.  A refresh has already been
            scheduled when ``needs_refresh`` is true.
        """

        view = self._view()
        if view.snapshot is None or not view.has_active_key:
            _logger.debug("Ready signal skipped for game %s: start not allowed", self._game_id)
            return None
        if not view.session_id:
            _logger.warning(
                "Ready signal blocked for game %s: missing session id (match instance %s)",
                self._game_id,
                view.match_instance_id or None,
            )
            self._schedule_refresh()
            return None

        previous = self._signal_task
        if previous is not None and not previous.done():
            previous.cancel()

        self.last_error = None
        task = asyncio.ensure_future(self._send_ready_signal(view))
        self._signal_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                _logger.debug("Ready signal for game %s superseded", self._game_id)
                return None
            raise
        finally:
            if self._signal_task is task:
                self._signal_task = None

    async def _send_ready_signal(self, view: MatchViewState) -> ReadyCheck | None:
        try:
            payload = await post_ready_signal(
                self._transport,
                session_id=view.session_id,
                game_id=self._game_id,
                match_instance_id=view.match_instance_id or None,
                window_seconds=self._window_seconds,
                access_token=self._access_token(),
            )
        except ReadySignalError as exc:
            _logger.warning("Ready signal failed for game %s: %s (reason=%s)", self._game_id, exc, exc.reason)
            self.last_error = exc
            if exc.needs_refresh:
                self._schedule_refresh()
            raise

        if payload is None:
            return None
        self._merge_extras({"readyCheck": payload}, source=READY_CHECK_SOURCE)
        return sanitize_ready_check(payload)

    # ------------------------------------------------------------------
    # Countdown, timeout latch and auto-open
    # ------------------------------------------------------------------

    def tick(self, now_ms: int | None = None) -> int | None:
        """Advance the countdown and fire the one-shot actions it gates.

        Returns the remaining window in milliseconds, or ``None`` when no
        window is counting down.
        """

        now = self._clock() if now_ms is None else now_ms
        view = self._view()
        ready_check = view.ready_check

        if ready_check.window_active and ready_check.expires_at_ms:
            self.countdown_ms = max(0, ready_check.expires_at_ms - now)
        else:
            self.countdown_ms = None

        self._evaluate_timeout(view)
        self._evaluate_auto_open(view)
        return self.countdown_ms

    def _evaluate_timeout(self, view: MatchViewState) -> None:
        ready_check = view.ready_check
        if not ready_check.window_active or ready_check.status == ReadyCheckStatus.READY:
            self._timeout_latch = None
            return
        if self.timeout_busy:
            return
        if not ready_check.missing_owner_ids:
            self._timeout_latch = None
            return
        if self.countdown_ms is None or self.countdown_ms > 0:
            self._timeout_latch = None
            return
        if self._timeout_latch == ready_check.expires_at_ms:
            return

        self._timeout_latch = ready_check.expires_at_ms
        _logger.info(
            "Ready window for game %s elapsed with %d owner(s) missing",
            self._game_id,
            len(ready_check.missing_owner_ids),
        )
        self._timeout_task = asyncio.ensure_future(self._replace_missing(view))

    def _evaluate_auto_open(self, view: MatchViewState) -> None:
        if not view.allow_start:
            self._opened = False
            return
        if view.ready_check.status != ReadyCheckStatus.READY:
            self._opened = False
            return
        if not view.viewer_ready or self._opened:
            return
        self._opened = True
        if self.on_open is not None:
            try:
                self.on_open(view)
            except Exception:
                _logger.warning("Ready-check open callback failed for game %s", self._game_id, exc_info=True)

    async def request_timeout_replacement(self) -> ReadyTimeoutRecord | None:
        """Replace the owners still missing from the current window.

        A no-op returning ``None`` when start is not allowed, the match
        instance is unknown or nobody is missing.
        """
        return await self._replace_missing(self._view())

    async def _replace_missing(self, view: MatchViewState) -> ReadyTimeoutRecord | None:
        missing = view.ready_check.missing_owner_ids
        if not view.allow_start or not view.match_instance_id or not self._game_id or not missing:
            _logger.debug("Ready-timeout replacement skipped for game %s", self._game_id)
            return None

        token = self._access_token()
        if not token:
            self.last_error = ReadySignalError("Ready-timeout replacement needs a signed-in user", reason="expired")
            _logger.warning("Ready-timeout replacement for game %s skipped: no access token", self._game_id)
            self._timeout_latch = None
            return None

        try:
            record = await post_ready_timeout(
                self._transport,
                match_instance_id=view.match_instance_id,
                game_id=self._game_id,
                room_id=view.room.id if view.room is not None else None,
                missing_owner_ids=missing,
                access_token=token,
                now_ms=self._clock(),
            )
        except (RankMatchRemoteError, RankMatchTransportError) as exc:
            _logger.error("Ready-timeout replacement failed for game %s: %s", self._game_id, exc)
            self.last_error = exc
            self._timeout_latch = None
            return None

        self._merge_extras({"readyTimeout": _timeout_extras(record)}, source=READY_TIMEOUT_SOURCE)
        self._schedule_refresh()
        return record
