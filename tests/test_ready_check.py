from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from rankmatch._transport import RemoteFault, RemoteResponse, TableQuery
from rankmatch.exceptions import RankMatchRemoteError, ReadySignalError
from rankmatch.models.identity import AuthSnapshot, KeyringEntry, KeyringSnapshot
from rankmatch.models.session import ReadyCheckStatus
from rankmatch.models.view import MatchViewState
from rankmatch.ready_check import ReadyCheckOrchestrator
from rankmatch.state.store import MatchStore
from rankmatch.view import derive_view_state

GAME = "game-1"
READY_CHECK_PATH = "/api/rank/ready-check"
READY_TIMEOUT_PATH = "/api/rank/ready-timeout"

_KEYRING = KeyringSnapshot(user_id="user-1", entries=[KeyringEntry(id="k1", is_active=True)])


class _Clock:
    def __init__(self, now: int = 10_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _FakeTransport:
    def __init__(self, responses: Mapping[str, RemoteResponse], *, gate: asyncio.Event | None = None) -> None:
        self.responses = dict(responses)
        self._gate = gate
        self.calls: list[tuple[str, dict[str, Any], str | None]] = []

    async def rpc(self, name: str, params: Mapping[str, Any]) -> RemoteResponse:
        raise AssertionError(f"unexpected rpc {name}")

    async def select(self, query: TableQuery) -> RemoteResponse:
        raise AssertionError(f"unexpected select {query.table}")

    async def post_api(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RemoteResponse:
        self.calls.append((path, dict(payload), access_token))
        if self._gate is not None and len(self.calls) == 1:
            await self._gate.wait()
        return self.responses[path]

    def paths(self) -> list[str]:
        return [path for path, _, _ in self.calls]


class _Harness:
    def __init__(
        self,
        transport: _FakeTransport,
        *,
        token: str | None = "tok",
        keyring: KeyringSnapshot | None = _KEYRING,
        on_open: Callable[[MatchViewState], None] | None = None,
    ) -> None:
        self.clock = _Clock()
        self.store = MatchStore(clock=self.clock, background_sweeps=False)
        self.transport = transport
        self.refreshes = 0
        self.orchestrator = ReadyCheckOrchestrator(
            GAME,
            transport=transport,
            store=self.store,
            view=lambda: derive_view_state(
                self.store.read(GAME),
                auth=AuthSnapshot(user_id="user-1"),
                keyring=keyring,
                game_id=GAME,
            ),
            refresh=self._refresh,
            access_token=lambda: token,
            on_open=on_open,
            clock=self.clock,
        )

    async def _refresh(self) -> None:
        self.refreshes += 1

    def seed(self, ready_check: dict[str, Any] | None = None) -> None:
        self.store.set_match_snapshot(GAME, {"match": {"instanceId": "mi-1", "rooms": [{"id": "room-1"}]}})
        self.store.set_session_history(GAME, {"sessionId": "session-1"})
        self.store.set_hero_selection(GAME, {"heroId": "h1", "ownerId": "user-1"})
        if ready_check is not None:
            self.set_ready_check(ready_check)

    def set_ready_check(self, ready_check: dict[str, Any]) -> None:
        extras = self.store.read(GAME).session_meta.extras or {}
        self.store.set_session_meta(GAME, {"extras": {**extras, "readyCheck": ready_check}})

    def extras(self) -> dict[str, Any]:
        return self.store.read(GAME).session_meta.extras or {}


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _timeout_ok() -> RemoteResponse:
    return RemoteResponse(
        status=200,
        data={"assignments": [{"ownerId": "sub-1", "slotIndex": 1}], "placeholders": 0, "diagnostics": {"filled": 1}},
    )


def _pending(expires_at_ms: int) -> dict[str, Any]:
    return {
        "status": "pending",
        "expiresAtMs": expires_at_ms,
        "readyOwnerIds": ["user-1"],
        "missingOwnerIds": ["user-2"],
    }


@pytest.mark.asyncio
async def test_elapsed_window_requests_replacement_exactly_once() -> None:
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: _timeout_ok()}))
    harness.seed(_pending(11_000))
    orchestrator = harness.orchestrator

    assert orchestrator.tick(10_500) == 500
    assert harness.transport.calls == []

    assert orchestrator.tick(11_000) == 0
    orchestrator.tick(11_100)
    await _drain()
    orchestrator.tick(11_250)
    orchestrator.tick(11_500)
    await _drain()

    assert harness.transport.paths() == [READY_TIMEOUT_PATH]
    path, body, token = harness.transport.calls[0]
    assert body == {
        "match_instance_id": "mi-1",
        "game_id": GAME,
        "room_id": "room-1",
        "missing_owner_ids": ["user-2"],
    }
    assert token == "tok"
    timeout = harness.extras()["readyTimeout"]
    assert timeout["assignments"] == [{"ownerId": "sub-1", "slotIndex": 1}]
    assert timeout["triggeredAt"] == harness.clock.now
    assert "readyCheck" in harness.extras()
    assert harness.refreshes == 1


@pytest.mark.asyncio
async def test_later_deadline_fires_again() -> None:
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: _timeout_ok()}))
    harness.seed(_pending(11_000))
    orchestrator = harness.orchestrator

    orchestrator.tick(11_000)
    await _drain()
    harness.set_ready_check(_pending(20_000))
    orchestrator.tick(15_000)
    orchestrator.tick(20_000)
    await _drain()

    assert harness.transport.paths() == [READY_TIMEOUT_PATH, READY_TIMEOUT_PATH]


@pytest.mark.asyncio
async def test_failed_replacement_is_retried_on_next_tick() -> None:
    unavailable = RemoteResponse(status=503, data={"error": "unavailable"}, fault=RemoteFault(status=503))
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: unavailable}))
    harness.seed(_pending(11_000))
    orchestrator = harness.orchestrator

    orchestrator.tick(11_000)
    await _drain()
    assert isinstance(orchestrator.last_error, RankMatchRemoteError)

    harness.transport.responses[READY_TIMEOUT_PATH] = _timeout_ok()
    orchestrator.tick(11_100)
    await _drain()
    orchestrator.tick(11_200)
    await _drain()

    assert harness.transport.paths() == [READY_TIMEOUT_PATH, READY_TIMEOUT_PATH]
    assert harness.extras()["readyTimeout"]["assignments"] == [{"ownerId": "sub-1", "slotIndex": 1}]


@pytest.mark.asyncio
async def test_no_replacement_when_nobody_is_missing() -> None:
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: _timeout_ok()}))
    harness.seed({"status": "pending", "expiresAtMs": 11_000, "readyOwnerIds": ["user-1"]})

    harness.orchestrator.tick(12_000)
    await _drain()

    assert harness.transport.calls == []
    assert await harness.orchestrator.request_timeout_replacement() is None


@pytest.mark.asyncio
async def test_replacement_without_token_records_error() -> None:
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: _timeout_ok()}), token=None)
    harness.seed(_pending(11_000))

    assert await harness.orchestrator.request_timeout_replacement() is None

    assert harness.transport.calls == []
    assert isinstance(harness.orchestrator.last_error, ReadySignalError)
    assert harness.orchestrator.last_error.reason == "expired"


@pytest.mark.asyncio
async def test_replacement_failure_is_recorded() -> None:
    failed = RemoteResponse(
        status=409,
        data={"error": "match_locked", "hint": "Wait for the match to unlock"},
        fault=RemoteFault(code="match_locked", status=409),
    )
    harness = _Harness(_FakeTransport({READY_TIMEOUT_PATH: failed}))
    harness.seed(_pending(11_000))

    assert await harness.orchestrator.request_timeout_replacement() is None

    error = harness.orchestrator.last_error
    assert isinstance(error, RankMatchRemoteError)
    assert error.code == "match_locked"
    assert error.hint == "Wait for the match to unlock"
    assert "readyTimeout" not in harness.extras()


@pytest.mark.asyncio
async def test_auto_open_fires_once_per_ready_window() -> None:
    opened: list[str] = []
    harness = _Harness(_FakeTransport({}), on_open=lambda view: opened.append(view.game_id))
    ready = {"status": "ready", "expiresAtMs": 11_000, "readyOwnerIds": ["user-1", "user-2"]}
    harness.seed(ready)
    orchestrator = harness.orchestrator

    orchestrator.tick(10_100)
    orchestrator.tick(10_200)
    assert opened == [GAME]

    harness.set_ready_check(_pending(30_000))
    orchestrator.tick(10_300)
    harness.set_ready_check({**ready, "expiresAtMs": 30_000})
    orchestrator.tick(10_400)

    assert opened == [GAME, GAME]
    assert harness.transport.calls == []


@pytest.mark.asyncio
async def test_auto_open_waits_for_local_viewer() -> None:
    opened: list[str] = []
    harness = _Harness(_FakeTransport({}), on_open=lambda view: opened.append(view.game_id))
    harness.seed({"status": "ready", "readyOwnerIds": ["user-2"]})

    harness.orchestrator.tick(10_100)

    assert opened == []


@pytest.mark.asyncio
async def test_signal_ready_merges_ready_check_into_extras() -> None:
    payload = {"status": "pending", "expiresAtMs": 25_000, "readyOwnerIds": ["user-1"], "missingOwnerIds": ["user-2"]}
    harness = _Harness(_FakeTransport({READY_CHECK_PATH: RemoteResponse(status=200, data={"readyCheck": payload})}))
    harness.seed()
    harness.store.set_session_meta(GAME, {"extras": {"dropInNotice": "hi"}})

    result = await harness.orchestrator.signal_ready()

    assert result is not None
    assert result.status is ReadyCheckStatus.PENDING
    assert result.missing_owner_ids == ["user-2"]
    assert harness.extras() == {"dropInNotice": "hi", "readyCheck": payload}
    assert harness.store.read(GAME).session_meta.source == "match-ready-ready-check"
    path, body, token = harness.transport.calls[0]
    assert path == READY_CHECK_PATH
    assert body == {
        "session_id": "session-1",
        "game_id": GAME,
        "match_instance_id": "mi-1",
        "window_seconds": 15,
    }
    assert token == "tok"


@pytest.mark.asyncio
async def test_expired_signal_schedules_refresh_and_raises() -> None:
    rejected = RemoteResponse(
        status=401,
        data={"error": "missing_access_token"},
        fault=RemoteFault(code="missing_access_token", status=401),
    )
    harness = _Harness(_FakeTransport({READY_CHECK_PATH: rejected}))
    harness.seed()

    with pytest.raises(ReadySignalError) as exc_info:
        await harness.orchestrator.signal_ready()
    await _drain()

    assert exc_info.value.reason == "expired"
    assert exc_info.value.status_code == 401
    assert harness.orchestrator.last_error is exc_info.value
    assert harness.refreshes == 1


@pytest.mark.asyncio
async def test_forbidden_signal_does_not_refresh() -> None:
    rejected = RemoteResponse(status=403, data={"error": "forbidden"}, fault=RemoteFault(code="forbidden", status=403))
    harness = _Harness(_FakeTransport({READY_CHECK_PATH: rejected}))
    harness.seed()

    with pytest.raises(ReadySignalError):
        await harness.orchestrator.signal_ready()
    await _drain()

    assert harness.refreshes == 0


@pytest.mark.asyncio
async def test_signal_ready_requires_active_key() -> None:
    harness = _Harness(_FakeTransport({}), keyring=None)
    harness.seed()

    assert await harness.orchestrator.signal_ready() is None
    assert harness.transport.calls == []


@pytest.mark.asyncio
async def test_signal_ready_without_session_refreshes_instead() -> None:
    harness = _Harness(_FakeTransport({}))
    harness.store.set_match_snapshot(GAME, {"match": {"instanceId": "mi-1"}})

    assert await harness.orchestrator.signal_ready() is None
    await _drain()

    assert harness.transport.calls == []
    assert harness.refreshes == 1


@pytest.mark.asyncio
async def test_newer_signal_supersedes_in_flight_one() -> None:
    gate = asyncio.Event()
    payload = {"status": "pending", "readyOwnerIds": ["user-1"]}
    transport = _FakeTransport({READY_CHECK_PATH: RemoteResponse(status=200, data={"readyCheck": payload})}, gate=gate)
    harness = _Harness(transport)
    harness.seed()

    first = asyncio.ensure_future(harness.orchestrator.signal_ready())
    await _drain()
    assert harness.orchestrator.signal_busy

    second = await harness.orchestrator.signal_ready()

    assert await first is None
    assert second is not None
    assert second.status is ReadyCheckStatus.PENDING
    assert len(transport.calls) == 2
    assert not harness.orchestrator.signal_busy


@pytest.mark.asyncio
async def test_start_and_stop_tick_loop() -> None:
    harness = _Harness(_FakeTransport({}))
    harness.seed(_pending(20_000))
    orchestrator = harness.orchestrator

    orchestrator.start()
    await _drain()
    orchestrator.stop()

    assert orchestrator.countdown_ms == 10_000
