from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from rankmatch import RankMatchClient, RankMatchConfig
from rankmatch._api.tables import ROSTER_TABLE, SESSION_META_TABLE
from rankmatch._transport import RemoteFault, RemoteResponse, TableQuery
from rankmatch.exceptions import RankMatchError, ReturnTypeMismatchError
from rankmatch.models.match import MatchState
from rankmatch.models.session import ReadyCheckStatus
from rankmatch.state.events import StateChange

GAME = "game-1"
SNAPSHOT = "fetch_rank_match_ready_snapshot"

_ENVELOPE = {
    "roster": [
        {
            "slot_index": 0,
            "role": "attack",
            "owner_id": "host",
            "hero_id": "h1",
            "hero_name": "Nova",
            "room_id": "room-1",
            "match_instance_id": "mi-1",
            "slot_template_version": 1,
        }
    ],
    "room": {"id": "room-1", "mode": "rank", "owner_id": "host"},
    "session": {"id": "session-1", "status": "active"},
    "session_meta": {"updated_at": 1_000},
}

_RETURN_TYPE_FAULT = RemoteResponse(
    status=400,
    data={"code": "42P13", "message": "cannot change return type of existing function"},
    fault=RemoteFault(code="42P13", message="cannot change return type of existing function", status=400),
)


class _FakeTransport:
    def __init__(self, *, snapshot: RemoteResponse | None = None, gate: asyncio.Event | None = None) -> None:
        self.snapshot = snapshot or RemoteResponse(status=200, data=[_ENVELOPE])
        self._gate = gate
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.api: dict[str, RemoteResponse] = {}

    async def rpc(self, name: str, params: Mapping[str, Any]) -> RemoteResponse:
        self.calls.append(("rpc", name, dict(params)))
        if name == SNAPSHOT:
            if self._gate is not None:
                await self._gate.wait()
            return self.snapshot
        return RemoteResponse(status=404, data={}, fault=RemoteFault(code="42883", status=404))

    async def select(self, query: TableQuery) -> RemoteResponse:
        self.calls.append(("select", query.table, query.to_params()))
        return RemoteResponse(status=200, data=[])

    async def post_api(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RemoteResponse:
        self.calls.append(("api", path, {**payload, "access_token": access_token}))
        return self.api.get(path, RemoteResponse(status=404, data={}, fault=RemoteFault(status=404)))

    def snapshot_calls(self) -> int:
        return sum(1 for kind, name, _ in self.calls if kind == "rpc" and name == SNAPSHOT)


def _config(**kwargs: Any) -> RankMatchConfig:
    return RankMatchConfig(
        base_url="http://backend.test",
        api_key="anon",
        invalidate_debounce=0,
        background_sweeps=False,
        **kwargs,
    )


def _client(transport: _FakeTransport) -> RankMatchClient:
    return RankMatchClient(
        _config(),
        transport=transport,
        auth=lambda: {"user_id": "host", "access_token": "tok"},
        keyring=lambda: {"user_id": "host", "entries": [{"id": "k1", "isActive": True}]},
    )


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_refresh_folds_snapshot_into_cache() -> None:
    transport = _FakeTransport()

    async with _client(transport) as client:
        view = await client.refresh(GAME)
        diagnostics = client.diagnostics(GAME)

    assert [slot.owner_id for slot in view.roster] == ["host"]
    assert view.session_id == "session-1"
    assert view.match_instance_id == "mi-1"
    assert view.room is not None
    assert view.room.id == "room-1"
    assert view.allow_start is True
    assert diagnostics.session_id == "session-1"
    assert diagnostics.room_id == "room-1"
    assert diagnostics.pending_refresh is False
    assert diagnostics.last_refresh_source == "snapshot"
    assert diagnostics.last_refresh_error is None


@pytest.mark.asyncio
async def test_resync_of_unchanged_envelope_does_not_notify() -> None:
    envelope = {**_ENVELOPE, "session_meta": {"selected_time_limit_seconds": 90, "drop_in_bonus_seconds": 30}}
    transport = _FakeTransport(snapshot=RemoteResponse(status=200, data=[envelope]))

    async with _client(transport) as client:
        await client.sync(GAME)
        first = client.store.read(GAME)
        changes: list[StateChange] = []
        client.store.subscribe(GAME, changes.append)
        await asyncio.sleep(0.01)
        await client.sync(GAME)
        second = client.store.read(GAME)

    assert changes == []
    assert second.session_meta == first.session_meta
    assert second.session_meta.source == "supabase"
    assert second.session_meta.turn_timer == {"baseSeconds": 90, "source": "supabase"}


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_sync() -> None:
    gate = asyncio.Event()
    transport = _FakeTransport(gate=gate)

    async with _client(transport) as client:
        first = asyncio.ensure_future(client.refresh(GAME))
        second = asyncio.ensure_future(client.refresh(GAME))
        await _settle()
        assert client.diagnostics(GAME).pending_refresh is True
        gate.set()
        views = await asyncio.gather(first, second)

    assert transport.snapshot_calls() == 1
    assert views[0] == views[1]


@pytest.mark.asyncio
async def test_invalidation_burst_is_debounced_into_one_sync() -> None:
    transport = _FakeTransport()

    async with _client(transport) as client:
        assert client.invalidate(GAME, {"table": ROSTER_TABLE, "event": "UPDATE"}) is True
        assert client.invalidate(GAME, {"table": ROSTER_TABLE, "event": "INSERT"}) is False
        await _settle()
        diagnostics = client.diagnostics(GAME)

    assert transport.snapshot_calls() == 1
    assert diagnostics.realtime_status == "connected"
    assert diagnostics.last_event is not None
    assert diagnostics.last_event["table"] == ROSTER_TABLE


@pytest.mark.asyncio
async def test_session_meta_change_for_other_session_is_ignored() -> None:
    transport = _FakeTransport()

    async with _client(transport) as client:
        await client.refresh(GAME)
        assert client.invalidate(GAME, {"table": SESSION_META_TABLE, "new": {"session_id": "other"}}) is False
        assert client.invalidate(GAME, {"table": SESSION_META_TABLE, "new": {"session_id": "session-1"}}) is True
        await _settle()

    assert transport.snapshot_calls() == 2


@pytest.mark.asyncio
async def test_channel_status_updates_diagnostics() -> None:
    transport = _FakeTransport()

    async with _client(transport) as client:
        assert client.invalidate(GAME, "SUBSCRIBED") is False
        assert client.diagnostics(GAME).realtime_status == "connected"

        assert client.invalidate(GAME, "CHANNEL_ERROR") is True
        await _settle()
        diagnostics = client.diagnostics(GAME)

    assert diagnostics.realtime_status == "channel_error"
    assert diagnostics.realtime_error == {"status": "CHANNEL_ERROR"}
    assert transport.snapshot_calls() == 1


@pytest.mark.asyncio
async def test_refresh_records_failure_instead_of_raising() -> None:
    transport = _FakeTransport(snapshot=_RETURN_TYPE_FAULT)

    async with _client(transport) as client:
        view = await client.refresh(GAME)
        diagnostics = client.diagnostics(GAME)

        with pytest.raises(ReturnTypeMismatchError):
            await client.sync(GAME)

    assert view.roster == []
    assert diagnostics.pending_refresh is False
    assert diagnostics.last_refresh_error
    assert diagnostics.last_refresh_hint is not None
    assert "PL/pgSQL" in diagnostics.last_refresh_hint


@pytest.mark.asyncio
async def test_ready_signal_through_client() -> None:
    transport = _FakeTransport()
    transport.api["/api/rank/ready-check"] = RemoteResponse(
        status=200,
        data={"readyCheck": {"status": "pending", "readyOwnerIds": ["host"], "expiresAtMs": 99_999}},
    )

    async with _client(transport) as client:
        await client.refresh(GAME)
        result = await client.request_ready_signal(GAME)
        view = client.view_state(GAME)

    assert result is not None
    assert result.status is ReadyCheckStatus.PENDING
    assert view.ready_check.status is ReadyCheckStatus.PENDING
    assert view.viewer_ready is True
    api_calls = [params for kind, _, params in transport.calls if kind == "api"]
    assert api_calls[-1]["session_id"] == "session-1"
    assert api_calls[-1]["access_token"] == "tok"


@pytest.mark.asyncio
async def test_clear_forgets_game() -> None:
    transport = _FakeTransport()

    async with _client(transport) as client:
        await client.refresh(GAME)
        client.ready_check(GAME)
        client.clear(GAME)

        assert client.store.read(GAME) == MatchState()
        assert client.diagnostics(GAME).session_id is None
        assert client.view_state(GAME).roster == []


@pytest.mark.asyncio
async def test_client_requires_context_manager() -> None:
    client = RankMatchClient(_config(), transport=_FakeTransport())

    with pytest.raises(RankMatchError):
        await client.sync(GAME)
