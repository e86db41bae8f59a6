"""Internal command operations for :class:`rankmatch.client.RankMatchClient`.

These functions keep `client.py` small without changing the public API.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from rankmatch.models.session import ReadyCheck, ReadyTimeoutRecord
from rankmatch.models.view import MatchViewState
from rankmatch.ready_check import ReadyCheckOrchestrator

if TYPE_CHECKING:
    from rankmatch.client import RankMatchClient


def ready_check(
    client: RankMatchClient,
    *,
    game_id: str,
    on_open: Callable[[MatchViewState], None] | None = None,
) -> ReadyCheckOrchestrator:
    existing = client._orchestrators.get(game_id)
    if existing is not None:
        if on_open is not None:
            existing.on_open = on_open
        return existing

    async def _refresh() -> MatchViewState:
        return await client.refresh(game_id)

    orchestrator = ReadyCheckOrchestrator(
        game_id,
        transport=client._require_transport(),
        store=client.store,
        view=lambda: client.view_state(game_id),
        refresh=_refresh,
        access_token=client._access_token,
        on_open=on_open,
        window_seconds=client._config.ready_window_seconds,
        tick_interval=client._config.ready_tick_interval,
        clock=client._clock,
    )
    client._orchestrators[game_id] = orchestrator
    return orchestrator


async def request_ready_signal(client: RankMatchClient, *, game_id: str) -> ReadyCheck | None:
    return await ready_check(client, game_id=game_id).signal_ready()


async def request_ready_timeout(client: RankMatchClient, *, game_id: str) -> ReadyTimeoutRecord | None:
    return await ready_check(client, game_id=game_id).request_timeout_replacement()


def clear(client: RankMatchClient, *, game_id: str) -> None:
    orchestrator = client._orchestrators.pop(game_id, None)
    if orchestrator is not None:
        orchestrator.stop()
    client._sync.forget(game_id)
    client._rooms.pop(game_id, None)
    client.store.clear(game_id)
