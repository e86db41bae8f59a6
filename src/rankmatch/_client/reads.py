"""Internal read operations for :class:`rankmatch.client.RankMatchClient`.

These functions keep `client.py` small without changing the public API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rankmatch.ingestion.snapshot import load_snapshot as load_snapshot_remote
from rankmatch.models.bundle import SnapshotBundle
from rankmatch.models.view import MatchViewState
from rankmatch.state.store import MatchStore
from rankmatch.view import derive_view_state, resolve_viewer_id

if TYPE_CHECKING:
    from rankmatch.client import RankMatchClient


async def load_snapshot(client: RankMatchClient, *, game_id: str) -> SnapshotBundle | None:
    transport = client._require_transport()
    owner_id = resolve_viewer_id(client.store.read(game_id), client._auth_snapshot()) or None
    return await load_snapshot_remote(
        transport,
        game_id,
        config=client._config,
        owner_id=owner_id,
        now=client._clock,
    )


def fold_bundle(store: MatchStore, game_id: str, bundle: SnapshotBundle) -> None:
    """Write a reconciled bundle into the cache through the entity setters.

    Participation is only replaced when the backend returned seats, so an
    empty roster never wipes a locally known one.
    """

    if bundle.roster:
        store.set_participation(
            game_id,
            {
                "roster": bundle.roster,
                "participantPool": bundle.participant_pool,
                "heroOptions": bundle.hero_options,
                "heroMap": bundle.hero_map,
                "realtimeMode": bundle.realtime_mode,
                "hostOwnerId": bundle.host_owner_id,
                "hostRoleLimit": bundle.host_role_limit,
            },
        )
    if bundle.slot_template is not None:
        store.set_slot_template(game_id, bundle.slot_template)
    if bundle.match_snapshot is not None:
        store.set_match_snapshot(game_id, bundle.match_snapshot)
    if bundle.session_meta is not None:
        store.set_session_meta(game_id, bundle.session_meta.model_dump(exclude_none=True))
    if bundle.session_history is not None:
        store.set_session_history(game_id, bundle.session_history)


async def sync(client: RankMatchClient, *, game_id: str) -> SnapshotBundle | None:
    bundle = await load_snapshot(client, game_id=game_id)
    if bundle is None:
        return None
    fold_bundle(client.store, game_id, bundle)
    client._remember_bundle(game_id, bundle)
    return bundle


def view_state(client: RankMatchClient, *, game_id: str) -> MatchViewState:
    diagnostics = client.diagnostics(game_id)
    return derive_view_state(
        client.store.read(game_id),
        auth=client._auth_snapshot(),
        keyring=client._keyring_snapshot(),
        game_id=game_id,
        session_id=diagnostics.session_id,
        room=client._rooms.get(game_id),
    )
