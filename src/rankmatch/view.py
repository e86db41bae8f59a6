"""Consumer-ready projection of the cached match state.

Everything here is a pure read: the cache entry is combined with the
host application's auth and keyring snapshots and never written back.
"""

from __future__ import annotations

from rankmatch.ingestion.normalize import trimmed
from rankmatch.ingestion.sanitize import sanitize_ready_check, sort_roster
from rankmatch.models.identity import AuthSnapshot, KeyringSnapshot
from rankmatch.models.match import MatchState, Room
from rankmatch.models.view import MatchViewState, ViewerIdentity


def resolve_viewer_id(state: MatchState, auth: AuthSnapshot | None) -> str:
    """Owner id of the local viewer.

    Resolution order: hero-selection owner, hero-selection viewer, then the
    auth session user.
    """
    selection = state.hero_selection
    if selection is not None:
        if selection.owner_id:
            return selection.owner_id
        if selection.viewer_id:
            return selection.viewer_id
    return trimmed(auth.user_id) if auth is not None else ""


def has_active_key(keyring: KeyringSnapshot | None, user_id: str) -> bool:
    """Whether *user_id* holds at least one active model credential."""
    if keyring is None or not user_id:
        return False
    if keyring.user_id and keyring.user_id != user_id:
        return False
    return any(entry.is_active for entry in keyring.entries)


def _viewer(state: MatchState, user_id: str) -> ViewerIdentity:
    selection = state.hero_selection
    if selection is None:
        return ViewerIdentity(owner_id=user_id)
    hero_meta = selection.hero_meta or {}
    return ViewerIdentity(
        hero_id=selection.hero_id,
        role=selection.role,
        owner_id=selection.owner_id or user_id,
        viewer_id=selection.viewer_id,
        hero_name=trimmed(hero_meta.get("name")),
    )


def _room(state: MatchState) -> Room | None:
    snapshot = state.match_snapshot
    match = snapshot.match if snapshot is not None else None
    if match is None:
        return None
    if match.rooms:
        room = match.rooms[0]
        if match.blind_mode and not room.blind_mode:
            return room.model_copy(update={"blind_mode": True})
        return room
    return Room(blind_mode=True) if match.blind_mode else None


def derive_view_state(
    state: MatchState,
    *,
    auth: AuthSnapshot | None = None,
    keyring: KeyringSnapshot | None = None,
    game_id: str = "",
    session_id: str | None = None,
    room: Room | None = None,
) -> MatchViewState:
    """Flatten *state* into a :class:`MatchViewState`.

    ``session_id`` and ``room`` come from the latest reconciliation when
    the caller has them; otherwise the cached history session and the
    snapshot's first room are used.
    """

    snapshot = state.match_snapshot
    match = snapshot.match if snapshot is not None else None
    roster = sort_roster(state.participation.roster)
    user_id = resolve_viewer_id(state, auth)
    viewer = _viewer(state, user_id)
    active_key = has_active_key(keyring, user_id)
    resolved_session = trimmed(session_id) or trimmed(state.session_history.session_id)
    extras = state.session_meta.extras or {}

    return MatchViewState(
        game_id=game_id,
        snapshot=snapshot,
        roster=roster,
        assignments=list(match.assignments) if match is not None else [],
        viewer=viewer,
        room=room if room is not None else _room(state),
        match_mode=snapshot.mode if snapshot is not None else "",
        match_instance_id=(match.instance_id or "") if match is not None else "",
        session_id=resolved_session,
        has_active_key=active_key,
        roster_ready_count=sum(1 for slot in roster if slot.hero_id and slot.owner_id),
        total_slots=len(roster),
        slot_template=state.slot_template,
        slot_template_version=state.slot_template.version,
        slot_template_updated_at=state.slot_template.updated_at,
        session_meta=state.session_meta,
        session_history=state.session_history,
        ready_check=sanitize_ready_check(extras.get("readyCheck")),
        allow_start=snapshot is not None and active_key and bool(resolved_session),
        missing_key=snapshot is not None and not active_key,
    )
