"""Deterministic state merge policy.

This module contains *no* payload parsing.  The sanitizers produce canonical
models; these functions only decide whether a candidate write wins.
"""

from __future__ import annotations

from rankmatch.ingestion.sanitize import session_meta_structurally_equal
from rankmatch.models.session import SessionMeta
from rankmatch.models.template import SlotTemplate


def should_accept_slot_template(cached: SlotTemplate | None, incoming: SlotTemplate | None) -> bool:
    """Decide whether an incoming slot template replaces the cached one.

    Policy:
    - A clear (``incoming is None``) is always applied.
    - Higher version wins.
    - Equal versions: the most recent ``updated_at`` wins (ties accepted).
    """
    if incoming is None or cached is None:
        return True
    if incoming.version != cached.version:
        return incoming.version > cached.version
    return incoming.updated_at >= cached.updated_at


def _turn_state_ts(meta: SessionMeta | None) -> int | None:
    if meta is None:
        return None
    return meta.turn_state.updated_at or None


def is_expired(updated_at: int, *, now_ms: int, ttl_ms: int) -> bool:
    return updated_at <= now_ms - ttl_ms


def resolve_session_meta_write(
    previous: SessionMeta | None,
    sanitized: SessionMeta,
    *,
    explicit_updated_at: int | None,
    now_ms: int,
) -> SessionMeta | None:
    """Return the session meta to write, or ``None`` when the write is a no-op.

    A write applies only when it changes a structural field, advances
    ``turn_state.updated_at`` or carries an explicit newer timestamp.  An
    explicit timestamp older than the cached one is rejected unless the turn
    state advanced.
    """

    prev_ts = previous.updated_at if previous is not None and previous.updated_at else None
    ts_prev = _turn_state_ts(previous)
    ts_next = _turn_state_ts(sanitized)
    ts_advanced = ts_next is not None and (ts_prev is None or ts_next > ts_prev)

    if explicit_updated_at is not None and prev_ts is not None and explicit_updated_at < prev_ts and not ts_advanced:
        return None

    if previous is not None and not ts_advanced and session_meta_structurally_equal(previous, sanitized):
        if explicit_updated_at is not None and (prev_ts is None or explicit_updated_at > prev_ts):
            return previous.model_copy(update={"updated_at": explicit_updated_at}, deep=True)
        return None

    if explicit_updated_at is not None:
        target = explicit_updated_at
    elif ts_advanced and ts_next is not None:
        target = ts_next
    elif prev_ts is not None:
        target = prev_ts
    else:
        target = now_ms
    return sanitized.model_copy(update={"updated_at": target})
