"""Change notifications emitted by the match store.

Listeners receive a :class:`StateChange` after every accepted mutation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from rankmatch.models.match import MatchState


class ChangeSummary(BaseModel):
    """Cheap digest of a state so listeners can skip unchanged fields."""

    model_config = ConfigDict(frozen=True)

    updated_at: int = 0
    turn_number: int = 0
    slot_count: int = 0
    session_id: str | None = None

    @classmethod
    def of(cls, state: MatchState) -> ChangeSummary:
        return cls(
            updated_at=state.updated_at,
            turn_number=state.session_meta.turn_state.turn_number,
            slot_count=len(state.slot_template.slots),
            session_id=state.session_history.session_id,
        )


class StateChange(BaseModel):
    """A post-mutation notification for one game id."""

    model_config = ConfigDict(frozen=True)

    game_key: str = Field(..., description="Storage key of the game entry")
    game_id: str
    state: MatchState
    summary: ChangeSummary


class _NoChange:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_CHANGE"

    def __bool__(self) -> bool:
        return False


#: Returned by an update mutator to leave the entry untouched.
NO_CHANGE: Final = _NoChange()

Listener = Callable[[StateChange], None]
