"""Ordered fallback strategies.

Each strategy returns a :class:`TierResult` tagged ``success``,
``unavailable`` (try the next tier) or ``error`` (stop and raise).
:func:`run_tiers` tries them in sequence and keeps the diagnostics of the
tiers that were unavailable.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import StrEnum
from typing import Any, Generic, TypeVar

from rankmatch.exceptions import RankMatchError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class TierStatus(StrEnum):
    SUCCESS = "success"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class TierResult(Generic[T]):
    status: TierStatus
    source: str = ""
    value: T | None = None
    error: RankMatchError | None = None
    hint: str | None = None
    fault: dict[str, Any] | None = None

    @classmethod
    def success(cls, value: T, *, source: str, hint: str | None = None) -> TierResult[T]:
        return cls(TierStatus.SUCCESS, source=source, value=value, hint=hint)

    @classmethod
    def unavailable(
        cls,
        *,
        source: str,
        hint: str | None = None,
        fault: dict[str, Any] | None = None,
    ) -> TierResult[T]:
        return cls(TierStatus.UNAVAILABLE, source=source, hint=hint, fault=fault)

    @classmethod
    def failure(cls, error: RankMatchError, *, source: str) -> TierResult[T]:
        return cls(TierStatus.ERROR, source=source, error=error)

    @property
    def has_diagnostics(self) -> bool:
        return bool(self.hint or self.fault)


@dataclasses.dataclass
class TierOutcome(Generic[T]):
    """Result of :func:`run_tiers`; ``value`` is ``None`` when every tier was unavailable."""

    value: T | None = None
    source: str = ""
    attempts: list[TierResult[T]] = dataclasses.field(default_factory=list)

    @property
    def hint(self) -> str | None:
        for attempt in self.attempts:
            if attempt.hint:
                return attempt.hint
        return None

    @property
    def fault(self) -> dict[str, Any] | None:
        for attempt in self.attempts:
            if attempt.fault:
                return attempt.fault
        return None

    @property
    def failed_source(self) -> str | None:
        for attempt in self.attempts:
            if attempt.has_diagnostics:
                return attempt.source
        return None

    @property
    def has_diagnostics(self) -> bool:
        return any(attempt.has_diagnostics for attempt in self.attempts)


Strategy = Callable[[], Awaitable[TierResult[T]]]


async def run_tiers(strategies: Sequence[Strategy[T]]) -> TierOutcome[T]:
    """Run *strategies* in order until one succeeds.

    An ``error`` result raises its error immediately; no later tier runs.
    """

    outcome: TierOutcome[T] = TierOutcome()
    for strategy in strategies:
        result = await strategy()
        if result.status is TierStatus.SUCCESS:
            outcome.value = result.value
            outcome.source = result.source
            outcome.attempts.append(result)
            return outcome
        if result.status is TierStatus.ERROR:
            if result.error is None:
                raise RankMatchError(f"Tier {result.source!r} failed without an error")
            raise result.error
        _logger.debug("Tier %s unavailable (hint=%s)", result.source, result.hint)
        outcome.attempts.append(result)
    return outcome
