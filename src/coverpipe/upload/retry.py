"""Retry policy, clock abstraction and the upload state machine.

Pending → Attempting → (Succeeded | Failed | Cancelled | Backoff)
Backoff → (Attempting | Failed | Cancelled)

Time is read and waited on only through a Clock, so the whole loop can be
driven by a fake clock in tests without real waits.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Protocol

from coverpipe.core.errors import InternalError
from coverpipe.upload.models import UploadState

if TYPE_CHECKING:
    from coverpipe.config.models import UploadConfig


class Clock(Protocol):
    """Source of time for the retry loop."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Real wall-clock time."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by attempts and a total time budget."""

    max_attempts: int = 5
    base_delay_sec: float = 1.0
    multiplier: float = 2.0
    max_delay_sec: float = 30.0
    total_budget_sec: float = 300.0

    @classmethod
    def from_config(cls, config: UploadConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay_sec=config.base_delay_sec,
            multiplier=config.multiplier,
            max_delay_sec=config.max_delay_sec,
            total_budget_sec=config.total_budget_sec,
        )

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay after the given (1-based) failed attempt.

        A server-suggested Retry-After replaces the computed delay but is
        still capped by max_delay_sec.
        """
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_delay_sec)
        return min(self.base_delay_sec * self.multiplier ** (attempt - 1), self.max_delay_sec)


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max((when - now).total_seconds(), 0.0)


_TRANSITIONS: dict[UploadState, frozenset[UploadState]] = {
    UploadState.PENDING: frozenset({UploadState.ATTEMPTING, UploadState.CANCELLED}),
    UploadState.ATTEMPTING: frozenset(
        {
            UploadState.SUCCEEDED,
            UploadState.FAILED,
            UploadState.CANCELLED,
            UploadState.BACKOFF,
        }
    ),
    UploadState.BACKOFF: frozenset(
        {UploadState.ATTEMPTING, UploadState.FAILED, UploadState.CANCELLED}
    ),
    UploadState.SUCCEEDED: frozenset(),
    UploadState.FAILED: frozenset(),
    UploadState.CANCELLED: frozenset(),
}


class UploadStateMachine:
    """Validated state transitions of one upload, with their history."""

    def __init__(self) -> None:
        self._state = UploadState.PENDING
        self._history: list[UploadState] = [UploadState.PENDING]

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def history(self) -> list[UploadState]:
        return list(self._history)

    def transition(self, to: UploadState) -> None:
        """Move to a new state.

        Raises:
            InternalError: If the transition is not allowed.
        """
        if to not in _TRANSITIONS[self._state]:
            raise InternalError.unexpected(
                f"illegal upload transition {self._state.value} -> {to.value}",
                from_state=self._state.value,
                to_state=to.value,
            )
        self._state = to
        self._history.append(to)
