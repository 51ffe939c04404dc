"""Upload outcome types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from coverpipe.core.errors import CoverPipeError


class UploadState(str, Enum):
    """States of one upload's retry loop."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.SUCCEEDED, UploadState.FAILED, UploadState.CANCELLED)


@dataclass(frozen=True)
class AttemptRecord:
    """What one HTTP attempt returned."""

    attempt: int
    status_code: int | None = None  # None for timeouts and transport errors
    error: str | None = None
    retry_delay_sec: float | None = None  # delay scheduled after this attempt


@dataclass
class UploadResult:
    """Outcome of a report transmission."""

    success: bool
    attempts: int
    run_id: str
    status_code: int | None = None
    error: CoverPipeError | None = None
    state: UploadState = UploadState.PENDING
    dry_run: bool = False
    history: list[AttemptRecord] = field(default_factory=list)
    # Every state the retry loop passed through, PENDING first
    states: list[UploadState] = field(default_factory=lambda: [UploadState.PENDING])

    @property
    def outcome(self) -> str:
        """Short label for summaries."""
        if self.dry_run:
            return "dry-run"
        if self.success:
            return f"uploaded ({self.attempts} attempt{'s' if self.attempts != 1 else ''})"
        return f"failed ({self.attempts} attempt{'s' if self.attempts != 1 else ''})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "attempts": self.attempts,
            "run_id": self.run_id,
            "status_code": self.status_code,
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "dry_run": self.dry_run,
            "error": self.error.to_dict() if self.error else None,
        }
