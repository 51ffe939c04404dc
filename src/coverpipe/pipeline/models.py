"""Pipeline state and run summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from coverpipe.core.errors import CoverPipeError
from coverpipe.instrument.models import TargetOutcome
from coverpipe.upload.models import UploadResult

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130  # 128 + SIGINT


class PipelineState(str, Enum):
    """Phases of one pipeline run."""

    IDLE = "idle"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    SERIALIZING = "serializing"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


@dataclass
class PipelineSummary:
    """Everything a run produced, for the console and the JSON summary."""

    state: PipelineState
    exit_code: int
    run_id: str
    reason: str | None = None
    error: CoverPipeError | None = None
    outcomes: list[TargetOutcome] = field(default_factory=list)
    lines_found: int = 0
    lines_hit: int = 0
    branches_found: int = 0
    branches_hit: int = 0
    line_percent: float | None = None
    branch_percent: float | None = None
    reports: list[str] = field(default_factory=list)
    upload: UploadResult | None = None
    upload_outcome: str = "not attempted"
    duration_seconds: float | None = None

    @property
    def targets_run(self) -> int:
        return sum(1 for o in self.outcomes if o.status != "skipped")

    @property
    def targets_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.is_failure)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == EXIT_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "error": self.error.to_dict() if self.error else None,
            "targets_run": self.targets_run,
            "targets_failed": self.targets_failed,
            "targets": [o.to_dict() for o in self.outcomes],
            "coverage": {
                "lines_found": self.lines_found,
                "lines_hit": self.lines_hit,
                "branches_found": self.branches_found,
                "branches_hit": self.branches_hit,
                "line_percent": self.line_percent,
                "branch_percent": self.branch_percent,
            },
            "reports": self.reports,
            "upload": self.upload.to_dict() if self.upload else None,
            "upload_outcome": self.upload_outcome,
            "duration_seconds": self.duration_seconds,
        }
