"""Instrumentation subsystem models.

Canonical data structures for test targets, the raw per-run coverage trace,
and the per-target outcome recorded in the run summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from coverpipe.coverage.models import FileCoverage
    from coverpipe.core.errors import CoverPipeError


class RunType(str, Enum):
    """Kind of test target. Values match tarpaulin's ``--run-types``."""

    TESTS = "Tests"
    DOCTESTS = "Doctests"
    INTEGRATION_TESTS = "IntegrationTests"

    @classmethod
    def parse(cls, value: str) -> RunType:
        """Case-insensitive lookup accepting a few common aliases."""
        key = value.strip().lower().replace("-", "").replace("_", "")
        aliases = {
            "tests": cls.TESTS,
            "test": cls.TESTS,
            "unit": cls.TESTS,
            "unittests": cls.TESTS,
            "doctests": cls.DOCTESTS,
            "doctest": cls.DOCTESTS,
            "doc": cls.DOCTESTS,
            "integrationtests": cls.INTEGRATION_TESTS,
            "integration": cls.INTEGRATION_TESTS,
        }
        try:
            return aliases[key]
        except KeyError:
            valid = ", ".join(rt.value for rt in cls)
            raise ValueError(f"Unknown run type {value!r}. Valid run types: {valid}") from None


# =============================================================================
# Test Targets
# =============================================================================


@dataclass(frozen=True)
class TestTarget:
    """One executable unit to run under instrumentation."""

    __test__ = False  # not a pytest class

    target_id: str
    command: tuple[str, ...]  # argv, before instrumentation flags are added
    run_type: RunType
    cwd: str  # absolute working directory
    timeout_sec: float | None = None  # None: use the run-wide timeout
    backend_id: str = "lcov-env"
    member: str | None = None  # workspace member, None for the root package
    env: tuple[tuple[str, str], ...] = ()
    source_dirs: tuple[str, ...] = ()  # scopes pytest-cov's --cov

    @property
    def safe_name(self) -> str:
        """Target id usable as a file name."""
        return "".join(c if c.isalnum() or c in "-_." else "_" for c in self.target_id)


# =============================================================================
# Traces
# =============================================================================


@dataclass
class CoverageTrace:
    """Raw instrumentation output for one target run.

    Files are keyed by source path relative to the repository root.
    """

    target_id: str
    run_type: RunType
    files: dict[str, FileCoverage] = field(default_factory=dict)
    exit_code: int | None = None

    @property
    def line_count(self) -> int:
        return sum(len(fc.lines) for fc in self.files.values())


# =============================================================================
# Outcomes
# =============================================================================

TargetStatus = Literal["passed", "failed", "crashed", "timeout", "skipped"]
"""Per-target status in the run summary.

- passed: exited 0 and produced coverage
- failed: test failures (non-zero exit) but coverage was still produced
- crashed: no usable coverage (signal, missing or unreadable artifact)
- timeout: killed after exceeding its budget
- skipped: never started (fail-fast abort or cancellation)
"""


@dataclass
class TargetOutcome:
    """What happened to one target during the run."""

    target_id: str
    run_type: RunType
    status: TargetStatus
    exit_code: int | None = None
    duration_seconds: float | None = None
    error: CoverPipeError | None = None

    @property
    def is_failure(self) -> bool:
        return self.status in ("failed", "crashed", "timeout")

    def to_dict(self) -> dict[str, object]:
        return {
            "target_id": self.target_id,
            "run_type": self.run_type.value,
            "status": self.status,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "error": self.error.to_dict() if self.error else None,
        }
