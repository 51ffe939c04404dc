"""Unified coverage data model.

File-centric model: every trace and every report format converts to this
representation. A line present in ``FileCoverage.lines`` is instrumented
(possibly with zero hits); a line absent from it is not instrumented.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import NamedTuple

from coverpipe.core.errors import InternalError


class BranchKey(NamedTuple):
    """Identity of one arm of one branch point."""

    line: int
    block_id: int
    branch_id: int


@dataclass(frozen=True, slots=True)
class BranchCoverage:
    """Branch arm with its taken count."""

    line: int
    block_id: int
    branch_id: int
    hits: int

    @property
    def key(self) -> BranchKey:
        return BranchKey(self.line, self.block_id, self.branch_id)


@dataclass(slots=True)
class FileCoverage:
    """Coverage data for a single source file.

    Lines map 1-based line number → hit count. Branches map
    ``BranchKey`` → number of times that arm was taken. A line carrying
    branch arms is always instrumented: when the source reported arms but
    no line record, the line is added with zero hits.
    """

    path: str  # repository-relative path
    lines: Mapping[int, int] = field(default_factory=dict)
    branches: Mapping[BranchKey, int] = field(default_factory=dict)
    checksum: str | None = None  # source digest when the backend reports one

    def __post_init__(self) -> None:
        missing = {key.line for key in self.branches} - self.lines.keys()
        if missing:
            self.lines = {**self.lines, **dict.fromkeys(missing, 0)}

    @property
    def lines_found(self) -> int:
        """Total number of instrumented lines."""
        return len(self.lines)

    @property
    def lines_hit(self) -> int:
        """Number of lines with at least one hit."""
        return sum(1 for hits in self.lines.values() if hits > 0)

    @property
    def uncovered_lines(self) -> list[int]:
        """Sorted list of line numbers with zero hits."""
        return sorted(line for line, hits in self.lines.items() if hits == 0)

    @property
    def branches_found(self) -> int:
        return len(self.branches)

    @property
    def branches_hit(self) -> int:
        """Number of branch arms taken at least once."""
        return sum(1 for hits in self.branches.values() if hits > 0)

    def branches_at(self, line: int) -> list[BranchCoverage]:
        """Branch arms on one line, sorted by block then arm."""
        return [
            BranchCoverage(line=k.line, block_id=k.block_id, branch_id=k.branch_id, hits=h)
            for k, h in sorted(self.branches.items())
            if k.line == line
        ]

    def frozen(self) -> FileCoverage:
        """Read-only copy."""
        return FileCoverage(
            path=self.path,
            lines=MappingProxyType(dict(sorted(self.lines.items()))),
            branches=MappingProxyType(dict(sorted(self.branches.items()))),
            checksum=self.checksum,
        )


@dataclass(frozen=True, slots=True)
class CoverageSummary:
    """Aggregate coverage counts. Rates are derived, never stored."""

    files: int
    lines_found: int
    lines_hit: int
    branches_found: int
    branches_hit: int

    @property
    def line_percent(self) -> float | None:
        """Covered-lines / instrumented-lines as a percentage; None without data."""
        if self.lines_found == 0:
            return None
        return self.lines_hit / self.lines_found * 100.0

    @property
    def branch_percent(self) -> float | None:
        if self.branches_found == 0:
            return None
        return self.branches_hit / self.branches_found * 100.0


@dataclass(slots=True)
class UnifiedCoverageModel:
    """Coverage aggregated across all traces of a run.

    Files are keyed by repository-relative path. Built incrementally by the
    aggregator, then frozen before serialization.
    """

    files: Mapping[str, FileCoverage] = field(default_factory=dict)
    is_frozen: bool = False

    def put(self, fc: FileCoverage) -> None:
        """Insert or replace one file's coverage."""
        if self.is_frozen or not isinstance(self.files, dict):
            raise InternalError.unexpected("coverage model is frozen", path=fc.path)
        self.files[fc.path] = fc

    def freeze(self) -> UnifiedCoverageModel:
        """Read-only copy with files in sorted order."""
        return UnifiedCoverageModel(
            files=MappingProxyType(
                {path: self.files[path].frozen() for path in sorted(self.files)}
            ),
            is_frozen=True,
        )

    def line_hits(self) -> dict[tuple[str, int], int]:
        """Flat (path, line) → hits view, handy for comparisons."""
        return {
            (path, line): hits for path, fc in self.files.items() for line, hits in fc.lines.items()
        }

    @property
    def summary(self) -> CoverageSummary:
        """Compute aggregate counts across all files."""
        return CoverageSummary(
            files=len(self.files),
            lines_found=sum(f.lines_found for f in self.files.values()),
            lines_hit=sum(f.lines_hit for f in self.files.values()),
            branches_found=sum(f.branches_found for f in self.files.values()),
            branches_hit=sum(f.branches_hit for f in self.files.values()),
        )
