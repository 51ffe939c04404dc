"""Coverage merging with sum semantics.

Traces from separate targets (unit tests, doctests, integration tests) are
independent executions, so counts add up:

- line[i] = sum(line[i] across traces that instrument it)
- branch[k] = sum(branch[k].hits across traces that report it)

A line instrumented in one trace and absent from another gets zero
contribution from the latter; it stays instrumented. A branch arm is
covered when any trace took it, so the set of observed outcomes is the
union across traces. Addition makes the merge associative and commutative.

Traces that disagree on what a source location *is* are rejected with
SchemaMismatch instead of being reconciled.
"""

from collections.abc import Iterable
from fnmatch import fnmatch

from coverpipe.core.errors import SchemaMismatch
from coverpipe.coverage.models import BranchKey, FileCoverage, UnifiedCoverageModel
from coverpipe.instrument.models import CoverageTrace


def _branch_layout(fc: FileCoverage) -> dict[tuple[int, int], frozenset[int]]:
    """(line, block_id) → set of arm ids reported for that branch point."""
    layout: dict[tuple[int, int], set[int]] = {}
    for key in fc.branches:
        layout.setdefault((key.line, key.block_id), set()).add(key.branch_id)
    return {k: frozenset(v) for k, v in layout.items()}


def check_compatible(existing: FileCoverage, incoming: FileCoverage) -> None:
    """Raise SchemaMismatch if two coverages of one file cannot be merged.

    Incompatible means the source changed between runs (different checksum)
    or the same branch point was instrumented with different arms.
    """
    if existing.checksum and incoming.checksum and existing.checksum != incoming.checksum:
        raise SchemaMismatch.checksum(existing.path, existing.checksum, incoming.checksum)

    existing_layout = _branch_layout(existing)
    for point, arms in _branch_layout(incoming).items():
        known = existing_layout.get(point)
        if known is not None and known != arms:
            line, block_id = point
            raise SchemaMismatch.branches(
                existing.path, line, block_id, sorted(known), sorted(arms)
            )


def merge_file_coverage(files: Iterable[FileCoverage]) -> FileCoverage:
    """Merge multiple FileCoverage objects for the same file.

    Args:
        files: FileCoverage objects to merge (must have same path).

    Returns:
        Merged FileCoverage with summed hits.

    Raises:
        SchemaMismatch: If any two inputs are incompatible.
    """
    files_list = list(files)
    if not files_list:
        raise ValueError("Cannot merge empty file coverage list")

    path = files_list[0].path
    merged = FileCoverage(path=path, lines={}, branches={}, checksum=None)
    lines: dict[int, int] = {}
    branches: dict[BranchKey, int] = {}

    for fc in files_list:
        check_compatible(merged, fc)
        for line_num, hits in fc.lines.items():
            lines[line_num] = lines.get(line_num, 0) + hits
        for key, hits in fc.branches.items():
            branches[key] = branches.get(key, 0) + hits
        merged = FileCoverage(
            path=path,
            lines=lines,
            branches=branches,
            checksum=merged.checksum or fc.checksum,
        )

    return FileCoverage(
        path=path,
        lines=dict(sorted(lines.items())),
        branches=dict(sorted(branches.items())),
        checksum=merged.checksum,
    )


def merge_into(model: UnifiedCoverageModel, trace: CoverageTrace) -> None:
    """Merge one trace into a model as a single transaction.

    Every file is validated before anything is written, so a trace that
    raises SchemaMismatch leaves the model exactly as it was.
    """
    for path, fc in trace.files.items():
        existing = model.files.get(path)
        if existing is not None:
            check_compatible(existing, fc)

    for path, fc in trace.files.items():
        existing = model.files.get(path)
        if existing is None:
            model.put(
                FileCoverage(
                    path=path,
                    lines=dict(fc.lines),
                    branches=dict(fc.branches),
                    checksum=fc.checksum,
                )
            )
        else:
            model.put(merge_file_coverage([existing, fc]))


def merge_traces(traces: Iterable[CoverageTrace]) -> UnifiedCoverageModel:
    """Merge traces into a new, unfrozen model."""
    model = UnifiedCoverageModel(files={})
    for trace in traces:
        merge_into(model, trace)
    return model


def exclude_files(model: UnifiedCoverageModel, patterns: Iterable[str]) -> UnifiedCoverageModel:
    """Copy of the model without files matching any glob pattern."""
    pats = list(patterns)
    if not pats:
        return model
    kept = {
        path: fc for path, fc in model.files.items() if not any(fnmatch(path, p) for p in pats)
    }
    return UnifiedCoverageModel(files=kept)
