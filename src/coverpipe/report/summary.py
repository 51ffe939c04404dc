"""Structured coverage summaries.

Output schema for build_summary:
{
    "summary": {
        "total_files": int,
        "covered_files": int,
        "total_lines": int,
        "covered_lines": int,
        "line_coverage_percent": float | null,
        "total_branches": int,            # only when branches exist
        "covered_branches": int,
        "branch_coverage_percent": float
    },
    "files": [
        {
            "path": str,
            "total_lines": int,
            "covered_lines": int,
            "coverage_percent": float,
            "missed_lines": [int, ...],
            "partial_branches": int       # only when branches exist
        },
        ...
    ]
}

Percentages are derived from integer counts at render time.
"""

from typing import Any

from coverpipe.coverage.models import UnifiedCoverageModel


def compute_file_stats(model: UnifiedCoverageModel) -> list[dict[str, Any]]:
    """Per-file coverage statistics, sorted by path."""
    file_stats = []

    for path in sorted(model.files):
        fc = model.files[path]

        total_lines = fc.lines_found
        covered_lines = fc.lines_hit
        coverage_percent = (covered_lines / total_lines * 100.0) if total_lines > 0 else 100.0

        stats: dict[str, Any] = {
            "path": path,
            "total_lines": total_lines,
            "covered_lines": covered_lines,
            "coverage_percent": round(coverage_percent, 2),
            "missed_lines": fc.uncovered_lines,
        }

        if fc.branches:
            # Lines where some arms were taken and some were not
            taken: dict[int, set[bool]] = {}
            for key, hits in fc.branches.items():
                taken.setdefault(key.line, set()).add(hits > 0)
            stats["partial_branches"] = sum(1 for seen in taken.values() if len(seen) == 2)

        file_stats.append(stats)

    return file_stats


def build_summary(
    model: UnifiedCoverageModel,
    *,
    include_files: bool = True,
    max_files: int | None = None,
    max_missed_lines: int = 20,
) -> dict[str, Any]:
    """Build a structured coverage summary.

    Args:
        model: The coverage model to summarize.
        include_files: Whether to include per-file details.
        max_files: Limit number of files (lowest coverage first). None = all.
        max_missed_lines: Max missed lines to list per file.
    """
    s = model.summary
    covered_files = sum(
        1 for fc in model.files.values() if fc.lines and fc.lines_hit == fc.lines_found
    )

    summary_dict: dict[str, Any] = {
        "total_files": s.files,
        "covered_files": covered_files,
        "total_lines": s.lines_found,
        "covered_lines": s.lines_hit,
        "line_coverage_percent": (
            round(s.line_percent, 2) if s.line_percent is not None else None
        ),
    }

    if s.branches_found > 0:
        summary_dict["total_branches"] = s.branches_found
        summary_dict["covered_branches"] = s.branches_hit
        summary_dict["branch_coverage_percent"] = round(s.branch_percent or 0.0, 2)

    result: dict[str, Any] = {"summary": summary_dict}

    if include_files:
        file_stats = compute_file_stats(model)
        # Lowest coverage first to surface problem areas
        file_stats.sort(key=lambda f: f["coverage_percent"])

        if max_files is not None:
            file_stats = file_stats[:max_files]

        for fs in file_stats:
            missed = fs["missed_lines"]
            if len(missed) > max_missed_lines:
                fs["missed_lines"] = missed[:max_missed_lines]
                fs["missed_lines_truncated"] = True

        result["files"] = file_stats

    return result


def build_text_summary(model: UnifiedCoverageModel) -> str:
    """One-line summary for console and log output."""
    s = model.summary
    if s.lines_found == 0:
        return "No coverage data"
    text = f"Coverage: {s.line_percent:.2f}% ({s.lines_hit}/{s.lines_found} lines)"
    if s.branches_found:
        text += f", {s.branch_percent:.2f}% ({s.branches_hit}/{s.branches_found} branches)"
    return text
