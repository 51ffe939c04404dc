"""Unified coverage model, merging and aggregation.

Usage:
    from coverpipe.coverage import CoverageAggregator, merge_traces

    model = merge_traces([trace_a, trace_b])

    aggregator = CoverageAggregator(exclude=["tests/*"])
    await aggregator.add(trace)
    frozen = aggregator.freeze()
"""

from coverpipe.coverage.aggregator import END_OF_TRACES, CoverageAggregator
from coverpipe.coverage.merge import (
    check_compatible,
    exclude_files,
    merge_file_coverage,
    merge_into,
    merge_traces,
)
from coverpipe.coverage.models import (
    BranchCoverage,
    BranchKey,
    CoverageSummary,
    FileCoverage,
    UnifiedCoverageModel,
)
from coverpipe.coverage.parsers import (
    PARSER_BY_FORMAT,
    PARSER_REGISTRY,
    CoverageParser,
    ParsedArtifact,
    detect_parser,
    parse_artifact,
)

__all__ = [
    # Models
    "BranchCoverage",
    "BranchKey",
    "CoverageSummary",
    "FileCoverage",
    "UnifiedCoverageModel",
    # Merge
    "check_compatible",
    "exclude_files",
    "merge_file_coverage",
    "merge_into",
    "merge_traces",
    # Aggregation
    "END_OF_TRACES",
    "CoverageAggregator",
    # Parsers
    "CoverageParser",
    "PARSER_BY_FORMAT",
    "PARSER_REGISTRY",
    "ParsedArtifact",
    "detect_parser",
    "parse_artifact",
]
