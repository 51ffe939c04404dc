"""Readers for the coverage artifacts instrumentation backends leave behind.

Two formats are understood: Cobertura XML (tarpaulin, pytest-cov
``--cov-report=xml``) and LCOV tracefiles (llvm-cov ``--lcov``, anything
writing ``$COVERPIPE_LCOV_FILE``). Detection sniffs file content, not names.
"""

from collections.abc import Sequence
from pathlib import Path

from coverpipe.core.errors import ReportParseError

from .base import CoverageParser, ParsedArtifact, normalize_path
from .cobertura import CoberturaParser
from .lcov import LcovParser

# Detection order: the XML sniff is strict, the LCOV one is a line-prefix match
PARSER_REGISTRY: Sequence[CoverageParser] = (CoberturaParser(), LcovParser())

PARSER_BY_FORMAT: dict[str, CoverageParser] = {p.format_id: p for p in PARSER_REGISTRY}

__all__ = [
    "PARSER_BY_FORMAT",
    "PARSER_REGISTRY",
    "CoberturaParser",
    "CoverageParser",
    "LcovParser",
    "ParsedArtifact",
    "detect_parser",
    "normalize_path",
    "parse_artifact",
]


def detect_parser(path: Path) -> CoverageParser | None:
    return next((p for p in PARSER_REGISTRY if p.can_parse(path)), None)


def parse_artifact(
    path: Path,
    *,
    format_id: str | None = None,
    base_path: Path | None = None,
) -> ParsedArtifact:
    """Read ``path`` as ``format_id``, or as whatever format its content looks like.

    File paths inside the artifact are made relative to ``base_path``.

    Raises:
        ReportParseError: Unknown or undetectable format, unreadable or malformed file.
    """
    parser = _parser_for(path, format_id)
    return parser.parse(path, base_path=base_path)


def _parser_for(path: Path, format_id: str | None) -> CoverageParser:
    if format_id is None:
        detected = detect_parser(path)
        if detected is None:
            supported = ", ".join(PARSER_BY_FORMAT)
            raise ReportParseError.invalid(
                str(path), f"content matches no known coverage format ({supported})"
            )
        return detected

    try:
        return PARSER_BY_FORMAT[format_id]
    except KeyError:
        supported = ", ".join(sorted(PARSER_BY_FORMAT))
        raise ReportParseError.invalid(
            str(path), f"unknown coverage format {format_id!r}, expected one of: {supported}"
        ) from None
