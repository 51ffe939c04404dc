"""Coverage parser protocol and shared helpers."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from coverpipe.coverage.models import FileCoverage


@dataclass
class ParsedArtifact:
    """Result of parsing one coverage artifact or report."""

    format_id: str
    files: dict[str, FileCoverage] = field(default_factory=dict)
    timestamp: int | None = None  # Cobertura only
    source_root: str | None = None  # Cobertura <source>, first entry


def normalize_path(raw: str, base_path: Path | None = None) -> str:
    """Repository-relative POSIX path for a path found in coverage data.

    Paths outside base_path are kept as-is (absolute).
    """
    path = raw.replace("\\", "/")
    if base_path is not None and PurePosixPath(path).is_absolute():
        with contextlib.suppress(ValueError):
            path = Path(path).relative_to(base_path).as_posix()
    while path.startswith("./"):
        path = path[2:]
    return path


class CoverageParser(Protocol):
    """Protocol for coverage format parsers.

    Each parser handles one format and converts it to FileCoverage values.
    """

    @property
    def format_id(self) -> str:
        """Format identifier (e.g., 'lcov', 'cobertura')."""
        ...

    def can_parse(self, path: Path) -> bool:
        """Check if this parser can handle the given file (extension and content sniffing)."""
        ...

    def parse_content(self, content: bytes, *, base_path: Path | None = None) -> ParsedArtifact:
        """Parse raw artifact bytes.

        Raises:
            ReportParseError: If the content is not valid for this format.
        """
        ...

    def parse(self, path: Path, *, base_path: Path | None = None) -> ParsedArtifact:
        """Parse a coverage file.

        Args:
            path: Path to coverage file.
            base_path: Repository root for relativizing absolute paths.
                      If None, paths in coverage data are used as-is.

        Raises:
            ReportParseError: If the file is missing or cannot be parsed.
        """
        ...
