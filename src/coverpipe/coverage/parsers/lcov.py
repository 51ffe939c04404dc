"""LCOV format parser.

LCOV is a plain text format with records like:
- TN:<test name>
- SF:<source file path>
- DA:<line>,<hit count>[,<checksum>]
- BRDA:<line>,<block>,<branch>,<taken>
- LF/LH, BRF/BRH: found/hit totals (recomputed, never trusted)
- end_of_record

Used by: cargo-llvm-cov, grcov, pytest-cov, gcov/lcov.
FN/FNDA function records are ignored.
"""

from pathlib import Path

from coverpipe.core.errors import ReportParseError
from coverpipe.coverage.models import BranchKey, FileCoverage
from coverpipe.coverage.parsers.base import ParsedArtifact, normalize_path


class LcovParser:
    """Parser for LCOV format coverage files."""

    @property
    def format_id(self) -> str:
        return "lcov"

    def can_parse(self, path: Path) -> bool:
        """Check if file looks like LCOV format."""
        if not path.is_file():
            return False
        if path.suffix in (".info", ".lcov"):
            return True
        # Content sniff: TN: or SF: on the first meaningful line
        try:
            with path.open() as f:
                for line in f:
                    stripped = line.strip()
                    if stripped.startswith(("SF:", "TN:")):
                        return True
                    if stripped and not stripped.startswith("#"):
                        break
        except (OSError, UnicodeDecodeError):
            pass
        return False

    def parse(self, path: Path, *, base_path: Path | None = None) -> ParsedArtifact:
        """Parse LCOV file."""
        if not path.exists():
            raise ReportParseError.invalid(str(path), "file not found")
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ReportParseError.invalid(str(path), str(e)) from e
        return self.parse_content(content, base_path=base_path)

    def parse_content(self, content: bytes, *, base_path: Path | None = None) -> ParsedArtifact:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReportParseError.invalid("lcov", f"not UTF-8: {e}") from e

        files: dict[str, FileCoverage] = {}
        path: str | None = None
        lines: dict[int, int] = {}
        branches: dict[BranchKey, int] = {}

        def flush() -> None:
            if path is None:
                return
            if path in files:
                # Same file listed twice (multiple TN sections): add counts
                prev = files[path]
                for ln, hits in prev.lines.items():
                    lines[ln] = lines.get(ln, 0) + hits
                for key, hits in prev.branches.items():
                    branches[key] = branches.get(key, 0) + hits
            files[path] = FileCoverage(path=path, lines=dict(lines), branches=dict(branches))

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            try:
                if line.startswith("SF:"):
                    flush()
                    path = normalize_path(line[3:], base_path)
                    lines = {}
                    branches = {}

                elif line.startswith("DA:"):
                    if path is None:
                        continue
                    parts = line[3:].split(",")
                    line_num = int(parts[0])
                    # '-' appears in some generators for "not executed"
                    hits = 0 if parts[1] == "-" else int(parts[1])
                    lines[line_num] = lines.get(line_num, 0) + hits

                elif line.startswith("BRDA:"):
                    if path is None:
                        continue
                    parts = line[5:].split(",")
                    key = BranchKey(int(parts[0]), int(parts[1]), int(parts[2]))
                    # '-' means the enclosing block never ran
                    hits = 0 if parts[3] == "-" else int(parts[3])
                    branches[key] = branches.get(key, 0) + hits

                elif line == "end_of_record":
                    flush()
                    path = None
                    lines = {}
                    branches = {}
            except (ValueError, IndexError) as e:
                raise ReportParseError.invalid("lcov", f"line {lineno}: {raw!r}") from e

        # Handle file without end_of_record
        flush()

        return ParsedArtifact(format_id="lcov", files=files)
