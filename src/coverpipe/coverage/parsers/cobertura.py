"""Cobertura XML format parser.

Cobertura XML is produced by tarpaulin (``--out Xml``), coverage.py,
coverlet and gocover-cobertura, and is what most dashboards ingest.

Structure:
<coverage line-rate="0.85" branch-rate="0.50" timestamp="..." ...>
  <sources><source>/repo</source></sources>
  <packages>
    <package name="...">
      <classes>
        <class name="..." filename="..." line-rate="...">
          <methods/>
          <lines>
            <line number="1" hits="1" branch="false"/>
            <line number="2" hits="0" branch="true" condition-coverage="50% (1/2)"/>
          </lines>
        </class>
      </classes>
    </package>
  </packages>
</coverage>

Branch detail is only available as covered/total per line, so arms are
reconstructed as block 0, arms 0..total-1, the first ``covered`` of them
taken once.
"""

import contextlib
import re
import xml.etree.ElementTree as ET
from pathlib import Path

from coverpipe.core.errors import ReportParseError
from coverpipe.coverage.models import BranchKey, FileCoverage
from coverpipe.coverage.parsers.base import ParsedArtifact, normalize_path

_CONDITION_RE = re.compile(r"\((\d+)/(\d+)\)")


class CoberturaParser:
    """Parser for Cobertura XML format."""

    @property
    def format_id(self) -> str:
        return "cobertura"

    def can_parse(self, path: Path) -> bool:
        """Check if file looks like Cobertura XML."""
        if not path.is_file():
            return False
        # Content sniff: <coverage> root with line-rate attribute
        try:
            with path.open("rb") as f:
                header = f.read(2048).decode("utf-8", errors="ignore")
                if (
                    "<coverage" in header
                    and "line-rate=" in header
                    and "<report name=" not in header
                ):
                    return True
        except OSError:
            pass
        return False

    def parse(self, path: Path, *, base_path: Path | None = None) -> ParsedArtifact:
        """Parse Cobertura XML file."""
        if not path.exists():
            raise ReportParseError.invalid(str(path), "file not found")
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ReportParseError.invalid(str(path), str(e)) from e
        return self.parse_content(content, base_path=base_path)

    def parse_content(self, content: bytes, *, base_path: Path | None = None) -> ParsedArtifact:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise ReportParseError.invalid("cobertura", f"invalid XML: {e}") from e

        # Strip namespace if present
        for elem in root.iter():
            if "}" in elem.tag:
                elem.tag = elem.tag.split("}", 1)[1]

        if root.tag != "coverage":
            raise ReportParseError.invalid("cobertura", f"unexpected root element <{root.tag}>")

        timestamp: int | None = None
        with contextlib.suppress(TypeError, ValueError):
            timestamp = int(root.get("timestamp"))  # type: ignore[arg-type]

        sources = [s.text.strip() for s in root.findall("./sources/source") if s.text]
        source_root = sources[0] if sources else None

        lines_by_file: dict[str, dict[int, int]] = {}
        branches_by_file: dict[str, dict[BranchKey, int]] = {}

        try:
            for cls in root.findall(".//class"):
                filename = cls.get("filename", "")
                if not filename:
                    continue
                if base_path is not None and source_root and not Path(filename).is_absolute():
                    filename = str(Path(source_root) / filename)
                path = normalize_path(filename, base_path)

                lines = lines_by_file.setdefault(path, {})
                branches = branches_by_file.setdefault(path, {})

                # Class-level lines only; method-level lines duplicate them
                for line in cls.findall("./lines/line"):
                    line_num = int(line.get("number", 0))
                    hits = int(line.get("hits", 0))
                    # Same file split across classes: lines repeat, keep max
                    lines[line_num] = max(lines.get(line_num, 0), hits)

                    if line.get("branch") == "true":
                        match = _CONDITION_RE.search(line.get("condition-coverage", ""))
                        if match:
                            taken = int(match.group(1))
                            total = int(match.group(2))
                            for branch_id in range(total):
                                key = BranchKey(line_num, 0, branch_id)
                                hit = 1 if branch_id < taken else 0
                                branches[key] = max(branches.get(key, 0), hit)
        except ValueError as e:
            raise ReportParseError.invalid("cobertura", str(e)) from e

        files = {
            path: FileCoverage(path=path, lines=lines, branches=branches_by_file[path])
            for path, lines in lines_by_file.items()
        }
        return ParsedArtifact(
            format_id="cobertura",
            files=files,
            timestamp=timestamp,
            source_root=source_root,
        )
