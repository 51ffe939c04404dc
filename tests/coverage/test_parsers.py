"""Tests for LCOV and Cobertura parsers."""

from pathlib import Path

import pytest

from coverpipe.core.errors import ReportParseError
from coverpipe.coverage.models import BranchKey
from coverpipe.coverage.parsers import (
    CoberturaParser,
    LcovParser,
    detect_parser,
    parse_artifact,
)

LCOV_SAMPLE = """\
TN:
SF:/repo/src/lib.rs
DA:1,5
DA:2,0
DA:3,-
BRDA:2,0,0,1
BRDA:2,0,1,-
LF:3
LH:1
end_of_record
SF:/elsewhere/dep.rs
DA:10,1
end_of_record
"""

COBERTURA_SAMPLE = """\
<?xml version="1.0" ?>
<coverage line-rate="0.5" branch-rate="0.5" timestamp="1700000000" version="1">
  <sources><source>/repo</source></sources>
  <packages>
    <package name="src">
      <classes>
        <class name="app" filename="src/app.py" line-rate="0.5">
          <lines>
            <line number="1" hits="3" branch="false"/>
            <line number="4" hits="1" branch="true" condition-coverage="50% (1/2)"/>
            <line number="5" hits="0" branch="false"/>
          </lines>
        </class>
      </classes>
    </package>
  </packages>
</coverage>
"""


class TestLcovParser:
    """LCOV text records."""

    def test_given_lcov_when_parsed_then_lines_and_branches(self) -> None:
        # Given
        content = LCOV_SAMPLE.encode()

        # When
        result = LcovParser().parse_content(content, base_path=Path("/repo"))

        # Then
        fc = result.files["src/lib.rs"]
        assert dict(fc.lines) == {1: 5, 2: 0, 3: 0}
        assert dict(fc.branches) == {BranchKey(2, 0, 0): 1, BranchKey(2, 0, 1): 0}

    def test_paths_outside_base_kept_absolute(self) -> None:
        result = LcovParser().parse_content(LCOV_SAMPLE.encode(), base_path=Path("/repo"))
        assert "/elsewhere/dep.rs" in result.files

    def test_repeated_file_sections_add(self) -> None:
        content = b"SF:a.py\nDA:1,1\nend_of_record\nSF:a.py\nDA:1,2\nend_of_record\n"
        result = LcovParser().parse_content(content)
        assert result.files["a.py"].lines[1] == 3

    def test_missing_end_of_record_is_flushed(self) -> None:
        result = LcovParser().parse_content(b"SF:a.py\nDA:1,1\n")
        assert result.files["a.py"].lines[1] == 1

    def test_malformed_record(self) -> None:
        with pytest.raises(ReportParseError):
            LcovParser().parse_content(b"SF:a.py\nDA:one,1\nend_of_record\n")


class TestCoberturaParser:
    """Cobertura XML."""

    def test_parses_lines_branches_and_header(self) -> None:
        result = CoberturaParser().parse_content(
            COBERTURA_SAMPLE.encode(), base_path=Path("/repo")
        )

        assert result.timestamp == 1700000000
        assert result.source_root == "/repo"
        fc = result.files["src/app.py"]
        assert dict(fc.lines) == {1: 3, 4: 1, 5: 0}
        assert dict(fc.branches) == {BranchKey(4, 0, 0): 1, BranchKey(4, 0, 1): 0}

    def test_invalid_xml(self) -> None:
        with pytest.raises(ReportParseError):
            CoberturaParser().parse_content(b"<coverage")

    def test_wrong_root(self) -> None:
        with pytest.raises(ReportParseError):
            CoberturaParser().parse_content(b"<report/>")


class TestDetection:
    """Format auto-detection."""

    def test_detects_by_content(self, tmp_path: Path) -> None:
        xml = tmp_path / "coverage.xml"
        xml.write_text(COBERTURA_SAMPLE)
        lcov = tmp_path / "coverage.txt"
        lcov.write_text(LCOV_SAMPLE)

        assert detect_parser(xml).format_id == "cobertura"  # type: ignore[union-attr]
        assert detect_parser(lcov).format_id == "lcov"  # type: ignore[union-attr]

    def test_unknown_content(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("hello\n")

        assert detect_parser(path) is None
        with pytest.raises(ReportParseError):
            parse_artifact(path)

    def test_forced_unknown_format(self, tmp_path: Path) -> None:
        path = tmp_path / "lcov.info"
        path.write_text(LCOV_SAMPLE)

        with pytest.raises(ReportParseError):
            parse_artifact(path, format_id="jacoco")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ReportParseError):
            parse_artifact(tmp_path / "lcov.info", format_id="lcov")
