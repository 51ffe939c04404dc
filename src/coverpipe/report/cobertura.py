"""Cobertura XML writer.

Output is deterministic: packages, classes, lines and attributes are always
emitted in the same order, so identical models produce identical bytes.
The ``timestamp`` attribute is the only field that varies between runs and
is supplied by the caller when byte-for-byte reproduction is needed.

Rates follow coverage.py's convention: ``%.4g`` of covered/valid, and
``1`` when nothing is instrumented.
"""

import io
import xml.etree.ElementTree as ET
from collections import defaultdict
from pathlib import PurePosixPath

from coverpipe import __version__
from coverpipe.coverage.models import FileCoverage, UnifiedCoverageModel
from coverpipe.report.models import ReportMetadata


def _rate(hit: int, total: int) -> str:
    if total == 0:
        return "1"
    return "%.4g" % (hit / total)


def _package_name(path: str) -> str:
    parent = PurePosixPath(path).parent.as_posix()
    return "." if parent in ("", ".") else parent.replace("/", ".")


def _condition_coverage(fc: FileCoverage, line: int) -> str | None:
    arms = fc.branches_at(line)
    if not arms:
        return None
    total = len(arms)
    covered = sum(1 for arm in arms if arm.hits > 0)
    return f"{covered * 100 // total}% ({covered}/{total})"


def _class_element(fc: FileCoverage) -> ET.Element:
    cls = ET.Element(
        "class",
        {
            "name": PurePosixPath(fc.path).name,
            "filename": fc.path,
            "complexity": "0",
            "line-rate": _rate(fc.lines_hit, fc.lines_found),
            "branch-rate": _rate(fc.branches_hit, fc.branches_found),
        },
    )
    ET.SubElement(cls, "methods")
    lines_el = ET.SubElement(cls, "lines")
    for line_num, hits in sorted(fc.lines.items()):
        attrs = {"number": str(line_num), "hits": str(hits)}
        condition = _condition_coverage(fc, line_num)
        if condition is None:
            attrs["branch"] = "false"
        else:
            attrs["branch"] = "true"
            attrs["condition-coverage"] = condition
        ET.SubElement(lines_el, "line", attrs)
    return cls


def write_cobertura(model: UnifiedCoverageModel, metadata: ReportMetadata) -> bytes:
    """Render the model as Cobertura XML bytes."""
    summary = model.summary

    root = ET.Element(
        "coverage",
        {
            "version": f"coverpipe {__version__}",
            "timestamp": str(metadata.timestamp if metadata.timestamp is not None else 0),
            "lines-valid": str(summary.lines_found),
            "lines-covered": str(summary.lines_hit),
            "line-rate": _rate(summary.lines_hit, summary.lines_found),
            "branches-valid": str(summary.branches_found),
            "branches-covered": str(summary.branches_hit),
            "branch-rate": _rate(summary.branches_hit, summary.branches_found),
            "complexity": "0",
        },
    )
    sources = ET.SubElement(root, "sources")
    ET.SubElement(sources, "source").text = metadata.source_root or "."

    by_package: dict[str, list[FileCoverage]] = defaultdict(list)
    for path in sorted(model.files):
        by_package[_package_name(path)].append(model.files[path])

    packages = ET.SubElement(root, "packages")
    for name in sorted(by_package):
        files = by_package[name]
        lines_found = sum(f.lines_found for f in files)
        lines_hit = sum(f.lines_hit for f in files)
        branches_found = sum(f.branches_found for f in files)
        branches_hit = sum(f.branches_hit for f in files)
        package = ET.SubElement(
            packages,
            "package",
            {
                "name": name,
                "line-rate": _rate(lines_hit, lines_found),
                "branch-rate": _rate(branches_hit, branches_found),
                "complexity": "0",
            },
        )
        classes = ET.SubElement(package, "classes")
        for fc in files:
            classes.append(_class_element(fc))

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    buf = io.BytesIO()
    tree.write(buf, encoding="utf-8", xml_declaration=True)
    buf.write(b"\n")
    return buf.getvalue()
