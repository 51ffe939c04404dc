"""LCOV tracefile writer."""

from coverpipe.coverage.models import UnifiedCoverageModel


def write_lcov(model: UnifiedCoverageModel) -> bytes:
    """Render the model as an LCOV tracefile (one record per file, sorted)."""
    out: list[str] = []
    for path in sorted(model.files):
        fc = model.files[path]
        out.append("TN:")
        out.append(f"SF:{path}")
        for key, hits in sorted(fc.branches.items()):
            out.append(f"BRDA:{key.line},{key.block_id},{key.branch_id},{hits}")
        out.append(f"BRF:{fc.branches_found}")
        out.append(f"BRH:{fc.branches_hit}")
        for line_num, hits in sorted(fc.lines.items()):
            out.append(f"DA:{line_num},{hits}")
        out.append(f"LF:{fc.lines_found}")
        out.append(f"LH:{fc.lines_hit}")
        out.append("end_of_record")
    return ("\n".join(out) + "\n").encode("utf-8") if out else b""
