"""Report serialization.

Usage:
    from coverpipe.report import serialize, deserialize, write_reports

    report = serialize(model, "cobertura")
    model2, meta = deserialize(report.content, "cobertura")
    assert serialize(model2, "cobertura", timestamp=meta.timestamp,
                     source_root=meta.source_root).content == report.content

Supported schemas:
    - cobertura (alias: xml): Cobertura XML, the tarpaulin ``--out Xml`` format
    - lcov (alias: info): LCOV tracefile
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from coverpipe.core.errors import UnsupportedSchema
from coverpipe.core.logging import get_logger
from coverpipe.coverage.models import UnifiedCoverageModel
from coverpipe.coverage.parsers import PARSER_BY_FORMAT
from coverpipe.report.cobertura import write_cobertura
from coverpipe.report.lcov import write_lcov
from coverpipe.report.models import Report, ReportMetadata
from coverpipe.report.summary import build_summary, build_text_summary, compute_file_stats

log = get_logger(__name__)

_WRITERS: dict[str, Callable[[UnifiedCoverageModel, ReportMetadata], bytes]] = {
    "cobertura": write_cobertura,
    "lcov": lambda model, _meta: write_lcov(model),
}

_ALIASES = {
    "cobertura": "cobertura",
    "xml": "cobertura",
    "lcov": "lcov",
    "info": "lcov",
}

SUPPORTED_SCHEMAS = sorted(_WRITERS)

__all__ = [
    "SUPPORTED_SCHEMAS",
    "Report",
    "ReportMetadata",
    "build_summary",
    "build_text_summary",
    "compute_file_stats",
    "deserialize",
    "resolve_schema",
    "serialize",
    "write_reports",
]


def resolve_schema(schema: str) -> str:
    """Canonical schema id for a name or alias.

    Raises:
        UnsupportedSchema: If no serializer exists for the name.
    """
    canonical = _ALIASES.get(schema.strip().lower())
    if canonical is None:
        raise UnsupportedSchema.for_schema(schema, SUPPORTED_SCHEMAS)
    return canonical


def _now_ms() -> int:
    return int(time.time() * 1000)


def serialize(
    model: UnifiedCoverageModel,
    schema: str,
    *,
    timestamp: int | None = None,
    source_root: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> Report:
    """Render a model in the given schema.

    Identical models with identical timestamp/source_root always produce
    identical bytes. An unfrozen model is frozen first.

    Raises:
        UnsupportedSchema: If the schema is unknown.
    """
    canonical = resolve_schema(schema)
    frozen = model if model.is_frozen else model.freeze()
    meta = ReportMetadata(
        timestamp=timestamp if timestamp is not None else _now_ms(),
        source_root=source_root,
    )
    content = _WRITERS[canonical](frozen, meta)
    report = Report(
        schema=canonical,
        content=content,
        timestamp=meta.timestamp if canonical == "cobertura" else None,
        metadata=MappingProxyType(dict(metadata or {})),
    )
    log.debug("report_serialized", schema=canonical, size=len(content), digest=report.digest)
    return report


def deserialize(content: bytes, schema: str) -> tuple[UnifiedCoverageModel, ReportMetadata]:
    """Parse a serialized report back into a frozen model plus its metadata.

    Raises:
        UnsupportedSchema: If the schema is unknown.
        ReportParseError: If the content is malformed.
    """
    canonical = resolve_schema(schema)
    parsed = PARSER_BY_FORMAT[canonical].parse_content(content)
    model = UnifiedCoverageModel(files=dict(parsed.files)).freeze()
    return model, ReportMetadata(timestamp=parsed.timestamp, source_root=parsed.source_root)


def write_reports(
    model: UnifiedCoverageModel,
    formats: Iterable[str],
    output_dir: Path,
    *,
    source_root: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> list[tuple[Path, Report]]:
    """Serialize into every requested format and write one file per format.

    All formats are resolved before anything is written, so an unsupported
    schema fails the call without partial output.
    """
    schemas = list(dict.fromkeys(resolve_schema(f) for f in formats))
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = _now_ms()

    written: list[tuple[Path, Report]] = []
    for schema in schemas:
        report = serialize(
            model,
            schema,
            timestamp=timestamp,
            source_root=source_root,
            metadata=metadata,
        )
        path = output_dir / report.file_name
        path.write_bytes(report.content)
        log.info("report_written", schema=schema, path=str(path), size=len(report))
        written.append((path, report))
    return written
