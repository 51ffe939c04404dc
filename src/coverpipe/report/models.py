"""Report value types."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True, slots=True)
class ReportMetadata:
    """Fields of a serialized report that do not come from the coverage model."""

    timestamp: int | None = None  # milliseconds since epoch (Cobertura)
    source_root: str | None = None  # Cobertura <source>


@dataclass(frozen=True, slots=True)
class Report:
    """A serialized coverage report. Immutable once produced.

    ``metadata`` carries run information (target failures, run id) for the
    summary and the upload; it is not part of ``content``.
    """

    schema: str
    content: bytes
    timestamp: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def digest(self) -> str:
        """sha256 of content."""
        return hashlib.sha256(self.content).hexdigest()

    @property
    def content_type(self) -> str:
        return "application/xml" if self.schema == "cobertura" else "text/plain"

    @property
    def file_name(self) -> str:
        return "cobertura.xml" if self.schema == "cobertura" else "lcov.info"

    def __len__(self) -> int:
        return len(self.content)
