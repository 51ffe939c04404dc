"""Incremental aggregation of traces into the unified model.

The aggregator is the only shared mutable state of a run. Target tasks never
touch it directly: they put finished traces on a queue, and a single
aggregation task drains the queue. ``add`` additionally holds a lock so a
direct caller can never interleave two merges.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from coverpipe.core.errors import InternalError
from coverpipe.core.logging import get_logger
from coverpipe.coverage.merge import exclude_files, merge_into
from coverpipe.coverage.models import UnifiedCoverageModel
from coverpipe.instrument.models import CoverageTrace

log = get_logger(__name__)

# Put on the queue after the last trace
END_OF_TRACES = None


class CoverageAggregator:
    """Builds a UnifiedCoverageModel one trace at a time."""

    def __init__(self, *, exclude: Iterable[str] = ()) -> None:
        self._model = UnifiedCoverageModel(files={})
        self._lock = asyncio.Lock()
        self._exclude = list(exclude)
        self._merged: list[str] = []
        self._frozen: UnifiedCoverageModel | None = None

    @property
    def merged_target_ids(self) -> list[str]:
        """Target ids merged so far, in arrival order."""
        return list(self._merged)

    def add_sync(self, trace: CoverageTrace) -> None:
        """Merge one trace. Raises SchemaMismatch and leaves the model unchanged."""
        if self._frozen is not None:
            raise InternalError.unexpected(
                "trace arrived after aggregation finished", target_id=trace.target_id
            )
        merge_into(self._model, trace)
        self._merged.append(trace.target_id)
        log.debug(
            "trace_merged",
            target_id=trace.target_id,
            files=len(trace.files),
            lines=trace.line_count,
        )

    async def add(self, trace: CoverageTrace) -> None:
        """Merge one trace under the aggregation lock."""
        async with self._lock:
            self.add_sync(trace)

    async def consume(self, queue: asyncio.Queue[CoverageTrace | None]) -> int:
        """Drain traces from the queue until END_OF_TRACES.

        Returns the number of traces merged. A SchemaMismatch propagates and
        stops consumption.
        """
        count = 0
        while True:
            trace = await queue.get()
            try:
                if trace is END_OF_TRACES:
                    return count
                await self.add(trace)
                count += 1
            finally:
                queue.task_done()

    def freeze(self) -> UnifiedCoverageModel:
        """Apply exclusions and return the read-only final model."""
        if self._frozen is None:
            self._frozen = exclude_files(self._model, self._exclude).freeze()
            summary = self._frozen.summary
            log.info(
                "aggregation_complete",
                traces=len(self._merged),
                files=summary.files,
                lines_found=summary.lines_found,
                lines_hit=summary.lines_hit,
            )
        return self._frozen
