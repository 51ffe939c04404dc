"""Tests for the queue-fed coverage aggregator."""

import asyncio

import pytest

from coverpipe.core.errors import InternalError, SchemaMismatch
from coverpipe.coverage.aggregator import END_OF_TRACES, CoverageAggregator
from coverpipe.coverage.models import FileCoverage
from coverpipe.instrument.models import CoverageTrace, RunType


def _trace(target_id: str, path: str, lines: dict[int, int], checksum: str | None = None):
    return CoverageTrace(
        target_id=target_id,
        run_type=RunType.TESTS,
        files={path: FileCoverage(path=path, lines=lines, checksum=checksum)},
    )


class TestConsume:
    """Single consumer draining the trace queue."""

    @pytest.mark.asyncio
    async def test_drains_until_end_marker(self) -> None:
        # Given
        aggregator = CoverageAggregator()
        queue: asyncio.Queue = asyncio.Queue()
        await queue.put(_trace("a", "x.py", {1: 1}))
        await queue.put(_trace("b", "x.py", {1: 2, 2: 0}))
        await queue.put(END_OF_TRACES)

        # When
        count = await aggregator.consume(queue)

        # Then
        assert count == 2
        assert aggregator.merged_target_ids == ["a", "b"]
        assert aggregator.freeze().line_hits() == {("x.py", 1): 3, ("x.py", 2): 0}

    @pytest.mark.asyncio
    async def test_concurrent_producers(self) -> None:
        """Traces produced by many tasks all land in the model."""
        aggregator = CoverageAggregator()
        queue: asyncio.Queue = asyncio.Queue()
        consumer = asyncio.create_task(aggregator.consume(queue))

        async def produce(i: int) -> None:
            await asyncio.sleep(0)
            await queue.put(_trace(f"t{i}", "x.py", {1: 1}))

        await asyncio.gather(*(produce(i) for i in range(20)))
        await queue.put(END_OF_TRACES)

        assert await consumer == 20
        assert aggregator.freeze().files["x.py"].lines[1] == 20

    @pytest.mark.asyncio
    async def test_schema_mismatch_stops_consumption(self) -> None:
        aggregator = CoverageAggregator()
        queue: asyncio.Queue = asyncio.Queue()
        await queue.put(_trace("a", "x.py", {1: 1}, checksum="aaa"))
        await queue.put(_trace("b", "x.py", {1: 1}, checksum="bbb"))

        with pytest.raises(SchemaMismatch):
            await aggregator.consume(queue)

        assert aggregator.merged_target_ids == ["a"]


class TestFreeze:
    """Frozen result."""

    def test_exclusions_applied_on_freeze(self) -> None:
        aggregator = CoverageAggregator(exclude=["vendor/*"])
        aggregator.add_sync(_trace("a", "vendor/lib.py", {1: 1}))
        aggregator.add_sync(_trace("a", "src/app.py", {1: 0}))

        model = aggregator.freeze()

        assert list(model.files) == ["src/app.py"]
        assert model.is_frozen

    def test_freeze_is_idempotent(self) -> None:
        aggregator = CoverageAggregator()
        aggregator.add_sync(_trace("a", "x.py", {1: 1}))
        assert aggregator.freeze() is aggregator.freeze()

    def test_add_after_freeze_rejected(self) -> None:
        aggregator = CoverageAggregator()
        aggregator.freeze()

        with pytest.raises(InternalError):
            aggregator.add_sync(_trace("late", "x.py", {1: 1}))

    def test_frozen_model_is_read_only(self) -> None:
        aggregator = CoverageAggregator()
        aggregator.add_sync(_trace("a", "x.py", {1: 1}))
        model = aggregator.freeze()

        with pytest.raises(InternalError):
            model.put(FileCoverage(path="y.py"))
        with pytest.raises(TypeError):
            model.files["x.py"].lines[1] = 9  # type: ignore[index]
