"""Pipeline orchestration: run targets, aggregate, serialize, upload.

Targets run as independent tasks bounded by a semaphore. Finished traces go
through a queue to a single aggregation task. A per-target failure is
recorded in the summary and does not stop its siblings unless fail-fast is
configured. Aggregation and serialization errors are always fatal; upload
failures only with ``fail_ci_if_error``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import signal
import time
from pathlib import Path

from coverpipe.config.ci_env import CiEnvironment, detect_ci_environment
from coverpipe.config.models import CoverPipeConfig
from coverpipe.core.errors import (
    Cancelled,
    CoverPipeError,
    ExecutionTimeout,
    InstrumentationUnavailable,
    TargetCrashed,
)
from coverpipe.core.logging import get_logger, get_run_id, set_run_id
from coverpipe.core.progress import render_summary, spinner
from coverpipe.coverage.aggregator import END_OF_TRACES, CoverageAggregator
from coverpipe.coverage.models import UnifiedCoverageModel
from coverpipe.instrument.discovery import discover_targets
from coverpipe.instrument.models import CoverageTrace, TargetOutcome, TestTarget
from coverpipe.instrument.runner import InstrumentationRunner
from coverpipe.pipeline.models import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    PipelineState,
    PipelineSummary,
)
from coverpipe.pipeline.state import PipelineStateMachine
from coverpipe.report import build_text_summary, write_reports
from coverpipe.report.models import Report
from coverpipe.upload.client import UploadClient
from coverpipe.upload.models import UploadResult

log = get_logger(__name__)

SUMMARY_FILE_NAME = "coverpipe-summary.json"


class _FailFast(Exception):
    """A target failed while fail-fast is configured."""

    def __init__(self, outcome: TargetOutcome) -> None:
        super().__init__(outcome.target_id)
        self.outcome = outcome


class Pipeline:
    """One coverage run, from target discovery to exit status."""

    def __init__(
        self,
        config: CoverPipeConfig,
        repo_root: Path,
        *,
        runner: InstrumentationRunner | None = None,
        upload_client: UploadClient | None = None,
        ci: CiEnvironment | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._config = config
        self._repo_root = repo_root.resolve()
        self._runner = runner or InstrumentationRunner(self._repo_root)
        self._upload_client = upload_client
        self._ci = ci
        self._cancel_event = cancel_event or asyncio.Event()
        self._state = PipelineStateMachine()
        self._outcomes: list[TargetOutcome] = []

    @property
    def state(self) -> PipelineState:
        return self._state.state

    @property
    def state_history(self) -> list[PipelineState]:
        return self._state.history

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    @property
    def output_dir(self) -> Path:
        return self._repo_root / self._config.report.output_dir

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> PipelineSummary:
        """Execute the pipeline once and return its summary.

        Never raises for pipeline failures: they are reflected in the
        summary's state and exit code.
        """
        run_id = get_run_id() or set_run_id()
        started = time.monotonic()
        summary = PipelineSummary(state=PipelineState.IDLE, exit_code=EXIT_SUCCESS, run_id=run_id)

        try:
            await self._execute(summary)
        except Cancelled as e:
            self._state.fail("cancelled")
            summary.error = e
            summary.exit_code = EXIT_CANCELLED
            if summary.upload_outcome == "not attempted" and self._config.upload.enabled:
                summary.upload_outcome = "cancelled"
            log.warning("pipeline_cancelled", phase=e.details.get("phase"))
        except _FailFast as e:
            outcome = e.outcome
            self._state.fail(f"fail-fast: target {outcome.target_id} {outcome.status}")
            summary.error = outcome.error
            summary.exit_code = EXIT_FAILURE
            log.error("pipeline_fail_fast", target_id=outcome.target_id, status=outcome.status)
        except CoverPipeError as e:
            self._state.fail(e.message)
            summary.error = e
            summary.exit_code = EXIT_FAILURE
            log.error("pipeline_failed", error=e.error_name, message=e.message)

        summary.state = self._state.state
        summary.reason = self._state.reason
        summary.outcomes = list(self._outcomes)
        summary.duration_seconds = round(time.monotonic() - started, 3)
        self._write_summary(summary)
        log.info(
            "pipeline_finished",
            state=summary.state.value,
            exit_code=summary.exit_code,
            targets_run=summary.targets_run,
            targets_failed=summary.targets_failed,
        )
        return summary

    async def _execute(self, summary: PipelineSummary) -> None:
        targets = discover_targets(self._repo_root, self._config.run, self._config.targets)
        self._state.transition(PipelineState.RUNNING)
        if not targets:
            log.warning("no_targets", repo_root=str(self._repo_root))

        aggregator = CoverageAggregator(exclude=self._config.run.exclude_files)
        await self._run_targets(targets, aggregator)

        self._state.transition(PipelineState.AGGREGATING)
        model = aggregator.freeze()
        self._record_coverage(summary, model)
        if self._cancel_event.is_set():
            raise Cancelled.during("aggregating")

        self._state.transition(PipelineState.SERIALIZING)
        report = self._serialize(summary, model)

        fail_under = self._config.run.fail_under
        if fail_under is not None and (summary.line_percent or 0.0) < fail_under:
            summary.exit_code = EXIT_FAILURE
            percent = summary.line_percent or 0.0
            self._state.fail(f"line coverage {percent:.2f}% is below fail_under {fail_under:g}%")
            return

        upload = self._config.upload
        if not upload.enabled:
            summary.upload_outcome = "disabled"
        elif not upload.url:
            summary.upload_outcome = "skipped (no upload url)"
            log.info("upload_skipped", reason="no upload url")
        else:
            self._state.transition(PipelineState.UPLOADING)
            result = await self._upload(report)
            summary.upload = result
            summary.upload_outcome = result.outcome
            if not result.success and result.error is not None:
                if upload.fail_ci_if_error:
                    raise result.error
                log.warning("upload_failed_ignored", error=result.error.message)

        self._state.transition(PipelineState.DONE)

    # =========================================================================
    # Targets
    # =========================================================================

    async def _run_targets(
        self,
        targets: list[TestTarget],
        aggregator: CoverageAggregator,
    ) -> None:
        """Run every target, feeding traces to a single aggregation task.

        Raises:
            Cancelled: If the cancel event fired.
            _FailFast: If a target failed with fail-fast configured.
            InstrumentationUnavailable: If a backend tool is missing.
            SchemaMismatch: If a trace contradicts already merged ones.
        """
        queue: asyncio.Queue[CoverageTrace | None] = asyncio.Queue()
        semaphore = asyncio.Semaphore(self._config.run.jobs)
        abort = asyncio.Event()
        fail_fast_outcome: list[TargetOutcome] = []

        consumer = asyncio.create_task(aggregator.consume(queue))
        consumer.add_done_callback(
            lambda t: abort.set() if not t.cancelled() and t.exception() is not None else None
        )

        async def run_one(target: TestTarget) -> TargetOutcome:
            async with semaphore:
                if abort.is_set() or self._cancel_event.is_set():
                    return TargetOutcome(target.target_id, target.run_type, "skipped")
                try:
                    outcome = await self._run_target(target, queue)
                except InstrumentationUnavailable:
                    abort.set()
                    raise
            if outcome.is_failure and self._config.run.fail_fast and not abort.is_set():
                fail_fast_outcome.append(outcome)
                abort.set()
            return outcome

        tasks = [asyncio.create_task(run_one(t)) for t in targets]
        watcher = asyncio.create_task(self._cancel_on_stop(tasks, abort))

        try:
            with spinner(f"Running {len(targets)} target(s)"):
                results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        fatal: BaseException | None = None
        for target, result in zip(targets, results, strict=True):
            if isinstance(result, TargetOutcome):
                self._outcomes.append(result)
            elif isinstance(result, asyncio.CancelledError):
                self._outcomes.append(TargetOutcome(target.target_id, target.run_type, "skipped"))
            elif isinstance(result, CoverPipeError):
                self._outcomes.append(
                    TargetOutcome(target.target_id, target.run_type, "crashed", error=result)
                )
                fatal = fatal or result
            else:
                fatal = fatal or result

        if self._cancel_event.is_set():
            await self._stop_consumer(consumer)
            raise Cancelled.during("running", targets_done=self._completed_count())
        if fatal is not None:
            await self._stop_consumer(consumer)
            raise fatal
        if fail_fast_outcome:
            await self._stop_consumer(consumer)
            raise _FailFast(fail_fast_outcome[0])

        await queue.put(END_OF_TRACES)
        # SchemaMismatch from the aggregation task propagates here
        merged = await consumer
        log.debug("traces_aggregated", count=merged)

    async def _run_target(
        self,
        target: TestTarget,
        queue: asyncio.Queue[CoverageTrace | None],
    ) -> TargetOutcome:
        started = time.monotonic()
        try:
            trace = await self._runner.run(target, timeout_sec=self._config.run.timeout_sec)
        except ExecutionTimeout as e:
            status, exit_code, error = "timeout", None, e
        except TargetCrashed as e:
            status, exit_code, error = "crashed", e.details.get("exit_code"), e
            log.warning(
                "target_crashed", target_id=target.target_id, reason=e.details.get("reason")
            )
        except InstrumentationUnavailable:
            raise
        else:
            await queue.put(trace)
            exit_code = trace.exit_code
            status, error = ("passed" if exit_code == 0 else "failed"), None
        return TargetOutcome(
            target_id=target.target_id,
            run_type=target.run_type,
            status=status,
            exit_code=exit_code,
            duration_seconds=round(time.monotonic() - started, 3),
            error=error,
        )

    async def _cancel_on_stop(
        self,
        tasks: list[asyncio.Task[TargetOutcome]],
        abort: asyncio.Event,
    ) -> None:
        """Cancel in-flight targets once the run is cancelled or aborted."""
        waiters = [
            asyncio.ensure_future(abort.wait()),
            asyncio.ensure_future(self._cancel_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
        for task in tasks:
            task.cancel()

    @staticmethod
    async def _stop_consumer(consumer: asyncio.Task[int]) -> None:
        """Stop the aggregation task; the run is already failing for another reason."""
        if consumer.done():
            if not consumer.cancelled() and consumer.exception() is not None:
                log.debug("aggregation_abandoned", error=str(consumer.exception()))
            return
        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer

    def _completed_count(self) -> int:
        return sum(1 for o in self._outcomes if o.status != "skipped")

    # =========================================================================
    # Report and upload
    # =========================================================================

    def _record_coverage(self, summary: PipelineSummary, model: UnifiedCoverageModel) -> None:
        s = model.summary
        summary.lines_found = s.lines_found
        summary.lines_hit = s.lines_hit
        summary.branches_found = s.branches_found
        summary.branches_hit = s.branches_hit
        summary.line_percent = s.line_percent
        summary.branch_percent = s.branch_percent
        log.info("coverage_computed", summary=build_text_summary(model))

    def _serialize(self, summary: PipelineSummary, model: UnifiedCoverageModel) -> Report:
        """Write every configured format; the first one is the upload payload."""
        report_cfg = self._config.report
        written = write_reports(
            model,
            report_cfg.formats,
            self.output_dir,
            source_root=report_cfg.source_root or str(self._repo_root),
            metadata={
                "run_id": summary.run_id,
                "targets": [o.to_dict() for o in self._outcomes],
            },
        )
        summary.reports = [str(path) for path, _ in written]
        return written[0][1]

    async def _upload(self, report: Report) -> UploadResult:
        client = self._upload_client
        if client is None:
            ci = self._ci or detect_ci_environment(repo_root=self._repo_root)
            client = UploadClient(self._config.upload, ci)
        with spinner("Uploading coverage report"):
            return await client.upload(report, cancel_event=self._cancel_event)

    def _write_summary(self, summary: PipelineSummary) -> None:
        path = self.output_dir / SUMMARY_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(summary.to_dict(), indent=2) + "\n")
        except OSError as e:
            log.warning("summary_write_failed", path=str(path), error=str(e))
        else:
            log.debug("summary_written", path=str(path))


# =============================================================================
# Entry point
# =============================================================================


async def _run_with_signals(config: CoverPipeConfig, repo_root: Path) -> PipelineSummary:
    loop = asyncio.get_running_loop()
    cancel_event = asyncio.Event()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, cancel_event.set)
            installed.append(sig)
    try:
        return await Pipeline(config, repo_root, cancel_event=cancel_event).run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def run_pipeline(config: CoverPipeConfig, repo_root: Path | None = None) -> int:
    """Run the pipeline, print its summary and return the process exit code.

    SIGINT and SIGTERM cancel the run; pending upload retries are abandoned.
    """
    summary = asyncio.run(_run_with_signals(config, (repo_root or Path.cwd()).resolve()))
    render_summary(summary)
    return summary.exit_code
