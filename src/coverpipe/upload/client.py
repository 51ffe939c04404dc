"""Upload client for coverage reports.

Every attempt POSTs the report body over a fresh connection. 2xx is
success; 5xx, 429, timeouts and transport errors are retried with backoff;
any other status is a terminal rejection. The backoff wait races the
pipeline's cancel event, so a cancelled run stops within one backoff tick.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import httpx

from coverpipe import __version__
from coverpipe.config.ci_env import CiEnvironment, derive_run_id
from coverpipe.core.errors import Cancelled, ConfigError, CoverPipeError, UploadFailed
from coverpipe.core.logging import get_logger
from coverpipe.upload.models import AttemptRecord, UploadResult, UploadState
from coverpipe.upload.retry import (
    Clock,
    RetryPolicy,
    SystemClock,
    UploadStateMachine,
    parse_retry_after,
)

if TYPE_CHECKING:
    from coverpipe.config.models import UploadConfig
    from coverpipe.report.models import Report

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _AttemptOutcome:
    ok: bool
    retryable: bool
    status_code: int | None = None
    retry_after: float | None = None
    error: str | None = None
    body: str = ""


def _classify(response: httpx.Response) -> _AttemptOutcome:
    status = response.status_code
    if 200 <= status < 300:
        return _AttemptOutcome(ok=True, retryable=False, status_code=status)
    retryable = status == 429 or status >= 500
    retry_after = parse_retry_after(response.headers.get("Retry-After")) if retryable else None
    return _AttemptOutcome(
        ok=False,
        retryable=retryable,
        status_code=status,
        retry_after=retry_after,
        error=f"HTTP {status}",
        body=response.text,
    )


class UploadClient:
    """Transmits reports to the coverage service."""

    def __init__(
        self,
        config: UploadConfig,
        ci: CiEnvironment | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._ci = ci or CiEnvironment()
        self._transport = transport
        self._clock = clock or SystemClock()
        self._policy = RetryPolicy.from_config(config)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # =========================================================================
    # Request construction
    # =========================================================================

    def _endpoint(self) -> str:
        if not self._config.url:
            raise ConfigError.missing_required("upload.url")
        return self._config.url

    def build_params(self, report: Report, run_id: str) -> dict[str, str]:
        params = {"run_id": run_id, **self._ci.as_params(), "format": report.schema}
        if self._config.slug:
            params["slug"] = self._config.slug
        if self._config.flags:
            params["flags"] = ",".join(self._config.flags)
        if self._config.name:
            params["name"] = self._config.name
        return params

    def build_headers(self, report: Report, run_id: str) -> dict[str, str]:
        headers = {
            "Content-Type": report.content_type,
            "Idempotency-Key": run_id,
            "User-Agent": f"coverpipe/{__version__}",
        }
        if self._config.token is not None:
            headers["Authorization"] = f"token {self._config.token.get_secret_value()}"
        return headers

    # =========================================================================
    # Upload loop
    # =========================================================================

    async def upload(
        self,
        report: Report,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadResult:
        """Upload a report, retrying per the policy.

        Returns an UploadResult for both success and terminal failure; the
        caller decides whether a failure is fatal.

        Raises:
            Cancelled: If cancel_event is set before the loop finishes.
            ConfigError: If no upload URL is configured.
        """
        url = self._endpoint()
        run_id = derive_run_id(self._config.run_id, self._ci, report.digest)
        params = self.build_params(report, run_id)
        headers = self.build_headers(report, run_id)
        public_url = str(httpx.URL(url).copy_with(query=None))

        if self._config.dry_run:
            log.info(
                "upload_dry_run",
                url=public_url,
                run_id=run_id,
                size=len(report),
                params=params,
            )
            return UploadResult(
                success=True,
                attempts=0,
                run_id=run_id,
                state=UploadState.SUCCEEDED,
                dry_run=True,
            )

        machine = UploadStateMachine()
        history: list[AttemptRecord] = []
        started = self._clock.monotonic()
        attempt = 0
        outcome: _AttemptOutcome | None = None

        def finish(success: bool, error: CoverPipeError | None = None) -> UploadResult:
            machine.transition(UploadState.SUCCEEDED if success else UploadState.FAILED)
            return UploadResult(
                success=success,
                attempts=attempt,
                run_id=run_id,
                status_code=outcome.status_code if outcome else None,
                error=error,
                state=machine.state,
                history=history,
                states=machine.history,
            )

        def cancel() -> Cancelled:
            machine.transition(UploadState.CANCELLED)
            log.warning("upload_cancelled", attempts=attempt, run_id=run_id)
            return Cancelled.during("upload", attempts=attempt)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise cancel()

            attempt += 1
            machine.transition(UploadState.ATTEMPTING)
            log.info("upload_attempt", attempt=attempt, url=public_url, run_id=run_id)

            cancelled, outcome = await self._race(
                self._attempt(url, params, headers, report.content), cancel_event
            )
            if cancelled or outcome is None:
                raise cancel()

            if outcome.ok:
                history.append(AttemptRecord(attempt=attempt, status_code=outcome.status_code))
                log.info("upload_succeeded", attempts=attempt, status_code=outcome.status_code)
                return finish(True)

            if not outcome.retryable:
                history.append(
                    AttemptRecord(
                        attempt=attempt, status_code=outcome.status_code, error=outcome.error
                    )
                )
                log.error("upload_rejected", status_code=outcome.status_code, attempts=attempt)
                return finish(False, UploadFailed.rejected(outcome.status_code or 0, outcome.body))

            if attempt >= self._policy.max_attempts:
                history.append(
                    AttemptRecord(
                        attempt=attempt, status_code=outcome.status_code, error=outcome.error
                    )
                )
                log.error("upload_exhausted", attempts=attempt, last_error=outcome.error)
                return finish(False, UploadFailed.exhausted(attempt, outcome.error or "unknown"))

            delay = self._policy.delay_for(attempt, outcome.retry_after)
            history.append(
                AttemptRecord(
                    attempt=attempt,
                    status_code=outcome.status_code,
                    error=outcome.error,
                    retry_delay_sec=delay,
                )
            )
            elapsed = self._clock.monotonic() - started
            if elapsed + delay > self._policy.total_budget_sec:
                log.error(
                    "upload_budget_exceeded",
                    attempts=attempt,
                    elapsed_sec=round(elapsed, 3),
                    budget_sec=self._policy.total_budget_sec,
                )
                return finish(
                    False, UploadFailed.budget_exceeded(attempt, self._policy.total_budget_sec)
                )

            machine.transition(UploadState.BACKOFF)
            log.warning(
                "upload_retry",
                attempt=attempt,
                delay_sec=delay,
                status_code=outcome.status_code,
                error=outcome.error,
            )
            cancelled, _ = await self._race(self._clock.sleep(delay), cancel_event)
            if cancelled:
                raise cancel()

    async def _attempt(
        self,
        url: str,
        params: dict[str, str],
        headers: dict[str, str],
        content: bytes,
    ) -> _AttemptOutcome:
        """One POST over a fresh client (and so a fresh connection)."""
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._config.request_timeout_sec,
        ) as client:
            try:
                response = await client.post(url, params=params, headers=headers, content=content)
            except httpx.TimeoutException as e:
                return _AttemptOutcome(
                    ok=False, retryable=True, error=f"timeout: {type(e).__name__}"
                )
            except httpx.TransportError as e:
                return _AttemptOutcome(ok=False, retryable=True, error=f"transport error: {e}")
            return _classify(response)

    @staticmethod
    async def _race(
        work: Awaitable[T],
        cancel_event: asyncio.Event | None,
    ) -> tuple[bool, T | None]:
        """Await work unless cancel_event fires first.

        Returns (cancelled, result); the losing task is cancelled.
        """
        if cancel_event is None:
            return False, await work

        task = asyncio.ensure_future(work)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (task, waiter):
                if not pending.done():
                    pending.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await pending

        if task in done:
            return False, task.result()
        return True, None
