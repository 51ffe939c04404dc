"""Tests for the upload client retry loop.

HTTP is served by httpx.MockTransport and time by a fake clock, so no test
waits for real backoff delays.
"""

import asyncio
from collections.abc import Callable

import httpx
import pytest
from structlog.testing import capture_logs

from coverpipe.config.ci_env import CiEnvironment
from coverpipe.config.models import UploadConfig
from coverpipe.core.errors import Cancelled, ConfigError, UploadFailed
from coverpipe.report.models import Report
from coverpipe.upload.client import UploadClient
from coverpipe.upload.models import UploadState

URL = "https://coverage.example.com/upload"
TOKEN = "s3cr3t-token"


class FakeClock:
    """Records sleeps and advances monotonic time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class CancellingClock(FakeClock):
    """Sets the cancel event when backoff starts, then never wakes up."""

    def __init__(self, cancel_event: asyncio.Event) -> None:
        super().__init__()
        self._cancel_event = cancel_event

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._cancel_event.set()
        await asyncio.Event().wait()


def _responder(*statuses: int, headers: dict[str, str] | None = None):
    """Handler answering with the given statuses in order, recording requests."""
    requests: list[httpx.Request] = []
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status = remaining.pop(0)
        return httpx.Response(status, headers=headers if status != 200 else None, text="nope")

    return handler, requests


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    clock: FakeClock | None = None,
    **overrides: object,
) -> UploadClient:
    settings: dict[str, object] = {
        "url": URL,
        "token": TOKEN,
        "max_attempts": 3,
        "base_delay_sec": 1.0,
        "multiplier": 2.0,
    }
    config = UploadConfig(**{**settings, **overrides})  # type: ignore[arg-type]
    return UploadClient(
        config,
        CiEnvironment(service="github-actions", commit="abc", build="77"),
        transport=httpx.MockTransport(handler),
        clock=clock or FakeClock(),
    )


@pytest.fixture
def report() -> Report:
    return Report(schema="cobertura", content=b"<coverage/>\n", timestamp=0)


class TestRetries:
    """Retry loop outcomes."""

    @pytest.mark.asyncio
    async def test_given_two_503s_when_uploading_then_third_attempt_succeeds(
        self, report: Report
    ) -> None:
        # Given
        handler, requests = _responder(503, 503, 200)
        clock = FakeClock()
        client = _client(handler, clock)

        # When
        result = await client.upload(report)

        # Then
        assert result.success is True
        assert result.attempts == 3
        assert result.state is UploadState.SUCCEEDED
        assert result.status_code == 200
        assert clock.sleeps == [1.0, 2.0]
        assert len(requests) == 3
        assert [r.retry_delay_sec for r in result.history] == [1.0, 2.0, None]
        assert result.states == [
            UploadState.PENDING,
            UploadState.ATTEMPTING,
            UploadState.BACKOFF,
            UploadState.ATTEMPTING,
            UploadState.BACKOFF,
            UploadState.ATTEMPTING,
            UploadState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_retries_reuse_the_same_run_id(self, report: Report) -> None:
        handler, requests = _responder(503, 200)

        await _client(handler).upload(report)

        keys = {r.headers["Idempotency-Key"] for r in requests}
        assert keys == {"77-1"}

    @pytest.mark.asyncio
    async def test_exhausted(self, report: Report) -> None:
        handler, requests = _responder(503, 502, 500)
        clock = FakeClock()

        result = await _client(handler, clock).upload(report)

        assert result.success is False
        assert result.attempts == 3
        assert result.state is UploadState.FAILED
        assert isinstance(result.error, UploadFailed)
        assert result.error.retryable
        assert clock.sleeps == [1.0, 2.0]
        assert len(requests) == 3
        assert result.states[-2:] == [UploadState.ATTEMPTING, UploadState.FAILED]

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, report: Report) -> None:
        handler, requests = _responder(400)
        clock = FakeClock()

        result = await _client(handler, clock).upload(report)

        assert result.success is False
        assert result.attempts == 1
        assert result.status_code == 400
        assert result.error is not None
        assert result.error.details["status_code"] == 400
        assert clock.sleeps == []
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_429_honours_retry_after(self, report: Report) -> None:
        handler, _ = _responder(429, 200, headers={"Retry-After": "7"})
        clock = FakeClock()

        result = await _client(handler, clock).upload(report)

        assert result.success is True
        assert clock.sleeps == [7.0]

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, report: Report) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        result = await _client(handler).upload(report)

        assert result.success is True
        assert result.attempts == 2
        assert result.history[0].status_code is None
        assert "transport error" in (result.history[0].error or "")

    @pytest.mark.asyncio
    async def test_total_budget_stops_retrying(self, report: Report) -> None:
        handler, requests = _responder(503, 503, 503)
        clock = FakeClock()

        result = await _client(handler, clock, total_budget_sec=2.0).upload(report)

        assert result.success is False
        assert result.attempts == 2
        assert result.error is not None
        assert result.error.details["budget_sec"] == 2.0
        assert clock.sleeps == [1.0]
        assert len(requests) == 2


class TestCancellation:
    """A cancel event stops the loop promptly."""

    @pytest.mark.asyncio
    async def test_given_cancel_during_backoff_then_cancelled_without_more_attempts(
        self, report: Report
    ) -> None:
        # Given
        cancel_event = asyncio.Event()
        handler, requests = _responder(503, 200)
        clock = CancellingClock(cancel_event)
        client = _client(handler, clock, max_attempts=5)

        # When
        with pytest.raises(Cancelled) as exc_info:
            await asyncio.wait_for(client.upload(report, cancel_event=cancel_event), timeout=5)

        # Then
        assert exc_info.value.details == {"phase": "upload", "attempts": 1}
        assert len(requests) == 1
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_cancel_before_first_attempt(self, report: Report) -> None:
        cancel_event = asyncio.Event()
        cancel_event.set()
        handler, requests = _responder(200)

        with pytest.raises(Cancelled):
            await _client(handler).upload(report, cancel_event=cancel_event)

        assert requests == []


class TestRequest:
    """What goes over the wire."""

    @pytest.mark.asyncio
    async def test_headers_params_and_body(self, report: Report) -> None:
        handler, requests = _responder(200)
        client = _client(handler, flags=["unit", "linux"], name="ci")

        result = await client.upload(report)

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/upload"
        assert request.headers["Authorization"] == f"token {TOKEN}"
        assert request.headers["Content-Type"] == "application/xml"
        assert request.headers["Idempotency-Key"] == result.run_id
        assert request.headers["User-Agent"].startswith("coverpipe/")
        params = request.url.params
        assert params["run_id"] == "77-1"
        assert params["commit"] == "abc"
        assert params["format"] == "cobertura"
        assert params["flags"] == "unit,linux"
        assert params["name"] == "ci"
        assert request.content == report.content

    @pytest.mark.asyncio
    async def test_token_never_logged(self, report: Report) -> None:
        handler, _ = _responder(503, 200)

        with capture_logs() as logs:
            await _client(handler).upload(report)

        assert logs
        assert TOKEN not in repr(logs)

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, report: Report) -> None:
        handler, requests = _responder()

        result = await _client(handler, dry_run=True).upload(report)

        assert result.success is True
        assert result.dry_run is True
        assert result.attempts == 0
        assert requests == []

    @pytest.mark.asyncio
    async def test_missing_url(self, report: Report) -> None:
        client = UploadClient(UploadConfig())

        with pytest.raises(ConfigError):
            await client.upload(report)
