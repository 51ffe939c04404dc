"""Tests for retry policy and upload state transitions."""

from datetime import UTC, datetime

import pytest

from coverpipe.config.models import UploadConfig
from coverpipe.core.errors import InternalError
from coverpipe.upload.models import UploadResult, UploadState
from coverpipe.upload.retry import RetryPolicy, UploadStateMachine, parse_retry_after


class TestRetryPolicy:
    """Backoff delays."""

    def test_exponential_growth(self) -> None:
        policy = RetryPolicy(base_delay_sec=1.0, multiplier=2.0, max_delay_sec=30.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(base_delay_sec=1.0, multiplier=10.0, max_delay_sec=5.0)
        assert policy.delay_for(3) == 5.0

    def test_retry_after_replaces_computed_delay(self) -> None:
        policy = RetryPolicy(base_delay_sec=1.0, max_delay_sec=30.0)
        assert policy.delay_for(1, retry_after=12.0) == 12.0

    def test_retry_after_is_capped(self) -> None:
        policy = RetryPolicy(max_delay_sec=30.0)
        assert policy.delay_for(1, retry_after=3600.0) == 30.0

    def test_from_config(self) -> None:
        policy = RetryPolicy.from_config(
            UploadConfig(max_attempts=3, base_delay_sec=0.5, total_budget_sec=10)
        )
        assert policy.max_attempts == 3
        assert policy.base_delay_sec == 0.5
        assert policy.total_budget_sec == 10


class TestParseRetryAfter:
    """Retry-After header values."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("5", 5.0), (" 2.5 ", 2.5), ("-3", 0.0), (None, None), ("", None), ("soon", None)],
    )
    def test_delta_seconds(self, value: str | None, expected: float | None) -> None:
        assert parse_retry_after(value) == expected

    def test_http_date(self) -> None:
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 01 Jan 2024 12:00:30 GMT", now=now) == 30.0

    def test_http_date_in_past(self) -> None:
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0.0


class TestUploadStateMachine:
    """Legal and illegal transitions."""

    def test_retry_then_success_path(self) -> None:
        machine = UploadStateMachine()
        for state in (
            UploadState.ATTEMPTING,
            UploadState.BACKOFF,
            UploadState.ATTEMPTING,
            UploadState.SUCCEEDED,
        ):
            machine.transition(state)

        assert machine.state is UploadState.SUCCEEDED
        assert machine.state.is_terminal
        assert machine.history[0] is UploadState.PENDING
        assert len(machine.history) == 5

    @pytest.mark.parametrize(
        "path",
        [
            [UploadState.SUCCEEDED],
            [UploadState.BACKOFF],
            [UploadState.ATTEMPTING, UploadState.SUCCEEDED, UploadState.ATTEMPTING],
            [UploadState.ATTEMPTING, UploadState.BACKOFF, UploadState.SUCCEEDED],
        ],
    )
    def test_illegal_transitions(self, path: list[UploadState]) -> None:
        machine = UploadStateMachine()
        with pytest.raises(InternalError):
            for state in path:
                machine.transition(state)

    def test_cancel_from_pending(self) -> None:
        machine = UploadStateMachine()
        machine.transition(UploadState.CANCELLED)
        assert machine.state.is_terminal


class TestUploadResult:
    def test_outcome_labels(self) -> None:
        assert UploadResult(success=True, attempts=1, run_id="r").outcome == "uploaded (1 attempt)"
        assert UploadResult(success=False, attempts=3, run_id="r").outcome == "failed (3 attempts)"
        assert UploadResult(success=True, attempts=0, run_id="r", dry_run=True).outcome == (
            "dry-run"
        )
