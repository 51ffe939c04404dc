"""Tests for error types and codes."""

from collections.abc import Iterator
from contextlib import contextmanager

import pytest

from coverpipe.core.errors import (
    Cancelled,
    ConfigError,
    CoverPipeError,
    ErrorCode,
    ExecutionTimeout,
    InstrumentationUnavailable,
    SchemaMismatch,
    TargetCrashed,
    UnsupportedSchema,
    UploadFailed,
)


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.EXECUTION_TIMEOUT, 3000),
            (ErrorCode.TARGET_CRASHED, 3000),
            (ErrorCode.SCHEMA_MISMATCH, 4000),
            (ErrorCode.UNSUPPORTED_SCHEMA, 5000),
            (ErrorCode.UPLOAD_FAILED, 6000),
            (ErrorCode.CANCELLED, 6000),
            (ErrorCode.INTERNAL_ERROR, 9000),
        ],
    )
    def test_given_error_code_when_checked_then_in_correct_range(
        self, code: ErrorCode, expected_range: int
    ) -> None:
        """Error codes fall within their designated numeric range."""
        # Given
        error_code = code

        # When
        value = error_code.value

        # Then
        assert expected_range <= value < expected_range + 1000


class TestCoverPipeError:
    """Base error behavior tests."""

    def test_given_error_when_to_dict_then_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        # Given
        error = CoverPipeError(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )

        # When
        result = error.to_dict()

        # Then
        assert result == {
            "code": 2001,
            "error": "CONFIG_PARSE_ERROR",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_given_error_when_str_then_human_readable(self) -> None:
        """Error string representation is human readable."""
        # Given
        error = TargetCrashed.for_target("unit", "terminated by signal 9", exit_code=-9)

        # When
        text = str(error)

        # Then
        assert text == "[3003] TARGET_CRASHED: Target 'unit' crashed: terminated by signal 9"

    def test_errors_are_raisable_and_catchable_by_base(self) -> None:
        """Every subclass is caught by the base type."""
        with pytest.raises(CoverPipeError) as exc_info:
            raise SchemaMismatch.checksum("src/a.rs", "aaa", "bbb")
        assert exc_info.value.code is ErrorCode.SCHEMA_MISMATCH

    @pytest.mark.parametrize(
        "error",
        [
            Cancelled.during("upload", attempts=1),
            ConfigError.missing_required("upload.url"),
            CoverPipeError(code=ErrorCode.INTERNAL_ERROR, message="boom"),
        ],
    )
    def test_errors_propagate_through_context_managers(self, error: CoverPipeError) -> None:
        """contextlib rewrites __traceback__ on the way out; the error survives intact."""

        @contextmanager
        def wrapper() -> Iterator[None]:
            yield

        with pytest.raises(type(error)) as exc_info, wrapper():
            raise error
        assert exc_info.value is error
        assert exc_info.value.__traceback__ is not None


class TestConstructors:
    """Classmethod constructors fill codes and details."""

    def test_config_invalid_value(self) -> None:
        err = ConfigError.invalid_value("run.jobs", 0, "must be positive")
        assert err.code is ErrorCode.CONFIG_INVALID_VALUE
        assert err.details == {"field": "run.jobs", "value": "0", "reason": "must be positive"}

    def test_execution_timeout(self) -> None:
        err = ExecutionTimeout.for_target("doctests", 2.5)
        assert "2.5 seconds" in err.message
        assert err.details["target_id"] == "doctests"

    def test_instrumentation_unavailable(self) -> None:
        err = InstrumentationUnavailable.for_backend("llvm-cov", "cargo-llvm-cov not installed")
        assert err.code is ErrorCode.INSTRUMENTATION_UNAVAILABLE
        assert err.details["backend_id"] == "llvm-cov"

    def test_schema_mismatch_branches(self) -> None:
        err = SchemaMismatch.branches("src/a.rs", 10, 0, [0, 1], [0, 1, 2])
        assert "src/a.rs:10" in err.message
        assert err.details["expected"] == [0, 1]
        assert err.details["actual"] == [0, 1, 2]

    def test_unsupported_schema_lists_valid(self) -> None:
        err = UnsupportedSchema.for_schema("html", ["cobertura", "lcov"])
        assert "cobertura, lcov" in err.message

    def test_upload_rejected_truncates_body(self) -> None:
        err = UploadFailed.rejected(400, "x" * 2000)
        assert len(err.details["body"]) == 500
        assert not err.retryable

    def test_upload_exhausted_is_retryable(self) -> None:
        err = UploadFailed.exhausted(5, "HTTP 503")
        assert err.retryable
        assert err.details == {"attempts": 5, "last_error": "HTTP 503"}

    def test_cancelled_carries_phase(self) -> None:
        err = Cancelled.during("upload", attempts=2)
        assert err.code is ErrorCode.CANCELLED
        assert err.details == {"phase": "upload", "attempts": 2}
