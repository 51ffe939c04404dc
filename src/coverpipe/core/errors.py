"""coverpipe error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Execution (instrumented target runs)
- 4xxx: Aggregation
- 5xxx: Report
- 6xxx: Upload
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Execution (3xxx)
    EXECUTION_TIMEOUT = 3001
    INSTRUMENTATION_UNAVAILABLE = 3002
    TARGET_CRASHED = 3003

    # Aggregation (4xxx)
    SCHEMA_MISMATCH = 4001

    # Report (5xxx)
    UNSUPPORTED_SCHEMA = 5001
    REPORT_PARSE_ERROR = 5002

    # Upload (6xxx)
    UPLOAD_FAILED = 6001
    CANCELLED = 6002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class CoverPipeError(Exception):
    """Base error with structured context for summaries and logs.

    Not frozen: contextlib assigns __traceback__ when the error leaves a
    @contextmanager block.
    """

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'TARGET_CRASHED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON summaries."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CoverPipeError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class ExecutionTimeout(CoverPipeError):
    """A target ran past its time budget and was killed."""

    @classmethod
    def for_target(cls, target_id: str, timeout_sec: float) -> "ExecutionTimeout":
        return cls(
            code=ErrorCode.EXECUTION_TIMEOUT,
            message=f"Target {target_id!r} timed out after {timeout_sec:g} seconds",
            details={"target_id": target_id, "timeout_sec": timeout_sec},
        )


class InstrumentationUnavailable(CoverPipeError):
    """No usable instrumentation backend is installed."""

    @classmethod
    def for_backend(cls, backend_id: str, reason: str) -> "InstrumentationUnavailable":
        return cls(
            code=ErrorCode.INSTRUMENTATION_UNAVAILABLE,
            message=f"Instrumentation backend {backend_id!r} unavailable: {reason}",
            details={"backend_id": backend_id, "reason": reason},
        )


class TargetCrashed(CoverPipeError):
    """A target terminated without producing usable coverage."""

    @classmethod
    def for_target(
        cls,
        target_id: str,
        reason: str,
        *,
        exit_code: int | None = None,
    ) -> "TargetCrashed":
        return cls(
            code=ErrorCode.TARGET_CRASHED,
            message=f"Target {target_id!r} crashed: {reason}",
            details={"target_id": target_id, "reason": reason, "exit_code": exit_code},
        )


class SchemaMismatch(CoverPipeError):
    """Two traces disagree on the identity of the same source location."""

    @classmethod
    def checksum(cls, path: str, expected: str, actual: str) -> "SchemaMismatch":
        return cls(
            code=ErrorCode.SCHEMA_MISMATCH,
            message=f"Source checksum for {path} changed during the run",
            details={"path": path, "expected": expected, "actual": actual},
        )

    @classmethod
    def branches(
        cls,
        path: str,
        line: int,
        block_id: int,
        expected: list[int],
        actual: list[int],
    ) -> "SchemaMismatch":
        return cls(
            code=ErrorCode.SCHEMA_MISMATCH,
            message=(
                f"Incompatible branch ids at {path}:{line} block {block_id}: "
                f"{expected} vs {actual}"
            ),
            details={
                "path": path,
                "line": line,
                "block_id": block_id,
                "expected": expected,
                "actual": actual,
            },
        )


class UnsupportedSchema(CoverPipeError):
    """Requested report schema has no serializer."""

    @classmethod
    def for_schema(cls, schema: str, valid: list[str]) -> "UnsupportedSchema":
        return cls(
            code=ErrorCode.UNSUPPORTED_SCHEMA,
            message=f"Unsupported report schema: {schema!r}. Valid schemas: {', '.join(valid)}",
            details={"schema": schema, "valid": valid},
        )


class ReportParseError(CoverPipeError):
    """A coverage report or artifact could not be parsed."""

    @classmethod
    def invalid(cls, source: str, reason: str) -> "ReportParseError":
        return cls(
            code=ErrorCode.REPORT_PARSE_ERROR,
            message=f"Could not parse coverage data from {source}: {reason}",
            details={"source": source, "reason": reason},
        )


class UploadFailed(CoverPipeError):
    """Report upload reached a terminal failure."""

    @classmethod
    def rejected(cls, status_code: int, body: str) -> "UploadFailed":
        return cls(
            code=ErrorCode.UPLOAD_FAILED,
            message=f"Upload rejected with HTTP {status_code}",
            details={"status_code": status_code, "body": body[:500]},
        )

    @classmethod
    def exhausted(cls, attempts: int, last_error: str) -> "UploadFailed":
        return cls(
            code=ErrorCode.UPLOAD_FAILED,
            message=f"Upload failed after {attempts} attempt(s): {last_error}",
            retryable=True,
            details={"attempts": attempts, "last_error": last_error},
        )

    @classmethod
    def budget_exceeded(cls, attempts: int, budget_sec: float) -> "UploadFailed":
        return cls(
            code=ErrorCode.UPLOAD_FAILED,
            message=f"Upload retry budget of {budget_sec:g}s exhausted after {attempts} attempt(s)",
            retryable=True,
            details={"attempts": attempts, "budget_sec": budget_sec},
        )


class Cancelled(CoverPipeError):
    """The run was cancelled from outside (CI cancellation, SIGINT)."""

    @classmethod
    def during(cls, phase: str, **details: Any) -> "Cancelled":
        return cls(
            code=ErrorCode.CANCELLED,
            message=f"Cancelled during {phase}",
            details={"phase": phase, **details},
        )


class InternalError(CoverPipeError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
