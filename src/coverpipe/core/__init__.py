"""Core module exports."""

from coverpipe.core.errors import (
    Cancelled,
    ConfigError,
    CoverPipeError,
    ErrorCode,
    ExecutionTimeout,
    InstrumentationUnavailable,
    InternalError,
    ReportParseError,
    SchemaMismatch,
    TargetCrashed,
    UnsupportedSchema,
    UploadFailed,
)
from coverpipe.core.logging import (
    clear_run_id,
    configure_logging,
    get_logger,
    get_run_id,
    set_run_id,
)
from coverpipe.core.progress import spinner, status

__all__ = [
    # Errors
    "Cancelled",
    "ConfigError",
    "CoverPipeError",
    "ErrorCode",
    "ExecutionTimeout",
    "InstrumentationUnavailable",
    "InternalError",
    "ReportParseError",
    "SchemaMismatch",
    "TargetCrashed",
    "UnsupportedSchema",
    "UploadFailed",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
    # Progress
    "spinner",
    "status",
]
