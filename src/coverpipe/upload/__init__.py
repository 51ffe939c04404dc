"""Report upload with retry, backoff and cancellation."""

from coverpipe.upload.client import UploadClient
from coverpipe.upload.models import AttemptRecord, UploadResult, UploadState
from coverpipe.upload.retry import (
    Clock,
    RetryPolicy,
    SystemClock,
    UploadStateMachine,
    parse_retry_after,
)

__all__ = [
    "AttemptRecord",
    "Clock",
    "RetryPolicy",
    "SystemClock",
    "UploadClient",
    "UploadResult",
    "UploadState",
    "UploadStateMachine",
    "parse_retry_after",
]
