"""Instrumented execution of test targets.

Usage:
    from coverpipe.instrument import InstrumentationRunner, discover_targets

    runner = InstrumentationRunner(repo_root)
    for target in discover_targets(repo_root, config.run, config.targets):
        trace = await runner.run(target, timeout_sec=config.run.timeout_sec)
"""

from coverpipe.instrument.backends import (
    BACKEND_REGISTRY,
    BackendCapability,
    BackendRuntime,
    InstrumentationBackend,
    get_backend,
)
from coverpipe.instrument.discovery import discover_targets, get_python_executable
from coverpipe.instrument.models import (
    CoverageTrace,
    RunType,
    TargetOutcome,
    TargetStatus,
    TestTarget,
)
from coverpipe.instrument.runner import InstrumentationRunner

__all__ = [
    "BACKEND_REGISTRY",
    "BackendCapability",
    "BackendRuntime",
    "CoverageTrace",
    "InstrumentationBackend",
    "InstrumentationRunner",
    "RunType",
    "TargetOutcome",
    "TargetStatus",
    "TestTarget",
    "discover_targets",
    "get_backend",
    "get_python_executable",
]
