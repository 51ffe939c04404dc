"""Pipeline orchestration.

Usage:
    from coverpipe.config import load_config
    from coverpipe.pipeline import run_pipeline

    exit_code = run_pipeline(load_config(repo_root), repo_root)
"""

from coverpipe.pipeline.models import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    PipelineState,
    PipelineSummary,
)
from coverpipe.pipeline.orchestrator import SUMMARY_FILE_NAME, Pipeline, run_pipeline
from coverpipe.pipeline.state import PipelineStateMachine

__all__ = [
    "EXIT_CANCELLED",
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "SUMMARY_FILE_NAME",
    "Pipeline",
    "PipelineState",
    "PipelineStateMachine",
    "PipelineSummary",
    "run_pipeline",
]
