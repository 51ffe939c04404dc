"""coverpipe configuration."""

from coverpipe.config.ci_env import (
    CiEnvironment,
    derive_run_id,
    detect_ci_environment,
    resolve_repo_root,
)
from coverpipe.config.loader import load_config
from coverpipe.config.models import (
    CoverPipeConfig,
    LoggingConfig,
    LogOutputConfig,
    ReportConfig,
    RunConfig,
    TargetConfig,
    UploadConfig,
)

__all__ = [
    "CiEnvironment",
    "CoverPipeConfig",
    "LogOutputConfig",
    "LoggingConfig",
    "ReportConfig",
    "RunConfig",
    "TargetConfig",
    "UploadConfig",
    "derive_run_id",
    "detect_ci_environment",
    "load_config",
    "resolve_repo_root",
]
