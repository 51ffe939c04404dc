"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct overrides to load_config() (CLI flags)
2. Environment variables (COVERPIPE__SECTION__KEY)
3. Repo YAML (.coverpipe/config.yaml)
4. Global YAML (~/.config/coverpipe/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    COVERPIPE__<SECTION>__<KEY>=<VALUE>

Examples:
    COVERPIPE__LOGGING__LEVEL=DEBUG
    COVERPIPE__RUN__TIMEOUT_SEC=120
    COVERPIPE__RUN__RUN_TYPES='["Tests", "Doctests"]'
    COVERPIPE__UPLOAD__FAIL_CI_IF_ERROR=true

Every model is frozen: the configuration is built once at startup and passed
explicitly into each component.
"""

import shlex
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from coverpipe.instrument.models import RunType

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    model_config = ConfigDict(frozen=True)

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        COVERPIPE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = ConfigDict(frozen=True)

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every subprocess and request.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class RunConfig(BaseModel):
    """Instrumented execution settings.

    Env vars:
        COVERPIPE__RUN__TIMEOUT_SEC: Per-target execution budget
        COVERPIPE__RUN__RUN_TYPES: JSON list of run types to include
        COVERPIPE__RUN__ALL_FEATURES: Instrument with all optional features enabled
        COVERPIPE__RUN__WORKSPACE: Include every member of a multi-package workspace
        COVERPIPE__RUN__FAIL_FAST: Abort on the first failed target
        COVERPIPE__RUN__JOBS: Targets executed concurrently
    """

    model_config = ConfigDict(frozen=True)

    timeout_sec: float = Field(
        default=60.0,
        description="Per-target execution budget. Instrumented runs are 2-10x slower "
        "than plain test runs; a target past this budget is killed.",
    )
    run_types: frozenset[RunType] = Field(
        default_factory=lambda: frozenset({RunType.TESTS, RunType.DOCTESTS}),
        description="Which kinds of test targets to run: Tests, Doctests, IntegrationTests.",
    )
    all_features: bool = Field(
        default=False,
        description="Build and instrument with every optional feature enabled.",
    )
    workspace: bool = Field(
        default=False,
        description="Include all members of a multi-package workspace, not just the root.",
    )
    fail_fast: bool = Field(
        default=False,
        description="Stop the run on the first crashed or timed-out target.",
    )
    jobs: int = Field(
        default=4,
        description="Concurrency limit for target execution. "
        "RISK: instrumentation multiplies memory use per target.",
    )
    backend: str | None = Field(
        default=None,
        description="Force an instrumentation backend (llvm-cov, pytest-cov, lcov-env, "
        "cobertura-env). Default: chosen from the detected project kind.",
    )
    exclude_files: list[str] = Field(
        default_factory=list,
        description="Glob patterns of source files dropped from the report.",
    )
    fail_under: float | None = Field(
        default=None,
        description="Fail the run when line coverage (percent) is below this value.",
    )

    @field_validator("timeout_sec")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_sec must be positive, got {v}")
        return v

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"jobs must be at least 1, got {v}")
        return v

    @field_validator("run_types", mode="before")
    @classmethod
    def parse_run_types(cls, v: object) -> object:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(RunType.parse(item) if isinstance(item, str) else item for item in v)
        return v

    @field_validator("run_types")
    @classmethod
    def validate_run_types(cls, v: frozenset[RunType]) -> frozenset[RunType]:
        if not v:
            raise ValueError("run_types must name at least one run type")
        return v

    @field_validator("fail_under")
    @classmethod
    def validate_fail_under(cls, v: float | None) -> float | None:
        if v is not None and not (0.0 <= v <= 100.0):
            raise ValueError(f"fail_under must be within 0-100, got {v}")
        return v


class TargetConfig(BaseModel):
    """An explicitly declared test target.

    When any targets are declared, auto-detection is skipped.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    command: list[str]
    run_type: RunType = RunType.TESTS
    timeout_sec: float | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    backend: str | None = None
    member: str | None = None

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v: object) -> object:
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("command must not be empty")
        return v

    @field_validator("run_type", mode="before")
    @classmethod
    def parse_run_type(cls, v: object) -> object:
        return RunType.parse(v) if isinstance(v, str) else v


class ReportConfig(BaseModel):
    """Report serialization settings.

    Env vars:
        COVERPIPE__REPORT__FORMATS: JSON list of schemas to write
        COVERPIPE__REPORT__OUTPUT_DIR: Directory for written reports
    """

    model_config = ConfigDict(frozen=True)

    formats: list[str] = Field(
        default_factory=lambda: ["cobertura"],
        description="Report schemas to write (cobertura, lcov). The first is uploaded.",
    )
    output_dir: str = Field(
        default=".",
        description="Directory for report files, relative to the repository root.",
    )
    source_root: str | None = Field(
        default=None,
        description="Value for the Cobertura <source> element. Default: repository root.",
    )

    @field_validator("formats")
    @classmethod
    def validate_formats(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("formats must name at least one schema")
        return [f.lower() for f in v]


class UploadConfig(BaseModel):
    """Upload endpoint and retry policy.

    Env vars:
        COVERPIPE__UPLOAD__URL: Upload endpoint
        COVERPIPE__UPLOAD__FAIL_CI_IF_ERROR: Make a failed upload fail the run
        COVERPIPE__UPLOAD__MAX_ATTEMPTS: Attempts before giving up

    The token is read from COVERPIPE__UPLOAD__TOKEN, COVERPIPE_TOKEN or
    CODECOV_TOKEN. It is never logged.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Upload the report after the run.")
    url: str | None = Field(
        default=None,
        description="Upload endpoint. Upload is skipped when unset.",
    )
    token: SecretStr | None = Field(default=None, description="Upload token (secret).")
    fail_ci_if_error: bool = Field(
        default=False,
        description="Treat a terminal upload failure as a failed run.",
    )
    max_attempts: int = Field(default=5, description="Attempts including the first.")
    base_delay_sec: float = Field(
        default=1.0,
        description="First backoff delay; grows by multiplier per attempt.",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff factor.")
    max_delay_sec: float = Field(default=30.0, description="Cap for a single backoff delay.")
    total_budget_sec: float = Field(
        default=300.0,
        description="Wall-clock budget across all attempts and backoffs.",
    )
    request_timeout_sec: float = Field(default=60.0, description="Per-request timeout.")
    dry_run: bool = Field(default=False, description="Build the request but do not send it.")
    run_id: str | None = Field(
        default=None,
        description="Stable run identifier for server-side deduplication. "
        "Default: derived from the CI build or commit and report digest.",
    )
    flags: list[str] = Field(default_factory=list, description="Flags attached to the upload.")
    name: str | None = Field(default=None, description="Custom upload name.")
    slug: str | None = Field(default=None, description="owner/repo override.")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be at least 1, got {v}")
        return v

    @field_validator("base_delay_sec", "max_delay_sec", "total_budget_sec", "request_timeout_sec")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must be non-negative, got {v}")
        return v

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {v}")
        return v


class CoverPipeConfig(BaseModel):
    """Root configuration for coverpipe.

    All settings can be configured via:
    1. Environment variables: COVERPIPE__SECTION__KEY
    2. YAML config files (repo or global)
    3. Direct overrides to load_config()
    """

    model_config = ConfigDict(frozen=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    targets: list[TargetConfig] = Field(default_factory=list)
