"""Tests for configuration model validation."""

import pytest
from pydantic import ValidationError

from coverpipe.config.models import (
    LogOutputConfig,
    ReportConfig,
    RunConfig,
    TargetConfig,
    UploadConfig,
)
from coverpipe.instrument.models import RunType


class TestRunConfig:
    """Run section validators."""

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_timeout_must_be_positive(self, timeout: float) -> None:
        with pytest.raises(ValidationError):
            RunConfig(timeout_sec=timeout)

    def test_jobs_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            RunConfig(jobs=0)

    def test_run_types_from_single_string(self) -> None:
        config = RunConfig(run_types="Doctests")  # type: ignore[arg-type]
        assert config.run_types == frozenset({RunType.DOCTESTS})

    def test_run_types_rejects_unknown(self) -> None:
        with pytest.raises(ValidationError):
            RunConfig(run_types=["benchmarks"])  # type: ignore[arg-type]

    def test_run_types_rejects_empty(self) -> None:
        with pytest.raises(ValidationError):
            RunConfig(run_types=[])  # type: ignore[arg-type]

    @pytest.mark.parametrize("value", [-1, 100.5])
    def test_fail_under_range(self, value: float) -> None:
        with pytest.raises(ValidationError):
            RunConfig(fail_under=value)

    def test_frozen(self) -> None:
        config = RunConfig()
        with pytest.raises(ValidationError):
            config.jobs = 2  # type: ignore[misc]


class TestTargetConfig:
    """Explicit target declarations."""

    def test_command_string_is_shell_split(self) -> None:
        command = "pytest -k 'slow and not db'"
        target = TargetConfig(id="t", command=command)  # type: ignore[arg-type]
        assert target.command == ["pytest", "-k", "slow and not db"]

    def test_empty_command_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TargetConfig(id="t", command=[])


class TestReportConfig:
    def test_formats_are_lowercased(self) -> None:
        assert ReportConfig(formats=["Cobertura", "LCOV"]).formats == ["cobertura", "lcov"]


class TestUploadConfig:
    """Retry policy bounds."""

    def test_max_attempts_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            UploadConfig(max_attempts=0)

    def test_multiplier_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            UploadConfig(multiplier=0.5)

    def test_negative_delay_rejected(self) -> None:
        with pytest.raises(ValidationError):
            UploadConfig(base_delay_sec=-1)


class TestLogOutputConfig:
    def test_relative_file_destination_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LogOutputConfig(destination="logs/run.log")

    def test_stream_destinations_accepted(self) -> None:
        assert LogOutputConfig(destination="stdout").destination == "stdout"
