"""Tests for per-target isolation."""

from pathlib import Path

import pytest

from coverpipe.instrument.safe_env import IsolationConfig, TargetIsolation


@pytest.fixture
def ctx(tmp_path: Path) -> TargetIsolation:
    return TargetIsolation(
        IsolationConfig(
            artifact_dir=tmp_path / "artifacts",
            workspace_root=tmp_path,
            run_id="run123",
        )
    )


class TestPrepareEnvironment:
    """Environment isolation per language."""

    def test_universal_overrides(self, ctx: TargetIsolation) -> None:
        env = ctx.prepare_environment("unknown", base_env={"PATH": "/bin", "CI": "false"})

        assert env["PATH"] == "/bin"
        assert env["CI"] == "true"
        assert env["NO_COLOR"] == "1"
        assert env["GIT_TERMINAL_PROMPT"] == "0"
        assert env["COVERPIPE_RUN_ID"] == "run123"

    def test_python_coverage_file_is_private(
        self, ctx: TargetIsolation, tmp_path: Path
    ) -> None:
        env = ctx.prepare_environment("python", base_env={"COVERAGE_FILE": "/shared/.coverage"})

        coverage_file = Path(env["COVERAGE_FILE"])
        assert coverage_file.parent == tmp_path / "artifacts" / "coverage"
        assert coverage_file.name == ".coverage.run123"
        assert coverage_file.parent.is_dir()

    def test_rust_profiles_are_private(self, ctx: TargetIsolation, tmp_path: Path) -> None:
        env = ctx.prepare_environment("rust", base_env={})

        assert env["LLVM_PROFILE_FILE"].startswith(str(tmp_path / "artifacts" / "coverage"))
        assert env["LLVM_PROFILE_FILE"].endswith("-%p-%m.profraw")
        assert env["CARGO_TERM_COLOR"] == "never"
        assert env["CARGO_INCREMENTAL"] == "0"


class TestSanitizeCommand:
    """Flags that fight the instrumentation are removed."""

    @pytest.mark.parametrize(
        ("cmd", "expected"),
        [
            (["pytest", "--cov=src", "tests"], ["pytest", "tests"]),
            (["pytest", "--cov", "src", "tests"], ["pytest", "tests"]),
            (["pytest", "--cov-report", "html", "-x"], ["pytest", "-x"]),
            (["pytest", "--no-cov", "--looponfail"], ["pytest"]),
            (["pytest", "--cov", "-x"], ["pytest", "-x"]),
            (["pytest", "--cov-branch", "tests"], ["pytest", "tests"]),
            (["pytest", "--cov-config", ".coveragerc", "-q"], ["pytest", "-q"]),
        ],
    )
    def test_python_flags(
        self, ctx: TargetIsolation, cmd: list[str], expected: list[str]
    ) -> None:
        assert ctx.sanitize_command(cmd, "python") == expected

    def test_python_flags_kept_without_stripping(self, tmp_path: Path) -> None:
        ctx = TargetIsolation(
            IsolationConfig(
                artifact_dir=tmp_path, workspace_root=tmp_path, strip_coverage_flags=False
            )
        )
        assert ctx.sanitize_command(["pytest", "--cov=src"], "python") == ["pytest", "--cov=src"]

    def test_rust_color_before_separator(self, ctx: TargetIsolation) -> None:
        cmd = ["cargo", "test", "--lib", "--", "--nocapture"]
        assert ctx.sanitize_command(cmd, "rust") == [
            "cargo",
            "test",
            "--lib",
            "--color=never",
            "--",
            "--nocapture",
        ]

    def test_rust_existing_color_kept(self, ctx: TargetIsolation) -> None:
        cmd = ["cargo", "test", "--color=always"]
        assert ctx.sanitize_command(cmd, "rust") == cmd

    def test_unknown_untouched(self, ctx: TargetIsolation) -> None:
        cmd = ["./run.sh", "--cov"]
        assert ctx.sanitize_command(cmd, "unknown") == cmd
