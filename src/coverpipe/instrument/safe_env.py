"""Per-target isolation of environment and command line.

Every instrumented run gets its own artifact directory. Coverage data
files, raw LLVM profiles and doctest binaries are pointed into it so that
targets running side by side never share or clobber an output file.
Interactive behaviour (prompts, watch modes, colors) is switched off.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

LanguageFamily = Literal["python", "rust", "unknown"]

# Applied to every target regardless of language
_CI_ENV = {
    "CI": "true",
    "CONTINUOUS_INTEGRATION": "true",
    "NONINTERACTIVE": "1",
    "DEBIAN_FRONTEND": "noninteractive",
    "NO_COLOR": "1",
    "FORCE_COLOR": "0",
    "GIT_TERMINAL_PROMPT": "0",
    "BROWSER": "none",
    "COVERPIPE_EXECUTION": "1",
}

_PYTHON_ENV = {
    "COVERAGE_PROCESS_START": "",
    "PYTHONDONTWRITEBYTECODE": "1",
    "PYTHONHASHSEED": "0",
    "PYTHONIOENCODING": "utf-8",
    "PYTHONUTF8": "1",
    "PYTEST_CURRENT_TEST": "",
    "PYTEST_ADDOPTS": "--tb=short -q -p no:cacheprovider",
    "PIP_DISABLE_PIP_VERSION_CHECK": "1",
}

_RUST_ENV = {
    "CARGO_TERM_COLOR": "never",
    "CARGO_INCREMENTAL": "0",
}

_WATCH_FLAGS = frozenset({"--watch", "-w", "-f", "--looponfail"})
_COV_VALUE_FLAGS = frozenset({"--cov-report", "--cov-config", "--cov-fail-under", "--cov-context"})


@dataclass
class IsolationConfig:
    """Where one target run may write, and how its command is cleaned."""

    artifact_dir: Path
    workspace_root: Path
    # The backend injects its own coverage flags
    strip_coverage_flags: bool = True
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def coverage_dir(self) -> Path:
        return self.artifact_dir / "coverage"


class TargetIsolation:
    """Builds the environment and command line for one target run."""

    def __init__(self, config: IsolationConfig) -> None:
        self._config = config

    @property
    def config(self) -> IsolationConfig:
        return self._config

    def prepare_environment(
        self,
        language: LanguageFamily,
        *,
        base_env: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Return ``base_env`` (default ``os.environ``) with CI and per-language overrides."""
        env = dict(os.environ if base_env is None else base_env)
        env.update(_CI_ENV)
        env["COVERPIPE_RUN_ID"] = self._config.run_id
        if language == "python":
            env.update(self._python_outputs())
        elif language == "rust":
            env.update(self._rust_outputs())
        return env

    def sanitize_command(self, cmd: list[str], language: LanguageFamily) -> list[str]:
        """Drop flags that would fight the instrumentation backend."""
        if language == "python":
            return self._strip_python_flags(cmd)
        if language == "rust":
            return _force_plain_cargo_output(cmd)
        return list(cmd)

    def _python_outputs(self) -> dict[str, str]:
        # Parallel pytest-cov runs sharing one SQLite data file corrupt it
        out = self._ensure_coverage_dir()
        return {**_PYTHON_ENV, "COVERAGE_FILE": str(out / f".coverage.{self._config.run_id}")}

    def _rust_outputs(self) -> dict[str, str]:
        # One raw profile per process (%p) and binary (%m)
        out = self._ensure_coverage_dir()
        profile = out / f"{self._config.run_id}-%p-%m.profraw"
        doctests = out / "doctests"
        rustdoc = f"-C instrument-coverage -Z unstable-options --persist-doctests {doctests}"
        return {**_RUST_ENV, "LLVM_PROFILE_FILE": str(profile), "RUSTDOCFLAGS": rustdoc}

    def _ensure_coverage_dir(self) -> Path:
        out = self._config.coverage_dir
        out.mkdir(parents=True, exist_ok=True)
        return out

    def _strip_python_flags(self, cmd: list[str]) -> list[str]:
        kept: list[str] = []
        args = iter(enumerate(cmd))
        for i, arg in args:
            if arg in _WATCH_FLAGS:
                continue
            if self._config.strip_coverage_flags and arg.startswith(("--cov", "--no-cov")):
                takes_value = arg in _COV_VALUE_FLAGS or (
                    arg == "--cov" and i + 1 < len(cmd) and not cmd[i + 1].startswith("-")
                )
                if takes_value:
                    next(args, None)
                continue
            kept.append(arg)
        return kept


def _force_plain_cargo_output(cmd: list[str]) -> list[str]:
    if any(arg.startswith("--color") for arg in cmd):
        return list(cmd)
    # Cargo's own flags go before the "--" that starts the test-binary args
    at = cmd.index("--") if "--" in cmd else len(cmd)
    return [*cmd[:at], "--color=never", *cmd[at:]]
