"""Instrumentation backends.

A backend knows how to turn a plain test command into an instrumented one
and where the resulting coverage artifact lands. Each run gets its own
artifact directory, so backends never share output.

Capability is three-state:
- available: the tool is installed and the command can be instrumented
- unsupported: the backend cannot instrument this kind of command
- missing_prereq: it could, but a required tool is not installed
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from coverpipe.core.errors import InstrumentationUnavailable
from coverpipe.coverage.models import FileCoverage
from coverpipe.coverage.parsers import parse_artifact
from coverpipe.instrument.safe_env import LanguageFamily

LCOV_FILE_ENV = "COVERPIPE_LCOV_FILE"
COBERTURA_FILE_ENV = "COVERPIPE_COBERTURA_FILE"


class BackendCapability(Enum):
    """Three-state instrumentation capability."""

    UNSUPPORTED = "unsupported"
    AVAILABLE = "available"
    MISSING_PREREQ = "missing_prereq"


@dataclass
class BackendRuntime:
    """What the host offers a backend.

    ``cwd`` is the target's working directory; commands with a path
    separator resolve against it rather than against the process cwd.
    """

    which: Callable[[str], str | None] = shutil.which
    cwd: Path | None = None

    def resolve(self, program: str) -> str | None:
        """Locate an executable the way the target's spawn will."""
        if os.sep in program or (os.altsep is not None and os.altsep in program):
            path = Path(program)
            if not path.is_absolute() and self.cwd is not None:
                path = self.cwd / path
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
            return None
        return self.which(program)


class InstrumentationBackend(ABC):
    """Abstract base for one instrumentation tool."""

    backend_id: str = ""
    language: LanguageFamily = "unknown"

    @property
    @abstractmethod
    def format_id(self) -> str:
        """Artifact format identifier ('lcov' or 'cobertura')."""
        ...

    @abstractmethod
    def capability(self, cmd: Sequence[str], runtime: BackendRuntime) -> BackendCapability:
        """Detect whether this backend can instrument the command."""
        ...

    @abstractmethod
    def modify_command(
        self,
        cmd: list[str],
        artifact_dir: Path,
        *,
        source_dirs: Sequence[str] = (),
    ) -> list[str]:
        """Rewrite the target command so it emits coverage into artifact_dir."""
        ...

    def prepare_env(self, artifact_dir: Path) -> dict[str, str]:  # noqa: ARG002
        """Extra environment variables for the instrumented process."""
        return {}

    @abstractmethod
    def artifact_path(self, artifact_dir: Path) -> Path:
        """Path where the coverage artifact will be written."""
        ...

    def extract(
        self, artifact_dir: Path, *, base_path: Path | None = None
    ) -> dict[str, FileCoverage]:
        """Read the artifact into per-file coverage.

        Raises:
            ReportParseError: If the artifact is missing or malformed.
        """
        parsed = parse_artifact(
            self.artifact_path(artifact_dir), format_id=self.format_id, base_path=base_path
        )
        return parsed.files

    def require(self, cmd: Sequence[str], runtime: BackendRuntime) -> None:
        """Raise unless the backend is available for the command.

        Raises:
            InstrumentationUnavailable: If the backend cannot run.
        """
        cap = self.capability(cmd, runtime)
        if cap is BackendCapability.AVAILABLE:
            return
        if cap is BackendCapability.MISSING_PREREQ:
            reason = f"required tool for {self.backend_id} is not installed"
        else:
            reason = f"cannot instrument command {' '.join(cmd)!r}"
        raise InstrumentationUnavailable.for_backend(self.backend_id, reason)


# =============================================================================
# Rust - cargo-llvm-cov (lcov output)
# =============================================================================


class LlvmCovBackend(InstrumentationBackend):
    """Coverage via cargo-llvm-cov with lcov output."""

    backend_id = "llvm-cov"
    language: LanguageFamily = "rust"

    @property
    def format_id(self) -> str:
        return "lcov"

    @staticmethod
    def _split(cmd: Sequence[str]) -> tuple[list[str], list[str]] | None:
        """Split ``cargo [+toolchain] test ARGS`` into (prefix, ARGS)."""
        if not cmd or Path(cmd[0]).name != "cargo":
            return None
        idx = 1
        if len(cmd) > idx and cmd[idx].startswith("+"):
            idx += 1
        if len(cmd) <= idx or cmd[idx] != "test":
            return None
        return list(cmd[:idx]), list(cmd[idx + 1 :])

    def capability(self, cmd: Sequence[str], runtime: BackendRuntime) -> BackendCapability:
        if self._split(cmd) is None:
            return BackendCapability.UNSUPPORTED
        if not runtime.which("cargo") or not runtime.which("cargo-llvm-cov"):
            return BackendCapability.MISSING_PREREQ
        return BackendCapability.AVAILABLE

    def modify_command(
        self,
        cmd: list[str],
        artifact_dir: Path,
        *,
        source_dirs: Sequence[str] = (),  # noqa: ARG002
    ) -> list[str]:
        split = self._split(cmd)
        if split is None:
            return list(cmd)
        prefix, args = split
        cov_path = self.artifact_path(artifact_dir)
        cov_path.parent.mkdir(parents=True, exist_ok=True)
        return [*prefix, "llvm-cov", "--lcov", f"--output-path={cov_path}", *args]

    def artifact_path(self, artifact_dir: Path) -> Path:
        return artifact_dir / "coverage" / "lcov.info"


# =============================================================================
# Python - pytest-cov (lcov output)
# =============================================================================


class PytestCovBackend(InstrumentationBackend):
    """Coverage via pytest-cov with lcov output."""

    backend_id = "pytest-cov"
    language: LanguageFamily = "python"

    @property
    def format_id(self) -> str:
        return "lcov"

    @staticmethod
    def _runs_pytest(cmd: Sequence[str]) -> bool:
        if not cmd:
            return False
        if Path(cmd[0]).name in ("pytest", "py.test"):
            return True
        return len(cmd) >= 3 and cmd[1] == "-m" and cmd[2] == "pytest"

    def capability(self, cmd: Sequence[str], runtime: BackendRuntime) -> BackendCapability:
        if not self._runs_pytest(cmd):
            return BackendCapability.UNSUPPORTED
        if not runtime.resolve(cmd[0]):
            return BackendCapability.MISSING_PREREQ
        return BackendCapability.AVAILABLE

    def modify_command(
        self,
        cmd: list[str],
        artifact_dir: Path,
        *,
        source_dirs: Sequence[str] = (),
    ) -> list[str]:
        cov_path = self.artifact_path(artifact_dir)
        cov_path.parent.mkdir(parents=True, exist_ok=True)
        result = [*cmd, f"--cov-report=lcov:{cov_path}", "--cov-branch"]
        if source_dirs:
            result.extend(f"--cov={d}" for d in source_dirs)
        else:
            result.append("--cov=.")
        return result

    def artifact_path(self, artifact_dir: Path) -> Path:
        return artifact_dir / "coverage" / "lcov.info"


# =============================================================================
# Generic - the target writes its own artifact to a path given in the env
# =============================================================================


class _EnvFileBackend(InstrumentationBackend):
    env_var: str = ""
    file_name: str = ""

    def capability(
        self, cmd: Sequence[str], runtime: BackendRuntime  # noqa: ARG002
    ) -> BackendCapability:
        if not cmd:
            return BackendCapability.UNSUPPORTED
        # The command is the target itself; a missing one is a per-target crash
        return BackendCapability.AVAILABLE

    def modify_command(
        self,
        cmd: list[str],
        artifact_dir: Path,  # noqa: ARG002
        *,
        source_dirs: Sequence[str] = (),  # noqa: ARG002
    ) -> list[str]:
        return list(cmd)

    def prepare_env(self, artifact_dir: Path) -> dict[str, str]:
        path = self.artifact_path(artifact_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        return {self.env_var: str(path)}

    def artifact_path(self, artifact_dir: Path) -> Path:
        return artifact_dir / "coverage" / self.file_name


class LcovEnvBackend(_EnvFileBackend):
    """Target writes an LCOV tracefile to ``$COVERPIPE_LCOV_FILE``."""

    backend_id = "lcov-env"
    env_var = LCOV_FILE_ENV
    file_name = "lcov.info"

    @property
    def format_id(self) -> str:
        return "lcov"


class CoberturaEnvBackend(_EnvFileBackend):
    """Target writes Cobertura XML to ``$COVERPIPE_COBERTURA_FILE``."""

    backend_id = "cobertura-env"
    env_var = COBERTURA_FILE_ENV
    file_name = "cobertura.xml"

    @property
    def format_id(self) -> str:
        return "cobertura"


# =============================================================================
# Registry
# =============================================================================

BACKEND_REGISTRY: dict[str, type[InstrumentationBackend]] = {
    LlvmCovBackend.backend_id: LlvmCovBackend,
    PytestCovBackend.backend_id: PytestCovBackend,
    LcovEnvBackend.backend_id: LcovEnvBackend,
    CoberturaEnvBackend.backend_id: CoberturaEnvBackend,
}


def get_backend(backend_id: str) -> InstrumentationBackend:
    """Instantiate a backend by id.

    Raises:
        InstrumentationUnavailable: If no backend has that id.
    """
    backend_cls = BACKEND_REGISTRY.get(backend_id)
    if backend_cls is None:
        valid = ", ".join(sorted(BACKEND_REGISTRY))
        raise InstrumentationUnavailable.for_backend(
            backend_id, f"unknown backend, valid backends: {valid}"
        )
    return backend_cls()
