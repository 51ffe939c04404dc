"""Run one test target under instrumentation and collect its trace.

Each run gets a private temporary artifact directory which is removed on
every exit path: success, test failure, crash, timeout or cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import os
import shutil
import signal
import tempfile
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from coverpipe.core.errors import ExecutionTimeout, ReportParseError, TargetCrashed
from coverpipe.core.logging import get_logger
from coverpipe.coverage.models import FileCoverage
from coverpipe.instrument.backends import BackendRuntime, InstrumentationBackend, get_backend
from coverpipe.instrument.models import CoverageTrace, TestTarget
from coverpipe.instrument.safe_env import IsolationConfig, TargetIsolation

log = get_logger(__name__)

# Bytes of stderr kept in crash details
_STDERR_TAIL = 2000


def _file_checksum(path: Path) -> str | None:
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError:
        return None


def _stamp_checksums(files: dict[str, FileCoverage], repo_root: Path) -> dict[str, FileCoverage]:
    """Attach a source digest to every file the backend did not stamp itself."""
    for rel_path, fc in files.items():
        if fc.checksum is None:
            fc.checksum = _file_checksum(repo_root / rel_path)
    return files


class InstrumentationRunner:
    """Executes test targets under an instrumentation backend."""

    def __init__(
        self,
        repo_root: Path,
        *,
        base_env: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._base_env = dict(base_env) if base_env is not None else None
        self._which = which

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    def backend_for(self, target: TestTarget) -> InstrumentationBackend:
        """Resolve and check the target's backend.

        Raises:
            InstrumentationUnavailable: If the backend is unknown or its tool is missing.
        """
        backend = get_backend(target.backend_id)
        backend.require(target.command, self._runtime(target))
        return backend

    def _runtime(self, target: TestTarget) -> BackendRuntime:
        return BackendRuntime(which=self._which, cwd=Path(target.cwd))

    async def run(self, target: TestTarget, *, timeout_sec: float) -> CoverageTrace:
        """Run a target and return its coverage trace.

        Args:
            target: The target to execute.
            timeout_sec: Budget for this run; the target's own timeout wins when set.

        Raises:
            InstrumentationUnavailable: Backend tool not installed (fatal for the run).
            ExecutionTimeout: The target exceeded its budget and was killed.
            TargetCrashed: The target produced no usable coverage.
        """
        budget = target.timeout_sec if target.timeout_sec is not None else timeout_sec
        backend = self.backend_for(target)

        with tempfile.TemporaryDirectory(prefix=f"coverpipe-{target.safe_name}-") as tmp:
            artifact_dir = Path(tmp)
            isolation = TargetIsolation(
                IsolationConfig(
                    artifact_dir=artifact_dir,
                    workspace_root=self._repo_root,
                    strip_coverage_flags=True,
                )
            )

            # Strip the project's own coverage flags before adding the backend's
            cmd = isolation.sanitize_command(list(target.command), backend.language)
            cmd = backend.modify_command(cmd, artifact_dir, source_dirs=target.source_dirs)

            env = isolation.prepare_environment(backend.language, base_env=self._base_env)
            env.update(backend.prepare_env(artifact_dir))
            env.update(dict(target.env))

            if not self._runtime(target).resolve(cmd[0]):
                raise TargetCrashed.for_target(
                    target.target_id, f"executable not found: {cmd[0]}"
                )

            log.info(
                "target_started",
                target_id=target.target_id,
                run_type=target.run_type.value,
                backend=backend.backend_id,
            )
            started = time.monotonic()
            exit_code, stderr = await self._execute(target, cmd, env, budget)
            duration = time.monotonic() - started

            if exit_code < 0:
                raise TargetCrashed.for_target(
                    target.target_id,
                    f"terminated by signal {-exit_code}",
                    exit_code=exit_code,
                )

            artifact = backend.artifact_path(artifact_dir)
            if not artifact.exists():
                reason = "no coverage artifact produced"
                if stderr:
                    reason = f"{reason}: {stderr[-_STDERR_TAIL:].strip()}"
                raise TargetCrashed.for_target(target.target_id, reason, exit_code=exit_code)

            try:
                files = backend.extract(artifact_dir, base_path=self._repo_root)
            except ReportParseError as e:
                raise TargetCrashed.for_target(
                    target.target_id,
                    f"unreadable coverage artifact: {e.message}",
                    exit_code=exit_code,
                ) from e

        trace = CoverageTrace(
            target_id=target.target_id,
            run_type=target.run_type,
            files=_stamp_checksums(files, self._repo_root),
            exit_code=exit_code,
        )
        log.info(
            "target_finished",
            target_id=target.target_id,
            exit_code=exit_code,
            files=len(trace.files),
            lines=trace.line_count,
            duration_seconds=round(duration, 3),
        )
        return trace

    async def _execute(
        self,
        target: TestTarget,
        cmd: list[str],
        env: dict[str, str],
        timeout_sec: float,
    ) -> tuple[int, str]:
        """Launch the process and wait for it within the budget.

        The process is started in its own session so a timeout or
        cancellation can kill the whole tree (cargo spawns test binaries).
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                cwd=target.cwd,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            # Missing cwd or a program the kernel refuses to exec
            raise TargetCrashed.for_target(target.target_id, str(e)) from e
        try:
            _, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout_sec)
        except TimeoutError:
            await self._kill(proc)
            log.warning("target_timeout", target_id=target.target_id, timeout_sec=timeout_sec)
            raise ExecutionTimeout.for_target(target.target_id, timeout_sec) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        returncode = proc.returncode if proc.returncode is not None else -1
        return returncode, stderr_bytes.decode(errors="replace")

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill the process group and reap the child."""
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(proc.pid, signal.SIGKILL)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
        await proc.wait()
