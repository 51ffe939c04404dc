"""Test target discovery.

The target set is computed once from static configuration:
explicitly declared targets win; otherwise the project kind is detected
from its manifest (Cargo.toml, pyproject.toml/setup.py) and one target is
produced per run type.
"""

from __future__ import annotations

import sys
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from coverpipe.core.errors import ConfigError
from coverpipe.core.logging import get_logger
from coverpipe.instrument.models import RunType, TestTarget

if TYPE_CHECKING:
    from coverpipe.config.models import RunConfig, TargetConfig

log = get_logger(__name__)

_VENV_NAMES = (".venv", "venv", ".env", "env")
_PYTHON_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg")


# =============================================================================
# Python environment
# =============================================================================


def detect_python_venv(repo_root: Path) -> Path | None:
    """Detect a Python virtual environment in the repository."""
    for venv_name in _VENV_NAMES:
        venv_path = repo_root / venv_name
        if not venv_path.is_dir():
            continue
        if (venv_path / "pyvenv.cfg").exists() or (venv_path / "bin" / "activate").exists():
            return venv_path
    return None


def get_python_executable(repo_root: Path) -> str:
    """Get Python executable, preferring the repository's venv."""
    venv = detect_python_venv(repo_root)
    if venv:
        python = venv / "bin" / "python"
        if python.exists():
            return str(python)
    return sys.executable


# =============================================================================
# Cargo manifests
# =============================================================================


@dataclass(frozen=True)
class CargoPackage:
    """One package of a Cargo project."""

    name: str
    root: Path
    is_member: bool  # True for workspace members other than the root package

    @property
    def has_lib(self) -> bool:
        return (self.root / "src" / "lib.rs").exists()

    def integration_tests(self) -> list[str]:
        tests_dir = self.root / "tests"
        if not tests_dir.is_dir():
            return []
        return sorted(p.stem for p in tests_dir.glob("*.rs"))


def _read_manifest(path: Path) -> dict:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e


def load_cargo_packages(repo_root: Path) -> tuple[CargoPackage | None, list[CargoPackage]]:
    """Root package (None for a virtual manifest) and workspace members.

    Raises:
        ConfigError: If a manifest is not valid TOML.
    """
    manifest = _read_manifest(repo_root / "Cargo.toml")

    root_pkg = None
    package = manifest.get("package")
    if isinstance(package, dict) and package.get("name"):
        root_pkg = CargoPackage(name=str(package["name"]), root=repo_root, is_member=False)

    members: list[CargoPackage] = []
    workspace = manifest.get("workspace") or {}
    excluded = {(repo_root / e).resolve() for e in workspace.get("exclude", [])}
    seen: set[Path] = set()
    for pattern in workspace.get("members", []):
        for member_dir in sorted(repo_root.glob(pattern)):
            resolved = member_dir.resolve()
            if resolved in seen or resolved in excluded or resolved == repo_root.resolve():
                continue
            member_manifest = member_dir / "Cargo.toml"
            if not member_manifest.exists():
                continue
            seen.add(resolved)
            data = _read_manifest(member_manifest).get("package") or {}
            name = str(data.get("name") or member_dir.name)
            members.append(CargoPackage(name=name, root=member_dir, is_member=True))

    return root_pkg, members


def _rust_targets(repo_root: Path, run: RunConfig) -> list[TestTarget]:
    root_pkg, members = load_cargo_packages(repo_root)
    backend_id = run.backend or "llvm-cov"

    if run.workspace:
        packages = ([root_pkg] if root_pkg else []) + members
    elif root_pkg is not None:
        packages = [root_pkg]
    else:
        # A virtual manifest has no root package to test on its own
        log.warning("virtual_manifest_without_workspace", members=len(members))
        packages = members

    select_package = bool(members)
    feature_args = ["--all-features"] if run.all_features else []

    targets: list[TestTarget] = []
    for pkg in packages:
        pkg_args = ["-p", pkg.name] if select_package else []
        member = pkg.name if pkg.is_member else None
        prefix = f"{pkg.name}/" if select_package else ""

        def make(suffix: str, run_type: RunType, *args: str) -> TestTarget:
            return TestTarget(
                target_id=f"{prefix}{suffix}",
                command=("cargo", "test", *pkg_args, *feature_args, *args),
                run_type=run_type,
                cwd=str(repo_root),
                backend_id=backend_id,
                member=member,
            )

        # cargo rejects --lib for a package without a library target
        unit_args = ("--lib", "--bins") if pkg.has_lib else ("--bins",)
        targets.append(make("tests", RunType.TESTS, *unit_args))
        if pkg.has_lib:
            targets.append(make("doctests", RunType.DOCTESTS, "--doc"))
        for test_name in pkg.integration_tests():
            targets.append(
                make(f"integration/{test_name}", RunType.INTEGRATION_TESTS, "--test", test_name)
            )
    return targets


# =============================================================================
# Python projects
# =============================================================================


def _python_targets(repo_root: Path, run: RunConfig) -> list[TestTarget]:
    python = get_python_executable(repo_root)
    backend_id = run.backend or "pytest-cov"
    source_dirs = ("src",) if (repo_root / "src").is_dir() else ()

    test_dir = next((d for d in ("tests", "test") if (repo_root / d).is_dir()), None)
    integration_dir = f"{test_dir}/integration" if test_dir else None
    if integration_dir and not (repo_root / integration_dir).is_dir():
        integration_dir = None

    def make(target_id: str, run_type: RunType, *args: str) -> TestTarget:
        return TestTarget(
            target_id=target_id,
            command=(python, "-m", "pytest", *args),
            run_type=run_type,
            cwd=str(repo_root),
            backend_id=backend_id,
            source_dirs=source_dirs,
        )

    targets: list[TestTarget] = []
    if test_dir:
        ignore = [f"--ignore={integration_dir}"] if integration_dir else []
        targets.append(make("tests", RunType.TESTS, test_dir, *ignore))
    doctest_roots = source_dirs or (".",)
    targets.append(make("doctests", RunType.DOCTESTS, "--doctest-modules", *doctest_roots))
    if integration_dir:
        targets.append(make("integration", RunType.INTEGRATION_TESTS, integration_dir))
    return targets


# =============================================================================
# Discovery
# =============================================================================


def detect_project_kind(repo_root: Path) -> str | None:
    """'rust', 'python', or None when no known manifest exists."""
    if (repo_root / "Cargo.toml").exists():
        return "rust"
    if any((repo_root / marker).exists() for marker in _PYTHON_MARKERS):
        return "python"
    return None


def _explicit_targets(
    repo_root: Path, run: RunConfig, targets: Sequence[TargetConfig]
) -> list[TestTarget]:
    result = []
    for t in targets:
        if t.member is not None and not run.workspace:
            continue
        cwd = (repo_root / t.cwd) if t.cwd else repo_root
        result.append(
            TestTarget(
                target_id=t.id,
                command=tuple(t.command),
                run_type=t.run_type,
                cwd=str(cwd.resolve()),
                timeout_sec=t.timeout_sec,
                backend_id=t.backend or run.backend or "lcov-env",
                member=t.member,
                env=tuple(sorted(t.env.items())),
            )
        )
    return result


def discover_targets(
    repo_root: Path,
    run: RunConfig,
    targets: Sequence[TargetConfig] = (),
) -> list[TestTarget]:
    """Compute the target set for a run.

    Explicit targets take precedence over auto-detection. Targets whose run
    type is not selected are dropped; so are workspace-member targets unless
    ``run.workspace`` is set (a virtual Cargo manifest keeps its members).

    Raises:
        ConfigError: If target ids collide or a manifest cannot be read.
    """
    if targets:
        found = _explicit_targets(repo_root, run, targets)
        source = "config"
    else:
        kind = detect_project_kind(repo_root)
        if kind == "rust":
            found = _rust_targets(repo_root, run)
        elif kind == "python":
            found = _python_targets(repo_root, run)
        else:
            found = []
        source = kind or "none"

    selected = [t for t in found if t.run_type in run.run_types]

    seen: set[str] = set()
    for t in selected:
        if t.target_id in seen:
            raise ConfigError.invalid_value("targets", t.target_id, "duplicate target id")
        seen.add(t.target_id)

    log.info(
        "targets_discovered",
        source=source,
        found=len(found),
        selected=len(selected),
        run_types=sorted(rt.value for rt in run.run_types),
    )
    return selected
