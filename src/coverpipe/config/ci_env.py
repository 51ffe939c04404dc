"""CI environment detection and run identity.

Reads the build metadata that accompanies an upload (commit, branch, build
id, repository slug) from the CI environment, falling back to the local git
checkout for commit and branch.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import pygit2

from coverpipe.core.logging import get_logger

log = get_logger(__name__)

# Namespace for run ids derived from commit + report digest
RUN_ID_NAMESPACE = uuid.UUID("6f1c3d2a-8b4e-5f70-9a1d-2c3b4e5f6a7b")


@dataclass(frozen=True)
class CiEnvironment:
    """Build metadata attached to an upload."""

    service: str | None = None
    commit: str | None = None
    branch: str | None = None
    build: str | None = None
    build_attempt: str | None = None
    build_url: str | None = None
    slug: str | None = None
    pr: str | None = None
    workspace: str | None = None

    def as_params(self) -> dict[str, str]:
        """Non-empty values as upload query parameters."""
        params = {
            "service": self.service,
            "commit": self.commit,
            "branch": self.branch,
            "build": self.build,
            "build_url": self.build_url,
            "slug": self.slug,
            "pr": self.pr,
        }
        return {k: v for k, v in params.items() if v}


def _read_git(repo_root: Path) -> tuple[str | None, str | None]:
    """(commit, branch) of the checkout, or Nones when unavailable."""
    try:
        repo = pygit2.Repository(str(repo_root))
    except (pygit2.GitError, KeyError):
        return None, None
    if repo.head_is_unborn:
        return None, None
    commit = str(repo.head.peel(pygit2.Commit).id)
    branch = None if repo.head_is_detached else repo.head.shorthand
    return commit, branch


def _github(env: Mapping[str, str]) -> CiEnvironment:
    server = env.get("GITHUB_SERVER_URL", "https://github.com")
    repo = env.get("GITHUB_REPOSITORY")
    run_id = env.get("GITHUB_RUN_ID")
    build_url = f"{server}/{repo}/actions/runs/{run_id}" if repo and run_id else None

    pr = None
    ref = env.get("GITHUB_REF", "")
    if ref.startswith("refs/pull/"):
        pr = ref.split("/")[2]

    return CiEnvironment(
        service="github-actions",
        commit=env.get("GITHUB_SHA"),
        # GITHUB_HEAD_REF is only set on pull_request events
        branch=env.get("GITHUB_HEAD_REF") or env.get("GITHUB_REF_NAME"),
        build=run_id,
        build_attempt=env.get("GITHUB_RUN_ATTEMPT"),
        build_url=build_url,
        slug=repo,
        pr=pr,
        workspace=env.get("GITHUB_WORKSPACE"),
    )


def detect_ci_environment(
    env: Mapping[str, str] | None = None,
    repo_root: Path | None = None,
) -> CiEnvironment:
    """Detect CI metadata from the environment.

    Missing commit or branch is read from the git checkout at repo_root.
    """
    env = os.environ if env is None else env

    if env.get("GITHUB_ACTIONS") == "true":
        ci = _github(env)
    else:
        ci = CiEnvironment(service=None, workspace=env.get("GITHUB_WORKSPACE"))

    if repo_root is not None and (ci.commit is None or ci.branch is None):
        commit, branch = _read_git(repo_root)
        ci = CiEnvironment(
            service=ci.service,
            commit=ci.commit or commit,
            branch=ci.branch or branch,
            build=ci.build,
            build_attempt=ci.build_attempt,
            build_url=ci.build_url,
            slug=ci.slug,
            pr=ci.pr,
            workspace=ci.workspace,
        )

    log.debug("ci_environment_detected", service=ci.service, commit=ci.commit, branch=ci.branch)
    return ci


def derive_run_id(configured: str | None, ci: CiEnvironment, report_digest: str) -> str:
    """Stable run identifier for server-side deduplication.

    Precedence: the configured id, then CI build id plus attempt, then a
    UUIDv5 of commit and report digest. The same inputs always give the
    same id, so re-uploading a report cannot create a second upload.
    """
    if configured:
        return configured
    if ci.build:
        return f"{ci.build}-{ci.build_attempt or '1'}"
    return str(uuid.uuid5(RUN_ID_NAMESPACE, f"{ci.commit or ''}:{report_digest}"))


def resolve_repo_root(path: Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    """Repository root: explicit path, else GITHUB_WORKSPACE, else cwd."""
    if path is not None:
        return path.resolve()
    env = os.environ if env is None else env
    workspace = env.get("GITHUB_WORKSPACE")
    return Path(workspace).resolve() if workspace else Path.cwd().resolve()
