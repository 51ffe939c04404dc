"""Tests for CI metadata detection and run id derivation."""

import uuid
from pathlib import Path

import pygit2

from coverpipe.config.ci_env import (
    RUN_ID_NAMESPACE,
    CiEnvironment,
    derive_run_id,
    detect_ci_environment,
    resolve_repo_root,
)

GITHUB_ENV = {
    "GITHUB_ACTIONS": "true",
    "GITHUB_SHA": "a" * 40,
    "GITHUB_REF": "refs/pull/42/merge",
    "GITHUB_REF_NAME": "42/merge",
    "GITHUB_HEAD_REF": "feature/cov",
    "GITHUB_RUN_ID": "9001",
    "GITHUB_RUN_ATTEMPT": "2",
    "GITHUB_REPOSITORY": "octo/widgets",
}


def _init_repo_with_commit(path: Path) -> str:
    repo = pygit2.init_repository(str(path), initial_head="main")
    (path / "README").write_text("hello\n")
    repo.index.add("README")
    repo.index.write()
    tree = repo.index.write_tree()
    sig = pygit2.Signature("Test", "test@example.com")
    oid = repo.create_commit("HEAD", sig, sig, "initial", tree, [])
    return str(oid)


class TestGithubActions:
    """GitHub Actions environment."""

    def test_reads_build_metadata(self) -> None:
        ci = detect_ci_environment(GITHUB_ENV)

        assert ci.service == "github-actions"
        assert ci.commit == "a" * 40
        assert ci.branch == "feature/cov"
        assert ci.build == "9001"
        assert ci.build_attempt == "2"
        assert ci.pr == "42"
        assert ci.slug == "octo/widgets"
        assert ci.build_url == "https://github.com/octo/widgets/actions/runs/9001"

    def test_push_event_uses_ref_name(self) -> None:
        env = {**GITHUB_ENV, "GITHUB_REF": "refs/heads/main", "GITHUB_REF_NAME": "main"}
        del env["GITHUB_HEAD_REF"]

        ci = detect_ci_environment(env)

        assert ci.branch == "main"
        assert ci.pr is None

    def test_as_params_drops_empty(self) -> None:
        ci = CiEnvironment(service="github-actions", commit="abc")
        assert ci.as_params() == {"service": "github-actions", "commit": "abc"}


class TestGitFallback:
    """Local checkout supplies commit and branch outside CI."""

    def test_reads_head_commit_and_branch(self, tmp_path: Path) -> None:
        # Given
        commit = _init_repo_with_commit(tmp_path)

        # When
        ci = detect_ci_environment({}, repo_root=tmp_path)

        # Then
        assert ci.service is None
        assert ci.commit == commit
        assert ci.branch == "main"

    def test_unborn_head(self, tmp_path: Path) -> None:
        pygit2.init_repository(str(tmp_path))

        ci = detect_ci_environment({}, repo_root=tmp_path)

        assert ci.commit is None
        assert ci.branch is None

    def test_not_a_repository(self, tmp_path: Path) -> None:
        ci = detect_ci_environment({}, repo_root=tmp_path / "nowhere")
        assert ci.commit is None


class TestDeriveRunId:
    """Run id stability."""

    def test_configured_wins(self) -> None:
        ci = CiEnvironment(build="1")
        assert derive_run_id("mine", ci, "digest") == "mine"

    def test_build_and_attempt(self) -> None:
        assert derive_run_id(None, CiEnvironment(build="9001", build_attempt="3"), "d") == "9001-3"
        assert derive_run_id(None, CiEnvironment(build="9001"), "d") == "9001-1"

    def test_commit_and_digest_are_deterministic(self) -> None:
        ci = CiEnvironment(commit="abc")

        first = derive_run_id(None, ci, "digest-1")
        second = derive_run_id(None, ci, "digest-1")

        assert first == second
        assert first == str(uuid.uuid5(RUN_ID_NAMESPACE, "abc:digest-1"))
        assert derive_run_id(None, ci, "digest-2") != first


class TestResolveRepoRoot:
    def test_explicit_path(self, tmp_path: Path) -> None:
        assert resolve_repo_root(tmp_path, env={}) == tmp_path.resolve()

    def test_github_workspace(self, tmp_path: Path) -> None:
        assert resolve_repo_root(env={"GITHUB_WORKSPACE": str(tmp_path)}) == tmp_path.resolve()
