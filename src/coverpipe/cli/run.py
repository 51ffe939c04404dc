"""cvp run command - the full pipeline."""

from pathlib import Path

import click

from coverpipe.cli.utils import load_cli_config, prune
from coverpipe.pipeline import run_pipeline


@click.command()
@click.argument(
    "path", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file"
)
@click.option("--timeout", "timeout_sec", type=float, help="Per-target timeout in seconds")
@click.option(
    "--run-types",
    multiple=True,
    help="Run types to include (Tests, Doctests, IntegrationTests). Repeatable. "
    "Default: Tests and Doctests.",
)
@click.option("--all-features", is_flag=True, default=None, help="Instrument with all features")
@click.option("--workspace", is_flag=True, default=None, help="Include all workspace members")
@click.option("--fail-fast", is_flag=True, default=None, help="Stop on the first failed target")
@click.option("-j", "--jobs", type=int, help="Targets run concurrently")
@click.option("--backend", help="Force an instrumentation backend")
@click.option("--exclude-files", multiple=True, help="Glob of source files to drop. Repeatable.")
@click.option("--fail-under", type=float, help="Minimum line coverage percent")
@click.option("--out", "formats", multiple=True, help="Report format (cobertura, lcov).")
@click.option("--output-dir", help="Directory for reports")
@click.option("--no-upload", is_flag=True, default=False, help="Skip the upload step")
@click.option(
    "--fail-ci-if-error/--no-fail-ci-if-error",
    default=None,
    help="Treat an upload failure as a failed run",
)
@click.option("--dry-run", is_flag=True, default=None, help="Build the upload without sending it")
@click.pass_context
def run_command(
    ctx: click.Context,
    path: Path | None,
    config_path: Path | None,
    timeout_sec: float | None,
    run_types: tuple[str, ...],
    all_features: bool | None,
    workspace: bool | None,
    fail_fast: bool | None,
    jobs: int | None,
    backend: str | None,
    exclude_files: tuple[str, ...],
    fail_under: float | None,
    formats: tuple[str, ...],
    output_dir: str | None,
    no_upload: bool,
    fail_ci_if_error: bool | None,
    dry_run: bool | None,
) -> None:
    """Run tests under coverage, write reports and upload them.

    PATH is the repository root (default: $GITHUB_WORKSPACE or the current
    directory). Exits 0 on success, 1 on failure, 130 when cancelled.
    """
    run = prune(
        {
            "timeout_sec": timeout_sec,
            "run_types": list(run_types) or None,
            "all_features": all_features,
            "workspace": workspace,
            "fail_fast": fail_fast,
            "jobs": jobs,
            "backend": backend,
            "exclude_files": list(exclude_files) or None,
            "fail_under": fail_under,
        }
    )
    report = prune({"formats": list(formats) or None, "output_dir": output_dir})
    upload = prune(
        {
            "enabled": False if no_upload else None,
            "fail_ci_if_error": fail_ci_if_error,
            "dry_run": dry_run,
        }
    )

    repo_root, config = load_cli_config(
        ctx, path, config_path, run=run, report=report, upload=upload
    )
    ctx.exit(run_pipeline(config, repo_root))
