"""cvp upload command - upload an existing report."""

import asyncio
from pathlib import Path

import click

from coverpipe.cli.utils import load_cli_config, prune
from coverpipe.config.ci_env import detect_ci_environment
from coverpipe.core.errors import Cancelled, ConfigError, CoverPipeError
from coverpipe.core.progress import spinner, status
from coverpipe.coverage.parsers import detect_parser
from coverpipe.pipeline.models import EXIT_CANCELLED, EXIT_FAILURE, EXIT_SUCCESS
from coverpipe.report import resolve_schema
from coverpipe.report.models import Report
from coverpipe.upload import UploadClient


@click.command()
@click.argument("report_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "schema", help="Report schema (cobertura, lcov). Default: detected")
@click.option("--url", help="Upload endpoint")
@click.option("--run-id", help="Stable run identifier for deduplication")
@click.option("--flag", "flags", multiple=True, help="Flag attached to the upload. Repeatable.")
@click.option(
    "--fail-ci-if-error/--no-fail-ci-if-error",
    default=None,
    help="Exit non-zero when the upload fails",
)
@click.option("--dry-run", is_flag=True, default=None, help="Build the upload without sending it")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file"
)
@click.pass_context
def upload_command(
    ctx: click.Context,
    report_file: Path,
    schema: str | None,
    url: str | None,
    run_id: str | None,
    flags: tuple[str, ...],
    fail_ci_if_error: bool | None,
    dry_run: bool | None,
    config_path: Path | None,
) -> None:
    """Upload REPORT_FILE (Cobertura XML or LCOV) to the coverage service."""
    upload = prune(
        {
            "url": url,
            "run_id": run_id,
            "flags": list(flags) or None,
            "fail_ci_if_error": fail_ci_if_error,
            "dry_run": dry_run,
        }
    )
    repo_root, config = load_cli_config(ctx, None, config_path, upload=upload)

    if schema is None:
        parser = detect_parser(report_file)
        if parser is None:
            raise click.ClickException(f"Cannot detect the format of {report_file}; pass --format")
        schema = parser.format_id
    try:
        report = Report(schema=resolve_schema(schema), content=report_file.read_bytes())
    except CoverPipeError as e:
        raise click.ClickException(e.message) from e

    client = UploadClient(config.upload, detect_ci_environment(repo_root=repo_root))
    try:
        with spinner(f"Uploading {report_file.name}"):
            result = asyncio.run(client.upload(report))
    except ConfigError as e:
        raise click.ClickException(e.message) from e
    except (Cancelled, KeyboardInterrupt):
        status("Upload cancelled", style="warning")
        ctx.exit(EXIT_CANCELLED)

    if result.success:
        status(f"Upload {result.outcome} (run id {result.run_id})", style="success")
        ctx.exit(EXIT_SUCCESS)

    message = result.error.message if result.error else "upload failed"
    if config.upload.fail_ci_if_error:
        status(message, style="error")
        ctx.exit(EXIT_FAILURE)
    status(f"{message} (ignored: fail_ci_if_error is off)", style="warning")
    ctx.exit(EXIT_SUCCESS)
