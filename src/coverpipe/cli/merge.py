"""cvp merge command - combine existing coverage artifacts into reports."""

from pathlib import Path

import click

from coverpipe.cli.utils import load_cli_config, prune
from coverpipe.core.errors import CoverPipeError
from coverpipe.core.progress import status
from coverpipe.coverage import exclude_files, merge_traces, parse_artifact
from coverpipe.instrument.models import CoverageTrace, RunType
from coverpipe.report import build_text_summary, write_reports


@click.command()
@click.argument(
    "files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option("--out", "formats", multiple=True, help="Report format (cobertura, lcov).")
@click.option("--output-dir", help="Directory for reports")
@click.option(
    "--exclude-files", "exclude_patterns", multiple=True, help="Glob of source files to drop"
)
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file"
)
@click.pass_context
def merge_command(
    ctx: click.Context,
    files: tuple[Path, ...],
    formats: tuple[str, ...],
    output_dir: str | None,
    exclude_patterns: tuple[str, ...],
    config_path: Path | None,
) -> None:
    """Merge LCOV / Cobertura FILES (summing hit counts) into new reports."""
    run = prune({"exclude_files": list(exclude_patterns) or None})
    report = prune({"formats": list(formats) or None, "output_dir": output_dir})
    repo_root, config = load_cli_config(ctx, None, config_path, run=run, report=report)

    try:
        traces = []
        for path in files:
            parsed = parse_artifact(path, base_path=repo_root)
            traces.append(
                CoverageTrace(target_id=str(path), run_type=RunType.TESTS, files=parsed.files)
            )
        model = exclude_files(merge_traces(traces), config.run.exclude_files).freeze()
        written = write_reports(
            model,
            config.report.formats,
            repo_root / config.report.output_dir,
            source_root=config.report.source_root or str(repo_root),
        )
    except CoverPipeError as e:
        raise click.ClickException(e.message) from e

    for path, _ in written:
        status(f"Wrote {path}", style="success")
    status(build_text_summary(model))
