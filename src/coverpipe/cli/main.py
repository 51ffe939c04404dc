"""coverpipe CLI - cvp command."""

import click

from coverpipe import __version__
from coverpipe.cli.merge import merge_command
from coverpipe.cli.run import run_command
from coverpipe.cli.upload import upload_command
from coverpipe.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="cvp")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """coverpipe - run tests under coverage, aggregate, report and upload."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "INFO")


cli.add_command(run_command, name="run")
cli.add_command(upload_command, name="upload")
cli.add_command(merge_command, name="merge")


if __name__ == "__main__":
    cli()
