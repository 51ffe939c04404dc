"""CLI utilities."""

from pathlib import Path
from typing import Any

import click

from coverpipe.config.ci_env import resolve_repo_root
from coverpipe.config.loader import load_config
from coverpipe.config.models import CoverPipeConfig
from coverpipe.core.errors import ConfigError
from coverpipe.core.logging import configure_logging


def prune(values: dict[str, Any]) -> dict[str, Any]:
    """Drop options the user did not pass (None or empty tuples)."""
    return {k: v for k, v in values.items() if v is not None and v != ()}


def load_cli_config(
    ctx: click.Context,
    path: Path | None,
    config_path: Path | None,
    **sections: dict[str, Any],
) -> tuple[Path, CoverPipeConfig]:
    """Resolve the repo root, load config with CLI overrides and set up logging.

    Raises:
        click.ClickException: On configuration errors.
    """
    repo_root = resolve_repo_root(path)
    overrides = {name: values for name, values in sections.items() if values}
    if ctx.obj and ctx.obj.get("verbose"):
        overrides["logging"] = {**overrides.get("logging", {}), "level": "DEBUG"}
    try:
        config = load_config(repo_root, config_path=config_path, **overrides)
    except ConfigError as e:
        raise click.ClickException(e.message) from e
    configure_logging(config=config.logging)
    return repo_root, config
