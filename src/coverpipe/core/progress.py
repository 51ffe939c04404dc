"""User-facing console feedback for pipeline runs.

Design principles:
- Single line updates, no spam
- Graceful degradation in non-TTY (CI logs, pipes)
- Suppress structlog console output during spinners to avoid line collision

Usage::

    from coverpipe.core.progress import status, spinner

    status("Discovered 3 targets")
    status("Upload complete", style="success")  # ✓ Upload complete

    with spinner("Running 3 targets"):
        await run_targets()
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from coverpipe.pipeline.models import PipelineSummary

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_suppress_console_logs = threading.local()


def is_console_suppressed() -> bool:
    """Check if console logging is currently suppressed."""
    return getattr(_suppress_console_logs, "active", False)


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Suppress structlog console output while a live display is shown."""
    _suppress_console_logs.active = True
    try:
        yield
    finally:
        _suppress_console_logs.active = False


def _get_logger() -> BoundLogger:
    from coverpipe.core.logging import get_logger

    return get_logger("progress")


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """Print a styled status message to stderr."""
    prefix = _STYLES.get(style, "")
    padding = " " * indent
    _console.print(f"{padding}{prefix}{message}", highlight=False)
    _get_logger().debug("status", message=message, style=style)


@contextmanager
def spinner(message: str, *, indent: int = 0) -> Iterator[None]:
    """Show a spinner while the block runs; plain line in non-TTY."""
    padding = " " * indent
    if _is_tty():
        with (
            suppress_console_logs(),
            _console.status(f"{padding}[cyan]{message}[/cyan]", spinner="dots"),
        ):
            yield
    else:
        _console.print(f"{padding}{message}...", highlight=False)
        yield


def render_summary(summary: PipelineSummary, console: Console | None = None) -> None:
    """Print the end-of-run summary: targets, coverage, upload outcome."""
    console = console or _console

    table = Table(title="Coverage run", show_header=True, header_style="bold")
    table.add_column("Target")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    for outcome in summary.outcomes:
        style = "green" if outcome.status == "passed" else "red"
        if outcome.status == "skipped":
            style = "dim"
        table.add_row(
            outcome.target_id,
            outcome.run_type.value,
            f"[{style}]{outcome.status}[/{style}]",
            f"{outcome.duration_seconds:.1f}s" if outcome.duration_seconds is not None else "-",
        )
    if summary.outcomes:
        console.print(table)

    console.print(
        f"Targets: {summary.targets_run} run, {summary.targets_failed} failed",
        highlight=False,
    )
    if summary.line_percent is not None:
        line = f"Coverage: {summary.line_percent:.2f}% lines"
        if summary.branch_percent is not None:
            line += f", {summary.branch_percent:.2f}% branches"
        console.print(line, highlight=False)
    else:
        console.print("Coverage: no data", highlight=False)
    console.print(f"Upload: {summary.upload_outcome}", highlight=False)

    if summary.exit_code == 0:
        console.print(f"{_STYLES['success']}Pipeline succeeded", highlight=False)
    else:
        reason = f": {summary.reason}" if summary.reason else ""
        console.print(f"{_STYLES['error']}Pipeline failed{reason}", highlight=False)
