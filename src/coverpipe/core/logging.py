"""structlog setup for pipeline runs.

Events go through one processor chain (context, level, timestamp, run id,
secret redaction) and are then rendered per output by a stdlib
``ProcessorFormatter``: console text for terminals, JSON lines for files.
Console handlers go quiet while a Rich spinner owns the terminal.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from coverpipe.config.models import LoggingConfig, LogOutputConfig

REDACTED = "***"

_SECRET_KEYS = frozenset({"token", "authorization", "auth", "password", "secret"})

# Libraries that log full request lines (query strings included) at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)

# First file destination of the active configuration, shown in the exit summary
_active_log_file: Path | None = None


def get_run_id() -> str | None:
    return _run_id.get()


def set_run_id(run_id: str | None = None) -> str:
    """Bind a run correlation id (generated when not given) to later events."""
    rid = run_id or uuid4().hex[:12]
    _run_id.set(rid)
    return rid


def clear_run_id() -> None:
    _run_id.set(None)


def get_log_file_path() -> Path | None:
    return _active_log_file


def _add_run_id(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    rid = _run_id.get()
    if rid is not None:
        event_dict.setdefault("run_id", rid)
    return event_dict


def _is_secret(key: object) -> bool:
    return str(key).lower() in _SECRET_KEYS


def redact_secrets(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask token-like keys, one level deep so header dicts are covered too."""
    for key in list(event_dict):
        value = event_dict[key]
        if _is_secret(key):
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {k: REDACTED if _is_secret(k) else v for k, v in value.items()}
    return event_dict


def _level_number(name: str | None, fallback: int = logging.INFO) -> int:
    if not name:
        return fallback
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else fallback


class ConsoleSuppressingFilter(logging.Filter):
    """Drops records while a spinner is active. Never attached to file handlers."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        from coverpipe.core.progress import is_console_suppressed

        return not is_console_suppressed()


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
        _add_run_id,  # type: ignore[list-item]
        redact_secrets,  # type: ignore[list-item]
    ]


def _renderer(output: LogOutputConfig, *, to_terminal: bool) -> structlog.types.Processor:
    if output.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=to_terminal and sys.stderr.isatty(),
        pad_event_to=0,
        pad_level=False,
    )


def _open_handler(output: LogOutputConfig) -> logging.Handler:
    if output.destination == "stderr":
        return logging.StreamHandler(sys.stderr)
    if output.destination == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(output.destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a")


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Install structlog and one stdlib handler per configured output.

    Without ``config`` a single stderr output is used, rendered as JSON when
    ``json_format`` is set. Safe to call again; previous handlers are removed.
    """
    global _active_log_file
    from coverpipe.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level.upper(),  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )

    root_level = _level_number(config.level)
    processors = _shared_processors()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfiguration must reach loggers created earlier
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _active_log_file = None
    for output in config.outputs:
        to_terminal = output.destination in ("stderr", "stdout")
        if not to_terminal and _active_log_file is None:
            _active_log_file = Path(output.destination)

        handler = _open_handler(output)
        handler.setLevel(_level_number(output.level, root_level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=_renderer(output, to_terminal=to_terminal),
                foreign_pre_chain=processors,
            )
        )
        if to_terminal:
            handler.addFilter(ConsoleSuppressingFilter())
        root.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    # Lazy proxy: module-level loggers pick up configure_logging() done later
    if name:
        return structlog.get_logger(name)  # type: ignore[no-any-return]
    return structlog.get_logger()  # type: ignore[no-any-return]
