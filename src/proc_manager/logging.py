"""Console and file logging for proc-manager.

The server talks to two audiences:
1. Operators watching the terminal get short Rich lines (helpers below)
2. Tooling gets JSON Lines events from structlog in a rotating file
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from proc_manager.config import Config

_console = Console(highlight=False, soft_wrap=True)


class Icon:
    """Markers shown between the level tag and the message."""

    OK = "[green]✓[/]"
    FAIL = "[red]✗[/]"
    WAIT = "⏳"
    SIGNAL = "⚡"
    KILL = "[red]☠[/]"
    FALLBACK = "[yellow]↯[/]"


# level -> (tag, style); tags are padded to the same width
_LEVELS = {
    "info": ("info", "blue"),
    "warn": ("warn", "yellow"),
    "error": ("err ", "bold red"),
}


def emit(level: str, msg: str, icon: str = "") -> None:
    """Write one console line: time, level tag, optional icon, message.

    msg may contain Rich markup. Unknown levels are shown verbatim.
    """
    tag, style = _LEVELS.get(level, (level, "white"))
    parts = [f"[dim]{datetime.now():%H:%M:%S}[/]", f"[{style}]\\[{tag}][/]"]
    if icon:
        parts.append(icon)
    parts.append(msg)
    _console.print(" ".join(parts))


def info(msg: str, icon: str = "") -> None:
    emit("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    emit("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    emit("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Server events
# ─────────────────────────────────────────────────────────────────────────────


def version_info(name: str, version: str) -> None:
    info(f"[bold]{name}[/] {version}")


def config_created(path: str) -> None:
    info(f"Wrote default config to [cyan]{path}[/]")


def server_started(host: str, port: int) -> None:
    info(f"API listening on [cyan]http://{host}:{port}[/]", Icon.OK)


def server_stopping() -> None:
    info("Server stopping...", Icon.WAIT)


def server_stopped() -> None:
    info("Server stopped", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Got {name}, shutting down", Icon.SIGNAL)


def already_running(pid: int | None = None) -> None:
    suffix = f" [dim](PID {pid})[/]" if pid else ""
    error(f"A server is already running{suffix}", Icon.FAIL)


def snapshot_served(count: int, source: str, elapsed_ms: int) -> None:
    info(f"Served [cyan]{count}[/] processes [dim]({source}, {elapsed_ms}ms)[/]")


def snapshot_fallback(reason: str) -> None:
    """Primary source failed; the fallback listing is in use."""
    warn(f"procfs unavailable, using ps: [dim]{reason}[/]", Icon.FALLBACK)


def snapshot_failed(reason: str) -> None:
    error(f"Snapshot failed: {reason}", Icon.FAIL)


def process_terminated(pid: int) -> None:
    info(f"Sent SIGTERM to PID [cyan]{pid}[/]", Icon.KILL)


def terminate_failed(pid: int, code: int, message: str) -> None:
    warn(f"kill({pid}) failed: [dim]errno {code}, {message}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# structlog -> JSON Lines file
# ─────────────────────────────────────────────────────────────────────────────


def _tag_source(source: str) -> structlog.types.Processor:
    """Build a processor that records which program wrote the event."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict.setdefault("source", source)
        return event_dict

    return processor


def _common_processors(source: str) -> list[structlog.types.Processor]:
    """Processors applied both to structlog events and to stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        _tag_source(source),
    ]


def configure(config: Config, source: str = "server") -> None:
    """Send structlog events (and stray stdlib records) to the rotating log.

    Console output stays with the Rich helpers above.

    Args:
        config: Supplies log_path and the rotation limits
        source: Value of the "source" field on every event
    """
    config.log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=[
                *_common_processors(source),
                structlog.processors.format_exc_info,
            ],
        )
    )

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_common_processors(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_cli(level: int = logging.WARNING) -> None:
    """Send structlog events from one-shot commands to stderr.

    stdout stays reserved for command output (the snapshot payload must be
    the only thing on it). Events below level are dropped.
    """
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
