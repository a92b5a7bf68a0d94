"""Logging setup for the forks-backend CLI.

Records from both stdlib loggers (server, git facade, registry) and structlog
loggers (watch workers) end up on one handler chosen by `--log-output`. The
watch worker threads are named `watch-<id>`, so the thread name is part of
every line.

`forks-backend watch` owns stdout for its `fs/watch` JSON lines; logging to
stdout is refused for it.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from logging.config import dictConfig
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from structlog.typing import Processor

STDERR = "stderr"
STDOUT = "stdout"
NONE = "none"

# Subcommands whose stdout is a machine-readable stream
STDOUT_STREAM_COMMANDS = frozenset({"watch"})

LINE_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _handler_config(log_output: str) -> dict[str, Any]:
    """dictConfig handler entry for `stderr`, `stdout`, `none` or a file path."""
    if log_output == NONE:
        return {"class": "logging.NullHandler"}
    if log_output in (STDERR, STDOUT):
        return {"class": "logging.StreamHandler", "formatter": "line", "stream": f"ext://sys.{log_output}"}
    return {
        "class": "logging.FileHandler",
        "formatter": "line",
        "filename": str(Path(log_output).expanduser().resolve()),
        "encoding": "utf-8",
    }


def configure_logging(log_output: str = STDERR, log_level: LogLevel = LogLevel.INFO) -> None:
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"line": {"format": LINE_FORMAT}},
            "handlers": {"out": _handler_config(log_output)},
            "root": {"level": log_level.value, "handlers": ["out"]},
        }
    )

    # structlog defers level filtering and output to the stdlib logger it wraps
    procs: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.processors.format_exc_info,
        structlog.processors.KeyValueRenderer(key_order=["event"]),
    ]
    structlog.configure(
        processors=procs,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def make_logging_callback(default_level: LogLevel = LogLevel.INFO):
    """Typer app callback configuring logging before any subcommand runs."""

    def _callback(
        ctx: typer.Context,
        log_output: Annotated[
            str,
            typer.Option(
                "--log-output",
                envvar="FORKS_LOG_OUTPUT",
                help="Where to send logs: 'stderr', 'stdout', 'none', or a file path",
            ),
        ] = STDERR,
        log_level: Annotated[
            LogLevel, typer.Option("--log-level", envvar="FORKS_LOG_LEVEL", case_sensitive=False, help="Log level")
        ] = default_level,
    ) -> None:
        if log_output == STDOUT and ctx.invoked_subcommand in STDOUT_STREAM_COMMANDS:
            raise typer.BadParameter(
                f"stdout carries the `{ctx.invoked_subcommand}` event stream; log to stderr or a file",
                param_hint="--log-output",
            )
        configure_logging(log_output, log_level)

    return _callback
