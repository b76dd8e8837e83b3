"""Logging utilities for valheim-dsm.

Standalone structlog logger factories for the supervisor and the CLI.
Loggers are self-contained and never touch global structlog
configuration, so library components fall back to ``structlog.get_logger``
when the caller does not hand them a logger.
"""

import logging
from logging.handlers import RotatingFileHandler
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

from ._paths import get_cli_log_file, get_supervisor_log_file

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LogFormatType = Literal["json", "text"]

DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3


def _get_log_level() -> int:
    """Get the log level from VALHEIM_DSM_DEBUG or VALHEIM_DSM_LOG_LEVEL.

    Returns:
        The logging level as an integer, INFO when neither is set.
    """
    if getenv("VALHEIM_DSM_DEBUG", None):
        return logging.DEBUG

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(getenv("VALHEIM_DSM_LOG_LEVEL", "info").upper(), logging.INFO)


def _log_level_from_string(level: str, *, respect_env: bool = False) -> int:
    """Convert a log level string to a logging level integer.

    Args:
        level: Log level string (debug, info, warning, error).
        respect_env: If True, VALHEIM_DSM_DEBUG overrides to DEBUG level.

    Returns:
        The logging level as an integer.
    """
    if respect_env and getenv("VALHEIM_DSM_DEBUG", None):
        return logging.DEBUG

    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def _ensure_rotating_handler(
    stdlib_logger: logging.Logger,
    log_path: Path,
    max_bytes: int,
    backup_count: int,
    level: int,
) -> RotatingFileHandler:
    """Attach a rotating handler for ``log_path``, reusing a matching one."""
    for existing in stdlib_logger.handlers:
        if (
            isinstance(existing, RotatingFileHandler)
            and existing.maxBytes == max_bytes
            and existing.backupCount == backup_count
        ):
            existing.setLevel(level)
            return existing

    for stale in list(stdlib_logger.handlers):
        stdlib_logger.removeHandler(stale)
        stale.close()

    handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    stdlib_logger.addHandler(handler)
    return handler


def _create_logger(
    log_file_path: str,
    *,
    log_level: int | None = None,
    log_format: LogFormatType = "json",
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a standalone structlog logger writing to the specified file.

    Args:
        log_file_path: Path to the log file (opened in append mode).
        log_level: Override log level (uses env vars if not specified).
        log_format: Output format, either "json" or "text".
        max_bytes: Size in bytes before rotation. Rotation needs both
            max_bytes and backup_count.
        backup_count: Number of rotated files to keep.

    Returns:
        A configured FilteringBoundLogger instance.
    """
    log_path = Path(log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    effective_level = log_level if log_level is not None else _get_log_level()

    raw_logger: object
    if max_bytes is not None and backup_count is not None:
        # One stdlib logger per file, so repeated calls share its handler.
        stdlib_logger = logging.getLogger(f"valheim_dsm.file:{log_path.resolve()}")
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(effective_level)
        _ensure_rotating_handler(stdlib_logger, log_path, max_bytes, backup_count, effective_level)
        raw_logger = stdlib_logger
    else:
        raw_logger = structlog.WriteLoggerFactory(file=log_path.open("a"))()

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            raw_logger,
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(effective_level),
        ),
    )


def create_supervisor_logger(
    *,
    level: str | None = None,
    log_format: LogFormatType = "json",
    log_file: str = "",
    max_bytes: int | None = DEFAULT_MAX_BYTES,
    backup_count: int | None = DEFAULT_BACKUP_COUNT,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create the logger shared by the process, watchdog and RCON layers.

    The log level is determined by (in order of precedence):
    1. VALHEIM_DSM_DEBUG environment variable
    2. The `level` parameter
    3. VALHEIM_DSM_LOG_LEVEL environment variable
    4. Default: INFO

    Args:
        level: Optional log level string.
        log_format: Output format, either "json" or "text".
        log_file: Path to log file (defaults to logs/supervisor.log).
        max_bytes: Size in bytes before rotation.
        backup_count: Number of rotated files to keep.

    Returns:
        A FilteringBoundLogger instance with rotation enabled by default.
    """
    effective_file = log_file if log_file else str(get_supervisor_log_file())

    effective_level: int | None = None
    if level is not None:
        effective_level = _log_level_from_string(level, respect_env=True)

    return _create_logger(
        effective_file,
        log_level=effective_level,
        log_format=log_format,
        max_bytes=max_bytes,
        backup_count=backup_count,
    )


def create_cli_logger(
    *,
    level: str = "info",
    log_format: LogFormatType = "json",
    log_file: str = "",
    command: str = "",
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a logger for CLI commands.

    Args:
        level: Log level threshold (debug, info, warning, error).
        log_format: Output format, either "json" or "text".
        log_file: Path to log file (defaults to logs/cli.log).
        command: Name of the CLI command, bound to all entries.

    Returns:
        A FilteringBoundLogger instance configured for CLI logging.
    """
    effective_file = log_file if log_file else str(get_cli_log_file())
    logger = _create_logger(
        effective_file,
        log_level=_log_level_from_string(level, respect_env=True),
        log_format=log_format,
    )
    if command:
        return logger.bind(command=command)
    return logger


def component_logger(
    logger: "FilteringBoundLogger | None", component: str
) -> "FilteringBoundLogger":  # noqa: UP037
    """Bind a component name onto a caller-supplied or default logger."""
    base = logger if logger is not None else structlog.get_logger()
    return cast("FilteringBoundLogger", base.bind(component=component))
