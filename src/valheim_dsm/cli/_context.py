# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for dataclass field
"""CLI context for global state management.

The CLIContext is set once per invocation by the meta command and read by
subcommands through a context variable.
"""

import contextvars
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from valheim_dsm.config import AppConfig

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

_current_cli_context: contextvars.ContextVar["CLIContext | None"] = contextvars.ContextVar(
    "cli_context", default=None
)


@dataclass(frozen=True, slots=True)
class CLIContext:
    """Global CLI context with configuration and options.

    Attributes:
        config: Loaded configuration.
        verbose: Print server output while waiting for startup.
        quiet: Suppress non-essential output.
        config_path: Explicit config file, if one was given.
        logger: Structured logger for CLI commands (writes to file only).
    """

    config: AppConfig = field(repr=False)
    verbose: bool = False
    quiet: bool = False
    config_path: Path | None = None
    logger: "FilteringBoundLogger | None" = field(default=None, repr=False)

    @classmethod
    def get_current(cls) -> "CLIContext":
        """Return the active context, or one with default configuration."""
        ctx = _current_cli_context.get()
        if ctx is not None:
            return ctx
        return cls(config=AppConfig())

    @classmethod
    def set_current(cls, ctx: "CLIContext") -> None:
        _current_cli_context.set(ctx)

    @classmethod
    def reset(cls) -> None:
        """Clear the active context."""
        _current_cli_context.set(None)
