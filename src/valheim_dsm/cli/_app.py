"""The command-line interface for valheim-dsm."""
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing

from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console

from valheim_dsm.config import load_config
from valheim_dsm.exceptions import ConfigLoadError, ConfigValidationError
from valheim_dsm.utils._logging import create_cli_logger

from ._commands import register_commands
from ._context import CLIContext
from ._shared import ExitCode, exit_with_error

APP_HELP = "Supervise a Valheim dedicated server."


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Build the CLI application.

    The meta command loads configuration and sets the CLIContext before
    dispatching to a subcommand.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="valheim-dsm",
        help=APP_HELP,
        help_on_error=True,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.meta.default
    def _default(  # pyright: ignore[reportUnusedFunction]
        *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
        verbose: Annotated[bool, Parameter(help="Print all server output")] = False,
        quiet: Annotated[bool, Parameter(help="Suppress non-essential output")] = False,
        config: Annotated[Path | None, Parameter(name="--config", help="Path to config file")] = None,
    ) -> None:
        """Launch valheim-dsm with global options.

        Args:
            tokens: Command tokens to pass to subcommands.
            verbose: Print all server output.
            quiet: Suppress non-essential output.
            config: Explicit path to config file.
        """
        try:
            loaded_config = load_config(config)
        except ConfigLoadError as e:
            exit_with_error(str(e), ExitCode.LOAD_ERROR, console=error_console)
        except ConfigValidationError as e:
            exit_with_error(str(e), ExitCode.VALIDATION_ERROR, console=error_console)

        cli_logger = create_cli_logger(
            level=loaded_config.logging.level.value,
            log_format=loaded_config.logging.format.value,  # type: ignore[arg-type]
            command=tokens[0] if tokens else "",
        )

        ctx = CLIContext(
            config=loaded_config,
            verbose=verbose,
            quiet=quiet,
            config_path=config,
            logger=cli_logger,
        )
        CLIContext.set_current(ctx)

        try:
            app(tokens)
        finally:
            CLIContext.reset()

    register_commands(app)
    return app


def main() -> None:
    """Default entrypoint for the `valheim-dsm` CLI."""
    app = create_app()
    app.meta()
