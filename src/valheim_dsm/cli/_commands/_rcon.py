# pyright: reportUnusedCallResult=false
"""One-shot RCON command."""

import functools
from typing import Annotated

import anyio
from cyclopts import App, Parameter
from rich.console import Console

from .._context import CLIContext
from .._shared import ExitCode, exit_with_error
from ._runner import run_rcon

rcon_app = App(name="rcon", help="Send a console command over RCON.", help_on_error=True)


@rcon_app.default
def rcon(
    *command: Annotated[str, Parameter(help="Command and arguments, e.g. `kick Viking123`.")],
) -> None:
    """Send one command to the server's RCON endpoint and print the reply.

    Connection settings come from the [rcon] configuration section.
    """
    if not command:
        exit_with_error("No command given", ExitCode.VALIDATION_ERROR)

    ctx = CLIContext.get_current()
    code = anyio.run(
        functools.partial(
            run_rcon,
            ctx.config,
            " ".join(command),
            console=Console(),
            logger=ctx.logger,
        )
    )
    if code != ExitCode.SUCCESS:
        raise SystemExit(code)
