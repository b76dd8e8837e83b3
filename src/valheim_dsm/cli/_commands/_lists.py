# pyright: reportUnusedCallResult=false
"""Admin, ban and permitted player list commands."""

import functools
from typing import Annotated

import anyio
from cyclopts import App, Parameter
from rich.console import Console

from valheim_dsm.server import AccessList

from .._context import CLIContext
from .._shared import ExitCode
from ._runner import run_list_edit, run_list_show

lists_app = App(name="lists", help="Manage the admin, ban and permitted player lists.", help_on_error=True)


def _finish(code: ExitCode) -> None:
    if code != ExitCode.SUCCESS:
        raise SystemExit(code)


@lists_app.command
def show(
    kind: Annotated[AccessList, Parameter(help="Which list to print.")],
    *,
    json: Annotated[bool, Parameter(name="--json", help="Print as JSON.")] = False,
) -> None:
    """Print the entries of a player list."""
    ctx = CLIContext.get_current()
    _finish(anyio.run(functools.partial(run_list_show, ctx.config, kind, console=Console(), as_json=json)))


@lists_app.command
def add(
    kind: Annotated[AccessList, Parameter(help="Which list to edit.")],
    entry: Annotated[str, Parameter(help="Platform id, e.g. a 17-digit Steam64 id.")],
) -> None:
    """Add a player to a list. The server picks up the change while running."""
    ctx = CLIContext.get_current()
    _finish(
        anyio.run(
            functools.partial(
                run_list_edit, ctx.config, kind, entry, remove=False, console=Console(), logger=ctx.logger
            )
        )
    )


@lists_app.command
def remove(
    kind: Annotated[AccessList, Parameter(help="Which list to edit.")],
    entry: Annotated[str, Parameter(help="Entry to remove.")],
) -> None:
    """Remove a player from a list."""
    ctx = CLIContext.get_current()
    _finish(
        anyio.run(
            functools.partial(
                run_list_edit, ctx.config, kind, entry, remove=True, console=Console(), logger=ctx.logger
            )
        )
    )
