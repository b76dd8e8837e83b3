"""valheim-dsm CLI commands."""
# pyright: reportUnusedCallResult=false

from typing import TYPE_CHECKING

from ._lists import lists_app
from ._rcon import rcon_app
from ._server import start_app, status_app, stop_app

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "lists_app",
    "rcon_app",
    "register_commands",
    "start_app",
    "status_app",
    "stop_app",
]


def register_commands(app: "App") -> None:
    app.command(start_app)
    app.command(stop_app)
    app.command(status_app)
    app.command(rcon_app)
    app.command(lists_app)
