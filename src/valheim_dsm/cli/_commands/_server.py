# pyright: reportUnusedCallResult=false
"""Server lifecycle commands: start, stop and status."""

import functools
from typing import Annotated, Any

import anyio
from cyclopts import App, Parameter
from rich.console import Console

from valheim_dsm.config import deep_merge, validate_config
from valheim_dsm.exceptions import ConfigValidationError

from .._context import CLIContext
from .._shared import ExitCode, exit_with_error
from ._runner import run_start, run_status, run_stop

start_app = App(name="start", help="Start the dedicated server.", help_on_error=True)
stop_app = App(name="stop", help="Stop the running dedicated server.", help_on_error=True)
status_app = App(name="status", help="Show the running dedicated server.", help_on_error=True)


def _finish(code: ExitCode) -> None:
    if code != ExitCode.SUCCESS:
        raise SystemExit(code)


@start_app.default
def start(  # noqa: PLR0913
    *,
    world: Annotated[str | None, Parameter(help="World save name.")] = None,
    port: Annotated[int | None, Parameter(help="Game port.")] = None,
    name: Annotated[str | None, Parameter(help="Public server name.")] = None,
    password: Annotated[str | None, Parameter(help="Join password.")] = None,
    public: Annotated[bool | None, Parameter(help="List in the server browser.")] = None,
    crossplay: Annotated[bool | None, Parameter(help="Enable crossplay.")] = None,
    attached: Annotated[
        bool,
        Parameter(help="Keep the server tied to this terminal instead of detaching."),
    ] = False,
) -> None:
    """Start the dedicated server under the watchdog.

    Refuses to start when a server is already running. Waits until the
    server is online, then detaches unless --attached is given.
    """
    ctx = CLIContext.get_current()
    config = ctx.config

    server_overrides: dict[str, Any] = {
        key: value
        for key, value in {
            "world": world,
            "port": port,
            "name": name,
            "password": password,
            "public": public,
            "crossplay": crossplay,
        }.items()
        if value is not None
    }
    if attached:
        server_overrides["detached"] = False
    if server_overrides:
        try:
            config = validate_config(
                deep_merge(config.model_dump(), {"server": server_overrides}),
                source="command line",
            )
        except ConfigValidationError as e:
            exit_with_error(str(e), ExitCode.VALIDATION_ERROR)

    if ctx.logger is not None:
        ctx.logger.info("start_requested", world=config.server.world, detached=config.server.detached)

    show_logs = ctx.verbose or (not config.server.detached and not ctx.quiet)
    code = anyio.run(functools.partial(run_start, config, console=Console(), show_logs=show_logs))
    _finish(code)


@stop_app.default
def stop(
    *,
    force: Annotated[bool, Parameter(help="Kill immediately instead of terminating.")] = False,
    timeout: Annotated[
        float | None,
        Parameter(help="Seconds to wait for a graceful exit before killing."),
    ] = None,
) -> None:
    """Stop the running dedicated server and delete its handle record."""
    ctx = CLIContext.get_current()
    if ctx.logger is not None:
        ctx.logger.info("stop_requested", force=force)
    code = anyio.run(
        functools.partial(run_stop, ctx.config, console=Console(), force=force, timeout=timeout)
    )
    _finish(code)


@status_app.default
def status(
    *,
    json: Annotated[bool, Parameter(name="--json", help="Print as JSON.")] = False,
) -> None:
    """Show the running dedicated server.

    Exits with NOT_FOUND (3) when no server is running.
    """
    code = anyio.run(functools.partial(run_status, console=Console(), as_json=json))
    _finish(code)
