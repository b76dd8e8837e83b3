"""Async implementations of the server and RCON commands.

Each runner prints through the given console and returns an ExitCode, so
the synchronous command wrappers only translate that into the process
exit status.
"""

import signal
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
import pendulum
from rich.console import Console  # noqa: TC002 - used in runtime annotations

from valheim_dsm.config import AppConfig  # noqa: TC001
from valheim_dsm.exceptions import (
    AccessListError,
    RconAuthError,
    RconError,
    ServerAlreadyRunningError,
    ServerStartError,
    ServerStopError,
)
from valheim_dsm.rcon import RconClient, RconSessionManager
from valheim_dsm.server import (
    AccessList,
    AccessLists,
    ConsoleServerObserver,
    GameServerProcess,
    ProcessHandleStore,
    ProcessState,
    Watchdog,
    build_args,
    cleanup_old_logs,
    read_last_lines,
)
from valheim_dsm.utils._logging import create_supervisor_logger

from .._shared import ExitCode, FormattableData, format_json

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

START_TIMEOUT = 120.0
STATUS_LOG_LINES = 10


def _error(console: Console, message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")


def _supervisor_logger(
    config: AppConfig, logger: "FilteringBoundLogger | None"
) -> "FilteringBoundLogger":  # noqa: UP037
    if logger is not None:
        return logger
    return create_supervisor_logger(
        level=config.logging.level.value,
        log_format=config.logging.format.value,  # type: ignore[arg-type]
        log_file=config.logging.file,
    )


async def wait_for_shutdown_signal() -> None:
    """Block until SIGINT or SIGTERM arrives."""
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for _ in signals:
            return


def create_process(
    config: AppConfig,
    *,
    handle_store: ProcessHandleStore | None = None,
    logger: "FilteringBoundLogger | None" = None,
) -> GameServerProcess:
    """Build the server process wrapper described by the configuration."""
    launch = config.launch_config()
    command: list[str] | None = None
    if config.paths.executable is not None:
        command = [str(config.paths.executable), *build_args(launch)]
    return GameServerProcess(
        launch,
        server_dir=config.server_dir(),
        command=command,
        handle_store=handle_store,
        logger=logger,
    )


async def run_start(
    config: AppConfig,
    *,
    console: Console,
    show_logs: bool = False,
    start_timeout: float = START_TIMEOUT,
    logger: "FilteringBoundLogger | None" = None,
) -> ExitCode:
    """Start the server under the watchdog.

    Detached servers are left running once they are online (or still
    starting after ``start_timeout``). Attached servers are supervised
    until SIGINT or SIGTERM, with an RCON session while online.
    """
    supervisor_logger = _supervisor_logger(config, logger)
    removed = await cleanup_old_logs(keep=config.logging.server_log_retention)
    if removed:
        supervisor_logger.info("server_logs_pruned", count=len(removed))

    process = create_process(config, logger=supervisor_logger)
    detached = process.config.detached
    observer = ConsoleServerObserver(console, show_logs=show_logs)
    watchdog = Watchdog(
        process,
        config.watchdog_policy(),
        observers=[observer],
        logger=supervisor_logger,
    )

    async with watchdog:
        try:
            await watchdog.start()
        except ServerAlreadyRunningError as e:
            _error(console, str(e))
            return ExitCode.INTERNAL_ERROR
        except ServerStartError as e:
            _error(console, str(e))
            return ExitCode.IO_ERROR

        state = process.state
        with anyio.move_on_after(start_timeout):
            state = await process.wait_for_state(ProcessState.ONLINE, ProcessState.CRASHED)

        if detached:
            if state == ProcessState.CRASHED:
                await watchdog.detach()
                _error(console, "Server crashed during startup")
                return ExitCode.INTERNAL_ERROR
            pid, log_path = process.pid, process.log_path
            await watchdog.detach()
            if state != ProcessState.ONLINE:
                console.print(f"[yellow]Server still starting after {start_timeout:.0f}s; leaving it running[/yellow]")
            console.print(f"Server running in the background (pid {pid})")
            if log_path is not None:
                console.print(f"Log file: {log_path}")
            return ExitCode.SUCCESS

        access_lists = AccessLists(config.save_dir(), logger=supervisor_logger)
        async with RconSessionManager(
            config.rcon_settings(), access_lists=access_lists, logger=supervisor_logger
        ) as rcon:
            rcon.watch(process)
            if process.state == ProcessState.ONLINE:
                _ = await rcon.connect()
            console.print("Supervising server. Press Ctrl+C to stop.")
            await wait_for_shutdown_signal()

        console.print("Stopping server...")
        await watchdog.stop()

    return ExitCode.SUCCESS


async def run_stop(
    config: AppConfig,
    *,
    console: Console,
    force: bool = False,
    timeout: float | None = None,
    handle_store: ProcessHandleStore | None = None,
    logger: "FilteringBoundLogger | None" = None,
) -> ExitCode:
    """Stop the server found through the handle record or an orphan scan."""
    store = handle_store if handle_store is not None else ProcessHandleStore(logger=logger)
    record = await store.resolve_running_server()
    if record is None:
        console.print("No running server found")
        return ExitCode.NOT_FOUND

    process = create_process(config, handle_store=store, logger=logger)
    async with process:
        if not await process.attach(record):
            console.print(f"Server process {record.pid} is no longer running")
            return ExitCode.NOT_FOUND
        console.print(f"Stopping server (pid {record.pid})...")
        try:
            if force:
                await process.kill()
            else:
                await process.stop(timeout)
        except ServerStopError as e:
            _error(console, str(e))
            return ExitCode.INTERNAL_ERROR

    console.print("Server stopped")
    return ExitCode.SUCCESS


async def collect_status(handle_store: ProcessHandleStore | None = None) -> FormattableData:
    """Describe the running server, if any."""
    store = handle_store if handle_store is not None else ProcessHandleStore()
    record = await store.resolve_running_server()
    if record is None:
        return {"running": False}

    started = pendulum.parse(record.started_at)
    uptime = pendulum.now("UTC") - started  # pyright: ignore[reportOperatorIssue]
    data: FormattableData = {
        "running": True,
        **record.model_dump(mode="json", by_alias=True, exclude_none=True),
        "uptimeSeconds": int(uptime.total_seconds()),
    }
    if record.log_file:
        data["recentLog"] = await read_last_lines(Path(record.log_file), STATUS_LOG_LINES)
    return data


async def run_status(
    *,
    console: Console,
    as_json: bool = False,
    handle_store: ProcessHandleStore | None = None,
) -> ExitCode:
    """Print the running server's record."""
    data = await collect_status(handle_store)
    if as_json:
        console.print(format_json(data), markup=False, highlight=False, soft_wrap=True)
    elif not data["running"]:
        console.print("Server is not running")
    else:
        console.print(f"[green]Server running[/green] (pid {data['pid']})")
        console.print(f"  World:   {data['world']}")
        console.print(f"  Port:    {data['port']}")
        console.print(f"  Started: {data['startedAt']}")
        if "logFile" in data:
            console.print(f"  Log:     {data['logFile']}")
        for line in data.get("recentLog", []):
            console.print(f"  | {line}", markup=False, highlight=False)
    return ExitCode.SUCCESS if data["running"] else ExitCode.NOT_FOUND


async def run_rcon(
    config: AppConfig,
    command: str,
    *,
    console: Console,
    logger: "FilteringBoundLogger | None" = None,
) -> ExitCode:
    """Send one RCON command and print the response."""
    settings = config.rcon_settings()
    client = RconClient(
        settings.host,
        settings.port,
        settings.password,
        timeout=settings.timeout,
        logger=logger,
    )
    try:
        async with client:
            response = await client.send(command)
    except RconAuthError as e:
        _error(console, str(e))
        return ExitCode.VALIDATION_ERROR
    except RconError as e:
        _error(console, f"{e} ({e.code})")
        return ExitCode.IO_ERROR

    console.print(response.rstrip("\n") or "(no response)", markup=False, highlight=False)
    return ExitCode.SUCCESS


async def run_list_show(
    config: AppConfig,
    kind: AccessList,
    *,
    console: Console,
    as_json: bool = False,
) -> ExitCode:
    """Print the entries of one player list."""
    lists = AccessLists(config.save_dir())
    entries = await lists.read(kind)
    if as_json:
        data: FormattableData = {"list": str(kind), "path": str(lists.path(kind)), "entries": entries}
        console.print(format_json(data), markup=False, highlight=False, soft_wrap=True)
    elif not entries:
        console.print(f"The {kind} list is empty")
    else:
        for entry in entries:
            console.print(entry, markup=False, highlight=False)
    return ExitCode.SUCCESS


async def run_list_edit(
    config: AppConfig,
    kind: AccessList,
    entry: str,
    *,
    remove: bool,
    console: Console,
    logger: "FilteringBoundLogger | None" = None,
) -> ExitCode:
    """Add an entry to, or remove one from, a player list."""
    lists = AccessLists(config.save_dir(), logger=logger)
    try:
        changed = await (lists.remove(kind, entry) if remove else lists.add(kind, entry))
    except AccessListError as e:
        _error(console, str(e))
        return ExitCode.VALIDATION_ERROR
    except OSError as e:
        _error(console, f"Cannot update {lists.path(kind)}: {e}")
        return ExitCode.IO_ERROR

    if not changed:
        console.print(f"[yellow]{entry} {'is not' if remove else 'is already'} on the {kind} list[/yellow]")
    else:
        console.print(f"{'Removed' if remove else 'Added'} {entry} {'from' if remove else 'to'} the {kind} list")
    return ExitCode.SUCCESS
