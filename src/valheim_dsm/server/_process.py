"""Game server process wrapper.

GameServerProcess owns one dedicated server instance and exposes it as a
state machine::

    offline -> starting -> online -> stopping -> offline
                  |           |
                  +-> crashed <+

``online`` is only entered when the server reports it is connected.
Output is parsed line by line, in emission order, into the log buffer and
the observer set.

Two launch modes exist. Attached mode pipes the child's merged
stdout/stderr straight into the parser. Detached mode starts the binary in
its own session with output redirected to a dated log file, persists a
process handle record and follows the file, so the server keeps running
after the supervisor exits and a later supervisor can ``attach()`` to it.

Background work (output pump, file tailer, liveness polling) lives in a
task group owned by the instance, so it must be used as an async context
manager.

The detached child is spawned with :class:`subprocess.Popen`, outside any
event loop transport, and watched like an external pid, so closing the
loop never signals it.
"""

import functools
import subprocess
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc
import anyio.to_thread
import pendulum

from valheim_dsm.exceptions import ServerError, ServerStartError, ServerStateError, ServerStopError
from valheim_dsm.utils._logging import component_logger
from valheim_dsm.utils._paths import get_default_server_dir, get_server_executable

from ._buffer import LogBuffer
from ._handle import ProcessHandleRecord, ProcessHandleStore, is_process_alive, kill_process
from ._logfiles import (
    DEFAULT_POLL_INTERVAL,
    LineSplitter,
    LogTailer,
    prepare_server_log_file,
    read_last_lines,
)
from ._logs import (
    ErrorEvent,
    PlayerJoinEvent,
    PlayerLeaveEvent,
    ServerEvent,
    ServerReadyEvent,
    ServerShutdownEvent,
    StartupPhase,
    StartupPhaseEvent,
    parse_event,
)
from ._models import LaunchConfig, ProcessState, build_args, build_environment
from ._observers import ObserverSet
from ._protocol import ServerObserver  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_STOP_TIMEOUT = 30.0
DEFAULT_LIVENESS_INTERVAL = 2.0
REPLAY_LINE_COUNT = 200

_RUNNING_STATES = frozenset({ProcessState.STARTING, ProcessState.ONLINE})


@final
class GameServerProcess:
    """Supervises a single dedicated server process.

    Attributes:
        config: Launch parameters.
        server_dir: Dedicated server install directory.
        observers: Receivers of every notification this process emits.
        buffer: Recent output, parsed.
        handle_store: Persistence for the detached-mode handle record.
    """

    __slots__ = (
        "_child",
        "_command",
        "_exit_code",
        "_external_pid",
        "_follow_scopes",
        "_generation",
        "_liveness_interval",
        "_log_dir",
        "_log_path",
        "_logger",
        "_monitor_scopes",
        "_operator_stop",
        "_phase",
        "_process",
        "_record",
        "_shutdown_seen",
        "_started_at",
        "_state",
        "_state_event",
        "_stop_timeout",
        "_tail_interval",
        "_tailer",
        "_task_group",
        "buffer",
        "config",
        "handle_store",
        "observers",
        "server_dir",
    )

    def __init__(
        self,
        config: LaunchConfig,
        *,
        server_dir: Path | None = None,
        command: Sequence[str] | None = None,
        observers: Iterable[ServerObserver] = (),
        handle_store: ProcessHandleStore | None = None,
        log_dir: Path | None = None,
        buffer: LogBuffer | None = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        liveness_interval: float = DEFAULT_LIVENESS_INTERVAL,
        tail_interval: float = DEFAULT_POLL_INTERVAL,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the wrapper without starting anything.

        Args:
            config: Launch parameters.
            server_dir: Install directory. Defaults to the SteamCMD location.
            command: Full argv replacing the binary and its arguments.
            observers: Initial observers, notified in order.
            handle_store: Handle record persistence. Defaults to the app dir.
            log_dir: Directory for detached-mode output logs.
            buffer: Log buffer to fill. A 1000-line buffer by default.
            stop_timeout: Seconds ``stop()`` waits before force-killing.
            liveness_interval: Seconds between liveness checks of an
                attached external process.
            tail_interval: Seconds between log file polls.
            logger: Base logger.
        """
        self.config = config
        self.server_dir = server_dir if server_dir is not None else get_default_server_dir()
        self.observers = ObserverSet(observers, logger=logger)
        self.buffer = buffer if buffer is not None else LogBuffer(logger=logger)
        self.handle_store = (
            handle_store if handle_store is not None else ProcessHandleStore(logger=logger)
        )
        self._command = tuple(command) if command is not None else None
        self._log_dir = log_dir
        self._stop_timeout = stop_timeout
        self._liveness_interval = liveness_interval
        self._tail_interval = tail_interval
        self._logger = component_logger(logger, "server_process")

        self._state = ProcessState.OFFLINE
        self._state_event: anyio.Event | None = None
        self._phase = StartupPhase.IDLE
        self._process: anyio.abc.Process | None = None
        self._child: subprocess.Popen[bytes] | None = None
        self._external_pid: int | None = None
        self._record: ProcessHandleRecord | None = None
        self._tailer: LogTailer | None = None
        self._log_path: Path | None = None
        self._started_at: pendulum.DateTime | None = None
        self._exit_code: int | None = None
        self._generation = 0
        self._operator_stop = False
        self._shutdown_seen = False
        self._follow_scopes: list[anyio.CancelScope] = []
        self._monitor_scopes: list[anyio.CancelScope] = []
        self._task_group: anyio.abc.TaskGroup | None = None

    async def __aenter__(self) -> Self:
        task_group = anyio.create_task_group()
        _ = await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        task_group = self._task_group
        if task_group is None:
            return None
        try:
            with anyio.CancelScope(shield=True):
                if self._process is not None and not self.config.detached:
                    # A piped child cannot outlive its reader.
                    await self.kill()
                else:
                    await self.detach()
        finally:
            task_group.cancel_scope.cancel()
            self._task_group = None
        return await task_group.__aexit__(exc_type, exc, tb)

    @property
    def state(self) -> ProcessState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def startup_phase(self) -> StartupPhase:
        """Return the last startup phase seen in the output."""
        return self._phase

    @property
    def pid(self) -> int | None:
        """Return the server PID while one is supervised."""
        if self._process is not None:
            return self._process.pid
        return self._external_pid

    @property
    def started_at(self) -> pendulum.DateTime | None:
        """Return when the current run started, or None when not running."""
        return self._started_at

    @property
    def exit_code(self) -> int | None:
        """Return the exit code of the last run, if known."""
        return self._exit_code

    @property
    def log_path(self) -> Path | None:
        """Return the output log file of a detached or attached server."""
        return self._log_path

    @property
    def record(self) -> ProcessHandleRecord | None:
        """Return the handle record of the current run, if any."""
        return self._record

    def is_running(self) -> bool:
        """Check whether a server run is in progress."""
        return self._state in _RUNNING_STATES

    async def wait_for_state(self, *states: ProcessState) -> ProcessState:
        """Block until the process reaches one of ``states``.

        Returns:
            The state that was reached.
        """
        while self._state not in states:
            if self._state_event is None:
                self._state_event = anyio.Event()
            await self._state_event.wait()
        return self._state

    async def start(self) -> None:
        """Launch the server.

        Allowed from ``offline`` and ``crashed``. Returns once the process is
        spawned; ``online`` follows asynchronously.

        Raises:
            ServerStateError: If a run is already in progress.
            ServerStartError: If the binary could not be spawned.
        """
        if self._state not in (ProcessState.OFFLINE, ProcessState.CRASHED):
            msg = f"Cannot start server in state: {self._state}"
            raise ServerStateError(msg, state=self._state)
        _ = self._require_task_group()

        self._reset_run()
        self._started_at = pendulum.now("UTC")
        await self._set_state(ProcessState.STARTING)

        argv = self._build_command()
        env = build_environment(self.server_dir)
        cwd = self.server_dir if self._command is None else None

        try:
            if self.config.detached:
                await self._spawn_detached(argv, env, cwd)
            else:
                await self._spawn_attached(argv, env, cwd)
        except OSError as e:
            self._started_at = None
            self._logger.error("server_spawn_failed", argv=argv, error=str(e))
            await self._set_state(ProcessState.OFFLINE)
            msg = f"Failed to start server '{self.config.name}': {e}"
            raise ServerStartError(msg, server_name=self.config.name, cause=e) from e

    async def stop(self, timeout: float | None = None) -> None:
        """Stop the server gracefully.

        Sends a terminate signal and waits up to ``timeout`` seconds before
        force-killing. Never classified as a crash.

        Args:
            timeout: Grace period. Defaults to the configured stop timeout.

        Raises:
            ServerStopError: If an external server survives a force kill.
        """
        if self._state not in _RUNNING_STATES:
            return

        self._operator_stop = True
        await self._set_state(ProcessState.STOPPING)
        grace = timeout if timeout is not None else self._stop_timeout

        if self._process is not None:
            await self._terminate_child(self._process, grace)
        elif self._external_pid is not None:
            await self._terminate_external(self._external_pid, grace)

        await self._finish_run()

    async def kill(self) -> None:
        """Force-kill the server immediately."""
        if self._process is None and self._external_pid is None:
            await self._set_state(ProcessState.OFFLINE)
            return

        self._operator_stop = True
        if self._process is not None:
            process = self._process
            try:
                process.kill()
            except ProcessLookupError:
                pass
            self._exit_code = await process.wait()
        elif self._external_pid is not None:
            _ = kill_process(self._external_pid, force=True)

        await self._finish_run()

    async def attach(self, record: ProcessHandleRecord) -> bool:
        """Adopt an already-running server described by a handle record.

        The process is checked for liveness first. When alive, the tail of its log file is
        replayed to re-derive the lifecycle state, then new output is
        followed and liveness is polled until it exits.

        Args:
            record: The running server's handle record.

        Returns:
            True if attached, False if the process was already gone (its
            record is deleted).

        Raises:
            ServerStateError: If this wrapper is already supervising a run.
        """
        if self._state not in (ProcessState.OFFLINE, ProcessState.CRASHED):
            msg = f"Cannot attach in state: {self._state}"
            raise ServerStateError(msg, state=self._state)
        _ = self._require_task_group()

        if not is_process_alive(record.pid):
            self._logger.info("attach_target_dead", pid=record.pid)
            await self.handle_store.remove()
            return False

        self._reset_run()
        self._external_pid = record.pid
        self._record = record
        self._started_at = pendulum.parse(record.started_at)  # pyright: ignore[reportAttributeAccessIssue]

        derived = ProcessState.ONLINE
        tailer: LogTailer | None = None
        if record.log_file:
            self._log_path = Path(record.log_file)
            derived = await self._replay(self._log_path)
            tailer = LogTailer(
                self._log_path,
                self._handle_line,
                poll_interval=self._tail_interval,
                logger=self._logger,
            )
            await tailer.seek_to_end()
            self._tailer = tailer

        self._logger.info("server_attached", pid=record.pid, state=str(derived))
        await self._set_state(derived)

        if tailer is not None:
            self._start_follow(functools.partial(tailer.run, from_end=False))
        self._start_monitor(self._watch_external, record.pid, self._generation)
        return True

    async def detach(self) -> None:
        """Stop following the server without terminating it.

        The handle record stays on disk so a later supervisor can attach.

        Raises:
            ServerStateError: If the server runs attached to our pipes.
        """
        if self._process is None and self._external_pid is None:
            return
        if self._process is not None and not self.config.detached:
            msg = "Only a detached server can be left running"
            raise ServerStateError(msg, state=self._state)

        self._generation += 1
        self._cancel(self._follow_scopes)
        self._cancel(self._monitor_scopes)
        self._process = None
        self._child = None
        self._external_pid = None
        self._tailer = None
        self._started_at = None
        self._logger.info("server_detached", record_pid=self._record.pid if self._record else None)
        await self._set_state(ProcessState.OFFLINE)

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def _build_command(self) -> list[str]:
        if self._command is not None:
            return list(self._command)
        return [str(get_server_executable(self.server_dir)), *build_args(self.config)]

    async def _spawn_attached(
        self, argv: list[str], env: dict[str, str], cwd: Path | None
    ) -> None:
        process = await anyio.open_process(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            env=env,
        )
        self._process = process
        self._logger.info("server_spawned", pid=process.pid, detached=False)
        self._start_monitor(self._pump_output, process, self._generation)

    async def _spawn_detached(
        self, argv: list[str], env: dict[str, str], cwd: Path | None
    ) -> None:
        log_path = await prepare_server_log_file(self._log_dir)
        tailer = LogTailer(
            log_path,
            self._handle_line,
            poll_interval=self._tail_interval,
            logger=self._logger,
        )
        await tailer.seek_to_end()

        with log_path.open("ab") as log_file:
            child = await anyio.to_thread.run_sync(
                functools.partial(
                    subprocess.Popen,
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    cwd=cwd,
                    env=env,
                    start_new_session=True,
                )
            )

        record = ProcessHandleRecord(
            pid=child.pid,
            started_at=pendulum.now("UTC").to_iso8601_string(),
            world=self.config.world,
            port=self.config.port,
            log_file=str(log_path),
            detached=True,
            server_name=self.config.name,
        )
        try:
            await self.handle_store.write(record)
        except OSError:
            child.kill()
            _ = await anyio.to_thread.run_sync(child.wait)
            raise

        self._child = child
        self._external_pid = child.pid
        self._record = record
        self._tailer = tailer
        self._log_path = log_path
        self._logger.info("server_spawned", pid=child.pid, detached=True, log_file=str(log_path))
        self._start_follow(functools.partial(tailer.run, from_end=False))
        self._start_monitor(self._wait_detached, child, self._generation)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _require_task_group(self) -> anyio.abc.TaskGroup:
        if self._task_group is None:
            msg = "GameServerProcess must be used as an async context manager"
            raise ServerStateError(msg, state=self._state)
        return self._task_group

    def _start_background(
        self,
        scopes: list[anyio.CancelScope],
        func: Callable[..., Awaitable[None]],
        *args: object,
    ) -> None:
        scope = anyio.CancelScope()
        scopes.append(scope)

        async def runner() -> None:
            try:
                with scope:
                    await func(*args)
            finally:
                if scope in scopes:
                    scopes.remove(scope)

        self._require_task_group().start_soon(runner)

    def _start_follow(self, func: Callable[..., Awaitable[None]], *args: object) -> None:
        self._start_background(self._follow_scopes, func, *args)

    def _start_monitor(self, func: Callable[..., Awaitable[None]], *args: object) -> None:
        self._start_background(self._monitor_scopes, func, *args)

    @staticmethod
    def _cancel(scopes: list[anyio.CancelScope]) -> None:
        for scope in tuple(scopes):
            scope.cancel()
        scopes.clear()

    async def _pump_output(self, process: anyio.abc.Process, generation: int) -> None:
        splitter = LineSplitter()
        try:
            if process.stdout is not None:
                async for chunk in process.stdout:
                    for line in splitter.feed(chunk):
                        await self._handle_line(line)
                trailing = splitter.flush()
                if trailing is not None:
                    await self._handle_line(trailing)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            self._logger.warning("server_output_failed", pid=process.pid, error=str(e))
            if process.returncode is None:
                process.kill()

        code = await process.wait()
        await self._handle_exit(code, generation)

    async def _wait_detached(self, child: "subprocess.Popen[bytes]", generation: int) -> None:
        while (code := child.poll()) is None:
            await anyio.sleep(self._tail_interval)
        if self._tailer is not None and generation == self._generation:
            _ = await self._tailer.poll()
        await self._handle_exit(code, generation)

    async def _watch_external(self, pid: int, generation: int) -> None:
        while is_process_alive(pid):
            await anyio.sleep(self._liveness_interval)
        if self._tailer is not None and generation == self._generation:
            _ = await self._tailer.poll()
        await self._handle_exit(None, generation)

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    async def _handle_line(self, line: str) -> None:
        if not line.strip():
            return
        entry = self.buffer.add(line)
        await self.observers.on_log(entry)

        event = parse_event(line)
        if event is not None:
            await self._handle_event(event)

    async def _handle_event(self, event: ServerEvent) -> None:
        await self.observers.on_event(event)

        if isinstance(event, PlayerJoinEvent):
            await self.observers.on_player_join(event.name)
        elif isinstance(event, PlayerLeaveEvent):
            await self.observers.on_player_leave(event.name)
        elif isinstance(event, StartupPhaseEvent):
            self._phase = event.phase
        elif isinstance(event, ServerReadyEvent):
            self._phase = StartupPhase.READY
            if self._state == ProcessState.STARTING:
                await self._set_state(ProcessState.ONLINE)
        elif isinstance(event, ServerShutdownEvent):
            self._shutdown_seen = True
        elif isinstance(event, ErrorEvent):
            await self.observers.on_error(ServerError(event.message))

    async def _replay(self, log_path: Path) -> ProcessState:
        """Re-derive the lifecycle state from the tail of a log file."""
        derived = ProcessState.STARTING
        for line in await read_last_lines(log_path, REPLAY_LINE_COUNT):
            _ = self.buffer.add(line)
            event = parse_event(line)
            if isinstance(event, StartupPhaseEvent):
                # Startup phases only appear while a run is coming up.
                derived = ProcessState.STARTING
                self._phase = event.phase
                self._shutdown_seen = False
            elif isinstance(event, ServerReadyEvent):
                derived = ProcessState.ONLINE
                self._phase = StartupPhase.READY
            elif isinstance(event, ServerShutdownEvent):
                self._shutdown_seen = True
        return derived

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _reset_run(self) -> None:
        self._generation += 1
        self._operator_stop = False
        self._shutdown_seen = False
        self._phase = StartupPhase.IDLE
        self._exit_code = None
        self._record = None
        self._tailer = None
        self._log_path = None

    async def _set_state(self, state: ProcessState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        self._logger.info("server_state_changed", state=str(state), previous=str(previous))

        if self._state_event is not None:
            self._state_event.set()
            self._state_event = None

        await self.observers.on_state_change(state)

    async def _handle_exit(self, code: int | None, generation: int) -> None:
        if generation != self._generation or self._operator_stop:
            return

        self._exit_code = code
        self._process = None
        self._child = None
        external_pid, self._external_pid = self._external_pid, None
        self._cancel(self._follow_scopes)
        if self._record is not None:
            await self.handle_store.remove()
            self._record = None

        previous = self._state
        if previous not in _RUNNING_STATES:
            return
        self._started_at = None

        if self._shutdown_seen and code in (0, None):
            self._logger.info("server_exited", exit_code=code)
            await self._set_state(ProcessState.OFFLINE)
            return

        self._logger.warning("server_crashed", exit_code=code, previous=str(previous))
        await self._set_state(ProcessState.CRASHED)

        if code is None:
            msg = f"Server process {external_pid} is no longer running"
        elif previous == ProcessState.STARTING:
            msg = f"Server failed to start (exit code {code})"
        else:
            msg = f"Server exited with code {code}"
        await self.observers.on_error(ServerError(msg))

    async def _finish_run(self) -> None:
        if self._tailer is not None:
            _ = await self._tailer.poll()
        if self._child is not None:
            self._exit_code = self._child.poll()
            self._child = None
        self._cancel(self._follow_scopes)
        if self._record is not None:
            await self.handle_store.remove()
            self._record = None
        self._process = None
        self._external_pid = None
        self._tailer = None
        self._started_at = None
        await self._set_state(ProcessState.OFFLINE)

    async def _terminate_child(self, process: anyio.abc.Process, grace: float) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass

        with anyio.move_on_after(grace):
            _ = await process.wait()

        if process.returncode is None:
            self._logger.warning("server_stop_timeout", pid=process.pid, grace=grace)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            _ = await process.wait()

        self._exit_code = process.returncode

    async def _terminate_external(self, pid: int, grace: float) -> None:
        _ = kill_process(pid)
        with anyio.move_on_after(grace):
            while is_process_alive(pid):
                await anyio.sleep(0.2)

        if not is_process_alive(pid):
            return

        self._logger.warning("server_stop_timeout", pid=pid, grace=grace)
        _ = kill_process(pid, force=True)
        with anyio.move_on_after(5.0):
            while is_process_alive(pid):
                await anyio.sleep(0.2)

        if is_process_alive(pid):
            msg = f"Server process {pid} survived a force kill"
            raise ServerStopError(msg, pid=pid)
