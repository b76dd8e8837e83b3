"""Crash-restart policy around a GameServerProcess.

The watchdog is the only component that reacts to a ``crashed``
transition. Restarts are counted within a sliding cooldown window and
delayed with exponential backoff; once the count passes the policy's
maximum, a max-restarts notification is raised and nothing restarts until
an operator intervenes.
"""

from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from types import TracebackType
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc

from valheim_dsm.exceptions import (
    ServerAlreadyRunningError,
    ServerError,
    ServerStartError,
    ServerStateError,
)
from valheim_dsm.utils._logging import component_logger

from ._backoff import ExponentialBackoff
from ._handle import ProcessHandleRecord  # noqa: TC001
from ._models import ProcessState, WatchdogPolicy
from ._observers import BaseServerObserver
from ._process import GameServerProcess  # noqa: TC001
from ._protocol import ServerObserver  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


class _CrashListener(BaseServerObserver):
    __slots__ = ("_watchdog",)

    def __init__(self, watchdog: "Watchdog") -> None:
        self._watchdog = watchdog

    async def on_state_change(self, state: ProcessState) -> None:
        await self._watchdog._on_state_change(state)  # noqa: SLF001


@final
class Watchdog:
    """Restarts a crashed server according to a WatchdogPolicy.

    Use as an async context manager; entering it also enters the wrapped
    process. Observers passed here are registered on the process ahead of
    the watchdog's own listener, so they see a ``crashed`` transition
    before the restart notification it triggers.

    Attributes:
        process: The supervised server process, owned for the watchdog's
            lifetime.
        policy: The active restart policy.
    """

    __slots__ = (
        "_backoff",
        "_clock",
        "_exit_stack",
        "_last_crash",
        "_logger",
        "_manual_stop",
        "_restart_count",
        "_restart_pending",
        "_restart_scope",
        "_task_group",
        "policy",
        "process",
    )

    def __init__(
        self,
        process: GameServerProcess,
        policy: WatchdogPolicy | None = None,
        *,
        observers: Iterable[ServerObserver] = (),
        clock: Callable[[], float] | None = None,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the watchdog.

        Args:
            process: The process to supervise.
            policy: Restart policy. Defaults to WatchdogPolicy().
            observers: Observers to register on the process.
            clock: Monotonic clock in seconds. Defaults to the event loop
                clock.
            logger: Base logger.
        """
        self.process = process
        self.policy = policy if policy is not None else WatchdogPolicy()
        self._backoff = self._make_backoff(self.policy)
        self._clock = clock if clock is not None else anyio.current_time
        self._logger = component_logger(logger, "watchdog")

        self._restart_count = 0
        self._last_crash: float | None = None
        self._manual_stop = False
        self._restart_pending = False
        self._restart_scope: anyio.CancelScope | None = None
        self._task_group: anyio.abc.TaskGroup | None = None
        self._exit_stack: AsyncExitStack | None = None

        for observer in observers:
            process.observers.add(observer)
        process.observers.add(_CrashListener(self))

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as stack:
            _ = await stack.enter_async_context(self.process)
            self._task_group = await stack.enter_async_context(anyio.create_task_group())
            self._exit_stack = stack.pop_all()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        self._cancel_pending_restart()
        stack, self._exit_stack = self._exit_stack, None
        self._task_group = None
        if stack is None:
            return None
        return await stack.__aexit__(exc_type, exc, tb)

    @staticmethod
    def _make_backoff(policy: WatchdogPolicy) -> ExponentialBackoff:
        return ExponentialBackoff(
            base=policy.restart_delay_ms / 1000,
            max_delay=policy.max_delay_ms / 1000 if policy.max_delay_ms is not None else None,
            multiplier=policy.backoff_multiplier,
            jitter=policy.jitter,
        )

    @property
    def state(self) -> ProcessState:
        """Return the supervised process state."""
        return self.process.state

    @property
    def restart_count(self) -> int:
        """Return restarts counted in the current cooldown window."""
        return self._restart_count

    @property
    def enabled(self) -> bool:
        """Return whether crashes trigger restarts."""
        return self.policy.enabled

    @property
    def restart_pending(self) -> bool:
        """Return whether a restart is scheduled but has not run yet."""
        return self._restart_pending

    def update_policy(self, policy: WatchdogPolicy) -> None:
        """Replace the restart policy. Counters are kept."""
        self.policy = policy
        self._backoff = self._make_backoff(policy)

    def reset_restart_count(self) -> None:
        """Forget previous crashes."""
        self._restart_count = 0
        self._last_crash = None

    async def start(self) -> None:
        """Start the server and arm crash handling.

        Raises:
            ServerAlreadyRunningError: If this watchdog's server is active or
                restarting, or a live server is found through the handle
                record or an orphan scan.
            ServerStartError: If the binary could not be spawned.
        """
        if self.process.state in (ProcessState.STARTING, ProcessState.ONLINE, ProcessState.STOPPING):
            msg = f"Server is already {self.process.state}"
            raise ServerAlreadyRunningError(msg, pid=self.process.pid)
        if self._restart_pending:
            msg = "A restart is already scheduled"
            raise ServerAlreadyRunningError(msg)

        running = await self.process.handle_store.resolve_running_server()
        if running is not None:
            msg = f"A server is already running (pid {running.pid})"
            raise ServerAlreadyRunningError(msg, pid=running.pid)

        self._manual_stop = False
        await self.process.start()

    async def attach(self, record: ProcessHandleRecord) -> bool:
        """Adopt a running server and arm crash handling for it."""
        self._manual_stop = False
        return await self.process.attach(record)

    async def stop(self, timeout: float | None = None) -> None:
        """Disarm crash handling, cancel any pending restart and stop."""
        self._manual_stop = True
        self._cancel_pending_restart()
        await self.process.stop(timeout)

    async def kill(self) -> None:
        """Disarm crash handling, cancel any pending restart and kill."""
        self._manual_stop = True
        self._cancel_pending_restart()
        await self.process.kill()

    async def detach(self) -> None:
        """Leave a detached server running and stop supervising it."""
        self._manual_stop = True
        self._cancel_pending_restart()
        await self.process.detach()

    def _cancel_pending_restart(self) -> None:
        if self._restart_scope is not None:
            self._restart_scope.cancel()
            self._restart_scope = None
        self._restart_pending = False

    async def _on_state_change(self, state: ProcessState) -> None:
        if state == ProcessState.CRASHED:
            if self.policy.enabled and not self._manual_stop:
                await self._handle_crash()
        elif state == ProcessState.ONLINE:
            now = self._clock()
            if self._last_crash is None or (now - self._last_crash) * 1000 > self.policy.cooldown_period_ms:
                self._restart_count = 0

    async def _handle_crash(self) -> None:
        now = self._clock()
        if self._last_crash is None or (now - self._last_crash) * 1000 > self.policy.cooldown_period_ms:
            self._restart_count = 0
        self._last_crash = now
        self._restart_count += 1

        if self._restart_count > self.policy.max_restarts:
            self._logger.error(
                "watchdog_max_restarts",
                restarts=self._restart_count - 1,
                max_restarts=self.policy.max_restarts,
            )
            await self.process.observers.on_watchdog_max_restarts()
            return

        delay = self._backoff.delay(self._restart_count - 1)
        self._logger.warning(
            "watchdog_restart_scheduled",
            attempt=self._restart_count,
            max_restarts=self.policy.max_restarts,
            delay=delay,
        )
        await self.process.observers.on_watchdog_restart(self._restart_count, self.policy.max_restarts)

        if self._task_group is None:
            msg = "Watchdog must be used as an async context manager"
            raise ServerStateError(msg, state=self.process.state)
        self._cancel_pending_restart()
        self._restart_pending = True
        scope = anyio.CancelScope()
        self._restart_scope = scope
        self._task_group.start_soon(self._restart_after, delay, scope)

    async def _restart_after(self, delay: float, scope: anyio.CancelScope) -> None:
        with scope:
            await anyio.sleep(delay)
            if self._restart_scope is scope:
                self._restart_scope = None
            self._restart_pending = False
            if self._manual_stop:
                return
            try:
                await self.process.start()
            except (ServerStartError, ServerStateError) as e:
                self._logger.error("watchdog_restart_failed", error=str(e))
                await self.process.observers.on_error(ServerError(f"Restart failed: {e}"))
