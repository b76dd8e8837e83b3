"""Observer base class and isolating fan-out."""

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, final

from valheim_dsm.utils._logging import component_logger

from ._logs import LogEntry, ServerEvent  # noqa: TC001
from ._models import ProcessState  # noqa: TC001
from ._protocol import ServerObserver  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


class BaseServerObserver:
    """Observer with every callback a no-op. Subclass and override."""

    async def on_state_change(self, state: ProcessState) -> None:
        return None

    async def on_log(self, entry: LogEntry) -> None:
        return None

    async def on_event(self, event: ServerEvent) -> None:
        return None

    async def on_player_join(self, name: str) -> None:
        return None

    async def on_player_leave(self, name: str) -> None:
        return None

    async def on_error(self, error: Exception) -> None:
        return None

    async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
        return None

    async def on_watchdog_max_restarts(self) -> None:
        return None


@final
class ObserverSet:
    """Delivers each notification to every registered observer in order.

    An observer that raises is logged and skipped; it never prevents
    delivery to the observers after it and never propagates into the
    component that emitted the notification. ObserverSet itself satisfies
    the ServerObserver protocol, so sets can be nested.
    """

    __slots__ = ("_logger", "_observers")

    def __init__(
        self,
        observers: Iterable[ServerObserver] = (),
        *,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        self._observers: list[ServerObserver] = list(observers)
        self._logger = component_logger(logger, "observers")

    def __len__(self) -> int:
        return len(self._observers)

    def add(self, observer: ServerObserver) -> None:
        """Register an observer. Registration order is delivery order."""
        self._observers.append(observer)

    def remove(self, observer: ServerObserver) -> None:
        """Unregister an observer if present."""
        if observer in self._observers:
            self._observers.remove(observer)

    async def _dispatch(
        self,
        name: str,
        call: Callable[[ServerObserver], Awaitable[None]],
    ) -> None:
        for observer in tuple(self._observers):
            try:
                await call(observer)
            except Exception:
                self._logger.exception("observer_failed", callback=name, observer=repr(observer))

    async def on_state_change(self, state: ProcessState) -> None:
        await self._dispatch("on_state_change", lambda o: o.on_state_change(state))

    async def on_log(self, entry: LogEntry) -> None:
        await self._dispatch("on_log", lambda o: o.on_log(entry))

    async def on_event(self, event: ServerEvent) -> None:
        await self._dispatch("on_event", lambda o: o.on_event(event))

    async def on_player_join(self, name: str) -> None:
        await self._dispatch("on_player_join", lambda o: o.on_player_join(name))

    async def on_player_leave(self, name: str) -> None:
        await self._dispatch("on_player_leave", lambda o: o.on_player_leave(name))

    async def on_error(self, error: Exception) -> None:
        await self._dispatch("on_error", lambda o: o.on_error(error))

    async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
        await self._dispatch(
            "on_watchdog_restart",
            lambda o: o.on_watchdog_restart(attempt, max_attempts),
        )

    async def on_watchdog_max_restarts(self) -> None:
        await self._dispatch("on_watchdog_max_restarts", lambda o: o.on_watchdog_max_restarts())
