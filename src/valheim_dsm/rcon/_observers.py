"""Observer protocol and fan-out for RCON session notifications."""

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Protocol, final, runtime_checkable

from valheim_dsm.utils._logging import component_logger

from ._models import ConnectionState  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


@runtime_checkable
class RconObserver(Protocol):
    """Receiver of RCON session notifications."""

    async def on_connection_state_change(self, state: ConnectionState) -> None:
        """Called when the session's connection state changes."""
        ...

    async def on_player_list(self, players: list[str]) -> None:
        """Called with the full player list after every successful poll."""
        ...

    async def on_player_join(self, name: str) -> None:
        """Called for each name that appeared since the previous poll."""
        ...

    async def on_player_leave(self, name: str) -> None:
        """Called for each name that disappeared since the previous poll."""
        ...


class BaseRconObserver:
    """RCON observer with every callback a no-op."""

    async def on_connection_state_change(self, state: ConnectionState) -> None:
        return None

    async def on_player_list(self, players: list[str]) -> None:
        return None

    async def on_player_join(self, name: str) -> None:
        return None

    async def on_player_leave(self, name: str) -> None:
        return None


@final
class RconObserverSet:
    """Ordered RCON observers; a raising observer is logged and skipped."""

    __slots__ = ("_logger", "_observers")

    def __init__(
        self,
        observers: Iterable[RconObserver] = (),
        *,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        self._observers: list[RconObserver] = list(observers)
        self._logger = component_logger(logger, "rcon_observers")

    def __len__(self) -> int:
        return len(self._observers)

    def add(self, observer: RconObserver) -> None:
        self._observers.append(observer)

    def remove(self, observer: RconObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def _dispatch(self, name: str, call: Callable[[RconObserver], Awaitable[None]]) -> None:
        for observer in tuple(self._observers):
            try:
                await call(observer)
            except Exception:
                self._logger.exception("observer_failed", callback=name, observer=repr(observer))

    async def on_connection_state_change(self, state: ConnectionState) -> None:
        await self._dispatch("on_connection_state_change", lambda o: o.on_connection_state_change(state))

    async def on_player_list(self, players: list[str]) -> None:
        await self._dispatch("on_player_list", lambda o: o.on_player_list(players))

    async def on_player_join(self, name: str) -> None:
        await self._dispatch("on_player_join", lambda o: o.on_player_join(name))

    async def on_player_leave(self, name: str) -> None:
        await self._dispatch("on_player_leave", lambda o: o.on_player_leave(name))
