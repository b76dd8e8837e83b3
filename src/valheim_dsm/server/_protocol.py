"""Observer protocol for game server supervision.

Observers receive everything the process wrapper and the watchdog report:
state transitions, raw output, player movement, parsed domain events,
fatal errors and restart-policy decisions. All callbacks are async so an
observer can do I/O (write to a console, push to a UI) without blocking
the output pump.
"""

from typing import Protocol, runtime_checkable

from ._logs import LogEntry, ServerEvent  # noqa: TC001
from ._models import ProcessState  # noqa: TC001


@runtime_checkable
class ServerObserver(Protocol):
    """Protocol for consumers of server lifecycle notifications."""

    async def on_state_change(self, state: ProcessState) -> None:
        """Handle a process state transition."""
        ...

    async def on_log(self, entry: LogEntry) -> None:
        """Handle one line of server output, already classified."""
        ...

    async def on_event(self, event: ServerEvent) -> None:
        """Handle any event parsed from server output."""
        ...

    async def on_player_join(self, name: str) -> None:
        """Handle a player joining."""
        ...

    async def on_player_leave(self, name: str) -> None:
        """Handle a player leaving."""
        ...

    async def on_error(self, error: Exception) -> None:
        """Handle a fatal or reported server error."""
        ...

    async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
        """Handle a scheduled automatic restart."""
        ...

    async def on_watchdog_max_restarts(self) -> None:
        """Handle exhaustion of the restart policy."""
        ...
