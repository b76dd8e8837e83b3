"""Console rendering of server notifications."""

from typing import final

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._logs import EventType, LogEntry, LogLevel, ServerEvent  # noqa: TC001
from ._models import ProcessState

_PREFIX_STYLE = Style(color="blue", bold=True)
_WATCHDOG_PREFIX_STYLE = Style(color="magenta", bold=True)


@final
class ConsoleServerObserver:
    """Observer that prints server activity to a rich console.

    Output lines are prefixed ``[server]`` and colored by inferred level.
    State changes and watchdog decisions get their own styling.
    """

    __slots__ = ("_console", "_level_styles", "_show_logs", "_state_styles")

    def __init__(self, console: Console | None = None, *, show_logs: bool = True) -> None:
        """Initialize the observer.

        Args:
            console: Rich Console for output. A new one if None.
            show_logs: Print every output line, not only notable events.
        """
        self._console = console or Console()
        self._show_logs = show_logs
        self._level_styles: dict[LogLevel, Style] = {
            LogLevel.DEBUG: Style(dim=True),
            LogLevel.INFO: Style(),
            LogLevel.WARN: Style(color="yellow"),
            LogLevel.ERROR: Style(color="red"),
        }
        self._state_styles: dict[ProcessState, Style] = {
            ProcessState.OFFLINE: Style(color="yellow"),
            ProcessState.STARTING: Style(color="cyan"),
            ProcessState.ONLINE: Style(color="green", bold=True),
            ProcessState.STOPPING: Style(color="yellow", dim=True),
            ProcessState.CRASHED: Style(color="red", bold=True),
        }

    def _print(self, prefix: str, body: str, style: Style, *, prefix_style: Style = _PREFIX_STYLE) -> None:
        text = Text()
        _ = text.append(prefix, style=prefix_style)
        _ = text.append(" ")
        _ = text.append(body, style=style)
        self._console.print(text)

    async def on_state_change(self, state: ProcessState) -> None:
        self._print("[server]", f"State: {state.value.upper()}", self._state_styles[state])

    async def on_log(self, entry: LogEntry) -> None:
        if self._show_logs:
            self._print("[server]", entry.message, self._level_styles[entry.level])

    async def on_event(self, event: ServerEvent) -> None:
        if event.type in (EventType.WORLD_SAVED, EventType.WORLD_GENERATED):
            self._print("[server]", event.type.value.replace("_", " ").capitalize(), Style(color="green"))

    async def on_player_join(self, name: str) -> None:
        self._print("[server]", f"Player joined: {name}", Style(color="green"))

    async def on_player_leave(self, name: str) -> None:
        self._print("[server]", f"Player left: {name}", Style(color="yellow"))

    async def on_error(self, error: Exception) -> None:
        self._print("[server]", f"Error: {error}", Style(color="red", bold=True))

    async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
        self._print(
            "[watchdog]",
            f"Restarting server (attempt {attempt}/{max_attempts})",
            Style(color="cyan"),
            prefix_style=_WATCHDOG_PREFIX_STYLE,
        )

    async def on_watchdog_max_restarts(self) -> None:
        self._print(
            "[watchdog]",
            "Max restarts exceeded. Server will not be restarted.",
            Style(color="red", bold=True),
            prefix_style=_WATCHDOG_PREFIX_STYLE,
        )
