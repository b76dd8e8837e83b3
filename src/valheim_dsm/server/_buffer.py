"""Bounded in-memory log buffer with synchronous subscriber fan-out."""

from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, final

from valheim_dsm.utils._logging import component_logger

from ._logs import LogEntry, LogLevel, parse_line

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_CAPACITY = 1000

type LogSubscriber = Callable[[LogEntry], None]


@final
class LogBuffer:
    """FIFO of the most recent parsed log entries.

    Adding a line parses it, appends it, evicts the oldest entry when the
    buffer is over capacity and notifies every subscriber before returning.
    A subscriber that raises is logged and skipped; later subscribers still
    see the entry.

    Attributes:
        capacity: Maximum number of retained entries.
    """

    __slots__ = ("_entries", "_logger", "_subscribers", "capacity")

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize an empty buffer.

        Args:
            capacity: Maximum number of entries to retain. Must be positive.
            logger: Logger for subscriber failures.

        Raises:
            ValueError: If capacity is not positive.
        """
        if capacity < 1:
            msg = f"Log buffer capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._subscribers: list[LogSubscriber] = []
        self._logger = component_logger(logger, "log_buffer")

    @property
    def size(self) -> int:
        """Return the number of retained entries."""
        return len(self._entries)

    def add(self, raw: str) -> LogEntry:
        """Parse a raw line, store it and notify subscribers.

        Args:
            raw: A line of server output.

        Returns:
            The parsed entry.
        """
        entry = parse_line(raw)
        self._entries.append(entry)

        for subscriber in tuple(self._subscribers):
            try:
                subscriber(entry)
            except Exception:
                self._logger.exception("log_subscriber_failed", subscriber=repr(subscriber))

        return entry

    def subscribe(self, subscriber: LogSubscriber) -> Callable[[], None]:
        """Register a callback for every future entry.

        Args:
            subscriber: Called synchronously with each new entry.

        Returns:
            A function that removes the subscription. Calling it twice is
            harmless.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def get_all(self) -> list[LogEntry]:
        """Return a copy of all retained entries, oldest first."""
        return list(self._entries)

    def get_filtered(self, level: LogLevel) -> list[LogEntry]:
        """Return retained entries at exactly the given level."""
        return [entry for entry in self._entries if entry.level == level]

    def get_recent(self, count: int) -> list[LogEntry]:
        """Return up to ``count`` newest entries, oldest first."""
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def clear(self) -> None:
        """Drop every retained entry. Subscribers stay registered."""
        self._entries.clear()
