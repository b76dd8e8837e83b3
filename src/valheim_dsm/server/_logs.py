"""Parsing of dedicated server output into log entries and events.

Every line the server prints goes through two pure functions:
``parse_line`` classifies it into a :class:`LogEntry` and ``parse_event``
runs it through an ordered matcher table that yields at most one typed
event. Neither function has side effects, so both are safe to call from
the output pump, from the detached-mode tailer and from log replay.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, final

import pendulum


class LogLevel(StrEnum):
    """Severity inferred from a line of server output."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class StartupPhase(StrEnum):
    """Coarse startup progress derived from well-known log lines."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    LOADING_WORLD = "loading_world"
    GENERATING_WORLD = "generating_world"
    CREATING_LOCATIONS = "creating_locations"
    STARTING_SERVER = "starting_server"
    REGISTERING_LOBBY = "registering_lobby"
    READY = "ready"


class EventType(StrEnum):
    """Discriminator for the :data:`ServerEvent` union."""

    PLAYER_JOIN = "player_join"
    PLAYER_LEAVE = "player_leave"
    WORLD_SAVED = "world_saved"
    WORLD_GENERATED = "world_generated"
    SERVER_READY = "server_ready"
    SERVER_SHUTDOWN = "server_shutdown"
    STARTUP_PHASE = "startup_phase"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class LogEntry:
    """A single classified line of server output.

    Attributes:
        timestamp: Capture time, not the clock embedded in the line.
        level: Inferred severity.
        message: Trimmed text with any server timestamp prefix removed.
        raw: The line exactly as received.
    """

    timestamp: pendulum.DateTime
    level: LogLevel
    message: str
    raw: str


@dataclass(frozen=True, slots=True)
class PlayerJoinEvent:
    name: str
    type: EventType = field(default=EventType.PLAYER_JOIN, init=False)


@dataclass(frozen=True, slots=True)
class PlayerLeaveEvent:
    name: str
    type: EventType = field(default=EventType.PLAYER_LEAVE, init=False)


@dataclass(frozen=True, slots=True)
class WorldSavedEvent:
    type: EventType = field(default=EventType.WORLD_SAVED, init=False)


@dataclass(frozen=True, slots=True)
class WorldGeneratedEvent:
    type: EventType = field(default=EventType.WORLD_GENERATED, init=False)


@dataclass(frozen=True, slots=True)
class ServerReadyEvent:
    type: EventType = field(default=EventType.SERVER_READY, init=False)


@dataclass(frozen=True, slots=True)
class ServerShutdownEvent:
    type: EventType = field(default=EventType.SERVER_SHUTDOWN, init=False)


@dataclass(frozen=True, slots=True)
class StartupPhaseEvent:
    phase: StartupPhase
    type: EventType = field(default=EventType.STARTUP_PHASE, init=False)


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    type: EventType = field(default=EventType.ERROR, init=False)


type ServerEvent = (
    PlayerJoinEvent
    | PlayerLeaveEvent
    | WorldSavedEvent
    | WorldGeneratedEvent
    | ServerReadyEvent
    | ServerShutdownEvent
    | StartupPhaseEvent
    | ErrorEvent
)

# "02/15/2024 12:34:56: Message"
_TIMESTAMP_PREFIX: Final = re.compile(r"^(\d{2}/\d{2}/\d{4} \d{2}:\d{2}:\d{2}): (.*)$")
_PLAYER_JOIN: Final = re.compile(r"Got character ZDOID from (\S+)")


@final
class _NoEvent:
    """Result of a matcher that claims a line without producing an event."""

    __slots__ = ()


NO_EVENT: Final = _NoEvent()

type MatchResult = ServerEvent | _NoEvent | None
type Matcher = Callable[[str], MatchResult]

_LEVEL_MARKERS: Final[tuple[tuple[tuple[str, ...], LogLevel], ...]] = (
    (("error", "exception"), LogLevel.ERROR),
    (("warn",), LogLevel.WARN),
    (("debug",), LogLevel.DEBUG),
)


def _strip_timestamp(line: str) -> str:
    match = _TIMESTAMP_PREFIX.match(line)
    if match:
        return match.group(2)
    return line


def parse_line(raw: str) -> LogEntry:
    """Classify one line of server output.

    Args:
        raw: The line as received, without its trailing newline.

    Returns:
        A log entry. Blank lines yield an empty INFO entry.
    """
    stripped = raw.strip()
    message = _strip_timestamp(stripped).strip()

    lowered = message.lower()
    level = LogLevel.INFO
    for markers, candidate in _LEVEL_MARKERS:
        if any(marker in lowered for marker in markers):
            level = candidate
            break

    return LogEntry(
        timestamp=pendulum.now("UTC"),
        level=level,
        message=message,
        raw=raw,
    )


def _match_player_join(line: str) -> MatchResult:
    match = _PLAYER_JOIN.search(line)
    if match:
        return PlayerJoinEvent(name=match.group(1))
    return None


def _contains(needles: tuple[str, ...], event: ServerEvent | _NoEvent) -> Matcher:
    def matcher(line: str) -> MatchResult:
        if any(needle in line for needle in needles):
            return event
        return None

    return matcher


def _match_error(line: str) -> MatchResult:
    if "Error!" in line or "FAILED" in line or "Exception:" in line:
        return ErrorEvent(message=line.strip())
    return None


def _phase(*needles: str, phase: StartupPhase) -> Matcher:
    return _contains(needles, StartupPhaseEvent(phase=phase))


# Order matters: the first matcher that returns an event wins.
EVENT_MATCHERS: Final[tuple[Matcher, ...]] = (
    _match_player_join,
    # Socket closes name an address, never a player.
    _contains(("Closing socket",), NO_EVENT),
    _contains(("World saved",), WorldSavedEvent()),
    _contains(("Done generating locations",), WorldGeneratedEvent()),
    _contains(("Game server connected",), ServerReadyEvent()),
    _contains(("OnApplicationQuit",), ServerShutdownEvent()),
    _phase("DungeonDB Start", phase=StartupPhase.INITIALIZING),
    _phase("Load world", "Loading world data", phase=StartupPhase.LOADING_WORLD),
    _phase("Generating locations, please wait", phase=StartupPhase.GENERATING_WORLD),
    _phase(
        "Placing locations",
        "Failed to place all locations",
        phase=StartupPhase.CREATING_LOCATIONS,
    ),
    _phase("ZDOMan initialization", "Zonesystem Start", phase=StartupPhase.STARTING_SERVER),
    _phase("Registering lobby", phase=StartupPhase.REGISTERING_LOBBY),
    _match_error,
)


def parse_event(raw: str) -> ServerEvent | None:
    """Detect a lifecycle or domain event in one line of server output.

    Socket-level disconnect lines carry an address but no player name, so
    they deliberately produce no event.

    Args:
        raw: The line as received.

    Returns:
        The first matching event, or None.
    """
    for matcher in EVENT_MATCHERS:
        result = matcher(raw)
        if isinstance(result, _NoEvent):
            return None
        if result is not None:
            return result
    return None
