"""Game server supervision.

Key Components:
    - parse_line / parse_event: Classify server output into entries and events
    - LogBuffer: Bounded pub/sub buffer of recent output
    - ProcessHandleStore: Persisted "a server is running" record and OS process checks
    - AccessLists: Admin, ban and permitted player list files
    - GameServerProcess: Lifecycle state machine around the server binary
    - Watchdog: Crash-restart policy around a GameServerProcess
    - ConsoleServerObserver: Rich console rendering of notifications

Example:
    >>> from valheim_dsm.server import GameServerProcess, LaunchConfig, Watchdog
    >>> process = GameServerProcess(LaunchConfig(world="Midgard"))
    >>> async with Watchdog(process) as watchdog:
    ...     await watchdog.start()
    ...     await process.wait_for_state(ProcessState.ONLINE)
"""

from ._backoff import ExponentialBackoff
from ._buffer import DEFAULT_CAPACITY, LogBuffer, LogSubscriber
from ._handle import (
    DEFAULT_GAME_PORT,
    ProcessHandleRecord,
    ProcessHandleStore,
    find_processes_by_name,
    is_process_alive,
    kill_process,
)
from ._lists import AccessList, AccessLists, is_valid_steam_id, parse_list
from ._logfiles import (
    LOG_FILE_PREFIX,
    LineSplitter,
    LogTailer,
    cleanup_old_logs,
    prepare_server_log_file,
    read_last_lines,
    server_log_file_name,
)
from ._logs import (
    ErrorEvent,
    EventType,
    LogEntry,
    LogLevel,
    PlayerJoinEvent,
    PlayerLeaveEvent,
    ServerEvent,
    ServerReadyEvent,
    ServerShutdownEvent,
    StartupPhase,
    StartupPhaseEvent,
    WorldGeneratedEvent,
    WorldSavedEvent,
    parse_event,
    parse_line,
)
from ._models import (
    CombatModifier,
    DeathPenalty,
    LaunchConfig,
    PortalMode,
    Preset,
    ProcessState,
    ResourceModifier,
    WatchdogPolicy,
    WorldModifiers,
    build_args,
    build_environment,
)
from ._observers import BaseServerObserver, ObserverSet
from ._output import ConsoleServerObserver
from ._process import GameServerProcess
from ._protocol import ServerObserver
from ._watchdog import Watchdog

__all__ = [
    "AccessList",
    "AccessLists",
    "DEFAULT_CAPACITY",
    "DEFAULT_GAME_PORT",
    "LOG_FILE_PREFIX",
    "BaseServerObserver",
    "CombatModifier",
    "ConsoleServerObserver",
    "DeathPenalty",
    "ErrorEvent",
    "EventType",
    "ExponentialBackoff",
    "GameServerProcess",
    "LaunchConfig",
    "LineSplitter",
    "LogBuffer",
    "LogEntry",
    "LogLevel",
    "LogSubscriber",
    "LogTailer",
    "ObserverSet",
    "PlayerJoinEvent",
    "PlayerLeaveEvent",
    "PortalMode",
    "Preset",
    "ProcessHandleRecord",
    "ProcessHandleStore",
    "ProcessState",
    "ResourceModifier",
    "ServerEvent",
    "ServerObserver",
    "ServerReadyEvent",
    "ServerShutdownEvent",
    "StartupPhase",
    "StartupPhaseEvent",
    "Watchdog",
    "WatchdogPolicy",
    "WorldGeneratedEvent",
    "WorldModifiers",
    "WorldSavedEvent",
    "build_args",
    "build_environment",
    "cleanup_old_logs",
    "find_processes_by_name",
    "is_process_alive",
    "is_valid_steam_id",
    "kill_process",
    "parse_event",
    "parse_list",
    "parse_line",
    "prepare_server_log_file",
    "read_last_lines",
    "server_log_file_name",
]
