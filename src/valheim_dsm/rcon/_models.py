"""Data models for RCON sessions.

- ConnectionState: Client/session connection states
- RconSettings: Connection and session parameters
- ValheimEvent / GlobalKey: Known identifiers for event and key commands
"""

from dataclasses import dataclass
from enum import StrEnum

DEFAULT_RCON_PORT = 25575


class ConnectionState(StrEnum):
    """RCON connection states.

    - DISCONNECTED: No socket, either never connected or closed on purpose
    - CONNECTING: TCP connect and authentication in progress
    - CONNECTED: Authenticated and ready for commands
    - ERROR: The last connection attempt or command failed
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class RconSettings:
    """Parameters for an RCON session.

    Attributes:
        host: Server host name or address.
        port: RCON port.
        password: Shared secret.
        timeout: Seconds allowed for connect, authentication and each
            command.
        enabled: Whether the session manager connects at all.
        auto_reconnect: Reconnect after an unexpected disconnect.
        poll_interval: Seconds between player list polls.
        reconnect_delay: Seconds between reconnect attempts.
    """

    host: str = "localhost"
    port: int = DEFAULT_RCON_PORT
    password: str = ""
    timeout: float = 5.0
    enabled: bool = False
    auto_reconnect: bool = True
    poll_interval: float = 10.0
    reconnect_delay: float = 5.0


class ValheimEvent(StrEnum):
    """Random event identifiers accepted by ``randomevent``."""

    ARMY_EIKTHYR = "army_eikthyr"
    ARMY_THEELDER = "army_theelder"
    ARMY_BONEMASS = "army_bonemass"
    ARMY_MODER = "army_moder"
    ARMY_GOBLIN = "army_goblin"
    FORESTTROLLS = "foresttrolls"
    SKELETONS = "skeletons"
    BLOBS = "blobs"
    WOLVES = "wolves"
    BATS = "bats"
    SERPENTS = "serpents"


class GlobalKey(StrEnum):
    """Boss progression keys accepted by ``setkey`` and ``removekey``."""

    DEFEATED_EIKTHYR = "defeated_eikthyr"
    DEFEATED_GDKING = "defeated_gdking"
    DEFEATED_BONEMASS = "defeated_bonemass"
    DEFEATED_DRAGON = "defeated_dragon"
    DEFEATED_GOBLINKING = "defeated_goblinking"
    DEFEATED_QUEEN = "defeated_queen"
