"""Remote console (RCON) access to the game server.

Key Components:
    - encode_packet / decode_packet / PacketDecoder: Wire codec
    - RconClient: One authenticated connection with serialized commands
    - RconSessionManager: Reconnects, player polling and Valheim commands
"""

from ._client import RconClient
from ._manager import PLAYERS_COMMAND, RconSessionManager, parse_players
from ._models import (
    DEFAULT_RCON_PORT,
    ConnectionState,
    GlobalKey,
    RconSettings,
    ValheimEvent,
)
from ._observers import BaseRconObserver, RconObserver, RconObserverSet
from ._protocol import (
    MAX_BODY_SIZE,
    MIN_PACKET_SIZE,
    PacketDecoder,
    PacketType,
    RconPacket,
    decode_packet,
    encode_packet,
)

__all__ = [
    "DEFAULT_RCON_PORT",
    "MAX_BODY_SIZE",
    "MIN_PACKET_SIZE",
    "PLAYERS_COMMAND",
    "BaseRconObserver",
    "ConnectionState",
    "GlobalKey",
    "PacketDecoder",
    "PacketType",
    "RconClient",
    "RconObserver",
    "RconObserverSet",
    "RconPacket",
    "RconSessionManager",
    "RconSettings",
    "ValheimEvent",
    "decode_packet",
    "encode_packet",
    "parse_players",
]
