"""RCON wire format.

Each packet is::

    <int32 size> <int32 request id> <int32 type> <body bytes> \\x00 \\x00

All integers are little-endian and ``size`` counts every byte after the
size field itself, so the smallest legal packet (empty body) declares 10.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Final, final

from valheim_dsm.exceptions import RconProtocolError

MIN_PACKET_SIZE: Final = 10
MAX_BODY_SIZE: Final = 4096
MAX_PACKET_SIZE: Final = MAX_BODY_SIZE + MIN_PACKET_SIZE

_HEADER: Final = struct.Struct("<iii")
_SIZE: Final = struct.Struct("<i")
_TERMINATOR: Final = b"\x00\x00"


class PacketType(IntEnum):
    """RCON packet types.

    AUTH_RESPONSE and EXEC_COMMAND share the value 2; direction tells them
    apart.
    """

    RESPONSE_VALUE = 0
    EXEC_COMMAND = 2
    AUTH_RESPONSE = 2
    AUTH = 3


@dataclass(frozen=True, slots=True)
class RconPacket:
    """A decoded RCON packet.

    Attributes:
        size: Declared size field.
        request_id: Request identifier, echoed by the server.
        type: Raw packet type.
        body: Decoded body text.
    """

    size: int
    request_id: int
    type: int
    body: str


def encode_packet(request_id: int, packet_type: int, body: str = "") -> bytes:
    """Encode one packet.

    Args:
        request_id: Identifier the server will echo.
        packet_type: One of the PacketType values.
        body: Command or password text.

    Returns:
        The packet bytes.

    Raises:
        RconProtocolError: If the body exceeds the maximum body size.
    """
    payload = body.encode("utf-8")
    if len(payload) > MAX_BODY_SIZE:
        msg = f"RCON body too large: {len(payload)} bytes (max {MAX_BODY_SIZE})"
        raise RconProtocolError(msg, declared_size=len(payload) + MIN_PACKET_SIZE)

    size = _HEADER.size - _SIZE.size + len(payload) + len(_TERMINATOR)
    return _HEADER.pack(size, request_id, packet_type) + payload + _TERMINATOR


def decode_packet(data: bytes | bytearray | memoryview) -> tuple[RconPacket, int] | None:
    """Decode the first packet in a buffer.

    Args:
        data: Bytes that start at a packet boundary.

    Returns:
        The packet and the number of bytes it occupied, or None when the
        buffer does not yet hold a complete packet.

    Raises:
        RconProtocolError: If the declared size is out of range.
    """
    if len(data) < _SIZE.size:
        return None

    (size,) = _SIZE.unpack_from(data, 0)
    if size < MIN_PACKET_SIZE or size > MAX_PACKET_SIZE:
        msg = f"Invalid RCON packet size: {size}"
        raise RconProtocolError(msg, declared_size=size)

    total = _SIZE.size + size
    if len(data) < total:
        return None

    _, request_id, packet_type = _HEADER.unpack_from(data, 0)
    body = bytes(data[_HEADER.size : total - len(_TERMINATOR)])
    packet = RconPacket(
        size=size,
        request_id=request_id,
        type=packet_type,
        body=body.decode("utf-8", errors="replace"),
    )
    return packet, total


@final
class PacketDecoder:
    """Streaming decoder that buffers partial reads.

    Feed it whatever the socket returned; it yields only complete packets
    and keeps any remainder for the next feed.
    """

    __slots__ = ("_buffer",)

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Return the number of buffered bytes not yet decoded."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[RconPacket]:
        """Add received bytes and return every packet they complete.

        Raises:
            RconProtocolError: If a declared size is out of range. The
                buffer is cleared since framing is lost.
        """
        self._buffer.extend(chunk)
        packets: list[RconPacket] = []
        while True:
            try:
                decoded = decode_packet(self._buffer)
            except RconProtocolError:
                self._buffer.clear()
                raise
            if decoded is None:
                return packets
            packet, consumed = decoded
            del self._buffer[:consumed]
            packets.append(packet)

    def reset(self) -> None:
        """Discard buffered bytes."""
        self._buffer.clear()
