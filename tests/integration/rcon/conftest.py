from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
import anyio.abc
import pytest

from valheim_dsm.rcon import PacketDecoder, PacketType, RconPacket, encode_packet

_GONE = (anyio.EndOfStream, anyio.BrokenResourceError, anyio.ClosedResourceError)


class FakeRconServer:
    """Minimal Source-RCON server for exercising the client over real sockets.

    Attributes:
        responses: Response bodies per command; each body is sent as its
            own packet.
        commands: Every non-empty command received, in order.
        connections: Number of accepted connections.
        drop_on: Commands that make the server close the connection.
        hang_on: Commands after which the server stops answering.
        fragment: Send responses a few bytes at a time.
    """

    def __init__(self, password: str = "secret") -> None:
        self.password = password
        self.responses: dict[str, list[str]] = {}
        self.commands: list[str] = []
        self.connections = 0
        self.drop_on: set[str] = set()
        self.hang_on: set[str] = set()
        self.fragment = False
        self.received = anyio.Event()

    @asynccontextmanager
    async def running(self) -> AsyncIterator[int]:
        listener = await anyio.create_tcp_listener(local_host="127.0.0.1")
        port = listener.extra(anyio.abc.SocketAttribute.local_port)
        async with listener, anyio.create_task_group() as tg:
            tg.start_soon(listener.serve, self._handle)
            try:
                yield port
            finally:
                tg.cancel_scope.cancel()

    async def _handle(self, stream: anyio.abc.SocketStream) -> None:
        self.connections += 1
        decoder = PacketDecoder()
        muted = False
        async with stream:
            try:
                while True:
                    chunk = await stream.receive()
                    for packet in decoder.feed(chunk):
                        if muted:
                            continue
                        if packet.type == PacketType.AUTH:
                            await self._authenticate(stream, packet)
                            continue
                        if packet.body:
                            self.commands.append(packet.body)
                            self.received.set()
                        if packet.body in self.drop_on:
                            return
                        if packet.body in self.hang_on:
                            muted = True
                            continue
                        await self._reply(stream, packet)
            except _GONE:
                return

    async def _authenticate(self, stream: anyio.abc.SocketStream, packet: RconPacket) -> None:
        request_id = packet.request_id if packet.body == self.password else -1
        await stream.send(encode_packet(packet.request_id, PacketType.RESPONSE_VALUE, ""))
        await stream.send(encode_packet(request_id, PacketType.AUTH_RESPONSE, ""))

    async def _reply(self, stream: anyio.abc.SocketStream, packet: RconPacket) -> None:
        bodies = self.responses.get(packet.body, [""]) if packet.body else [""]
        data = b"".join(encode_packet(packet.request_id, PacketType.RESPONSE_VALUE, body) for body in bodies)
        if not self.fragment:
            await stream.send(data)
            return
        for start in range(0, len(data), 3):
            await stream.send(data[start : start + 3])
            await anyio.sleep(0)


@pytest.fixture
def rcon_server() -> FakeRconServer:
    return FakeRconServer()
