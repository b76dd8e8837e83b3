"""RCON client for a single TCP connection.

The protocol has no request multiplexing, so commands are serialized
through a FIFO lock and each response stream is matched by request id.
A command's response may span several packets; the client writes an
empty follow-up command right behind it and treats the follow-up's
answer as the end of the original response. Servers that never answer
the follow-up are covered by the command timeout.
"""

from collections import deque
from types import TracebackType
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc

from valheim_dsm.exceptions import RconAuthError, RconError, RconErrorCode, RconProtocolError
from valheim_dsm.utils._logging import component_logger

from ._models import DEFAULT_RCON_PORT, ConnectionState
from ._protocol import PacketDecoder, PacketType, RconPacket, encode_packet

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

AUTH_FAILED_ID = -1
_MAX_REQUEST_ID = 0x7FFFFFFF
_RECEIVE_SIZE = 65536

_STREAM_ERRORS = (
    anyio.EndOfStream,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    OSError,
)


@final
class RconClient:
    """Authenticated RCON connection.

    Example:
        >>> async with RconClient("localhost", 25575, "secret") as client:
        ...     print(await client.send("players"))
    """

    __slots__ = (
        "_decoder",
        "_inbox",
        "_lock",
        "_logger",
        "_request_id",
        "_send_scope",
        "_state",
        "_stream",
        "host",
        "password",
        "port",
        "timeout",
    )

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_RCON_PORT,
        password: str = "",
        *,
        timeout: float = 5.0,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the client without connecting.

        Args:
            host: Server host name or address.
            port: RCON port.
            password: Shared secret.
            timeout: Seconds allowed for connect plus authentication, and
                for each command.
            logger: Base logger.
        """
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._logger = component_logger(logger, "rcon")

        self._state = ConnectionState.DISCONNECTED
        self._stream: anyio.abc.SocketStream | None = None
        self._decoder = PacketDecoder()
        self._inbox: deque[RconPacket] = deque()
        self._request_id = 0
        self._lock = anyio.Lock()
        self._send_scope: anyio.CancelScope | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        """Return the connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Return whether the client is authenticated and usable."""
        return self._state == ConnectionState.CONNECTED

    def _next_request_id(self) -> int:
        self._request_id = self._request_id % _MAX_REQUEST_ID + 1
        return self._request_id

    async def connect(self) -> None:
        """Open the socket and authenticate.

        Raises:
            RconAuthError: If the server rejects the password.
            RconError: If already connected, if the server cannot be
                reached (``connection_refused``), if the attempt times out
                (``timeout``) or if the server drops the socket.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            msg = f"RCON client is already {self._state}"
            raise RconError(msg, code=RconErrorCode.UNKNOWN)

        self._state = ConnectionState.CONNECTING
        self._logger.debug("rcon_connecting", host=self.host, port=self.port)
        try:
            with anyio.fail_after(self.timeout):
                try:
                    self._stream = await anyio.connect_tcp(self.host, self.port)
                except OSError as e:
                    msg = f"Failed to connect to {self.host}:{self.port}: {e}"
                    raise RconError(msg, code=RconErrorCode.CONNECTION_REFUSED, cause=e) from e
                await self._authenticate()
        except TimeoutError as e:
            await self._close(ConnectionState.ERROR)
            msg = f"Connection timeout after {self.timeout}s"
            raise RconError(msg, code=RconErrorCode.TIMEOUT, cause=e) from e
        except RconError as e:
            await self._close(ConnectionState.ERROR)
            self._logger.warning("rcon_connect_failed", code=e.code, error=str(e))
            raise
        except _STREAM_ERRORS as e:
            await self._close(ConnectionState.ERROR)
            msg = f"Connection lost during authentication: {e!r}"
            raise RconError(msg, code=RconErrorCode.DISCONNECTED, cause=e) from e

        self._state = ConnectionState.CONNECTED
        self._logger.info("rcon_connected", host=self.host, port=self.port)

    async def _authenticate(self) -> None:
        stream = self._require_stream()
        request_id = self._next_request_id()
        await stream.send(encode_packet(request_id, PacketType.AUTH, self.password))

        while True:
            packet = await self._next_packet()
            # Source-style servers send an empty RESPONSE_VALUE ahead of the
            # auth response.
            if packet.type != PacketType.AUTH_RESPONSE:
                continue
            if packet.request_id == AUTH_FAILED_ID:
                raise RconAuthError("Invalid RCON password")
            if packet.request_id != request_id:
                msg = f"Unexpected authentication response id {packet.request_id}"
                raise RconAuthError(msg)
            return

    async def send(self, command: str) -> str:
        """Execute a command and return its full response text.

        Concurrent calls are queued and run one at a time in call order.

        Args:
            command: Console command to run.

        Returns:
            The concatenated response bodies.

        Raises:
            RconError: ``disconnected`` if not connected or if the
                connection closes (including through ``disconnect()``)
                before the response completes; ``timeout`` if the
                response does not complete in time, which also closes
                the connection.
            RconProtocolError: If the server sends a malformed packet. The
                connection is closed.
        """
        if not self.is_connected:
            msg = "Not connected to RCON server"
            raise RconError(msg, code=RconErrorCode.DISCONNECTED)

        async with self._lock:
            stream = self._require_stream()
            request_id = self._next_request_id()
            terminator_id = self._next_request_id()
            scope = anyio.CancelScope()
            self._send_scope = scope
            result: str | None = None
            try:
                with scope, anyio.fail_after(self.timeout):
                    await stream.send(
                        encode_packet(request_id, PacketType.EXEC_COMMAND, command)
                        + encode_packet(terminator_id, PacketType.EXEC_COMMAND, "")
                    )
                    result = await self._collect_response(request_id, terminator_id)
            except TimeoutError as e:
                await self._close(ConnectionState.ERROR)
                msg = f"Response timeout after {self.timeout}s"
                raise RconError(msg, code=RconErrorCode.TIMEOUT, cause=e) from e
            except RconProtocolError:
                await self._close(ConnectionState.ERROR)
                raise
            except _STREAM_ERRORS as e:
                await self._close(ConnectionState.DISCONNECTED)
                msg = f"Connection lost: {e!r}"
                raise RconError(msg, code=RconErrorCode.DISCONNECTED, cause=e) from e
            finally:
                if self._send_scope is scope:
                    self._send_scope = None

            if result is None:
                msg = "Disconnected while waiting for a response"
                raise RconError(msg, code=RconErrorCode.DISCONNECTED)
            self._logger.debug("rcon_command", command=command, response_size=len(result))
            return result

    async def _collect_response(self, request_id: int, terminator_id: int) -> str:
        parts: list[str] = []
        while True:
            packet = await self._next_packet()
            if packet.request_id == terminator_id:
                return "".join(parts)
            if packet.request_id == request_id and packet.type == PacketType.RESPONSE_VALUE:
                parts.append(packet.body)

    async def _next_packet(self) -> RconPacket:
        while not self._inbox:
            chunk = await self._require_stream().receive(_RECEIVE_SIZE)
            self._inbox.extend(self._decoder.feed(chunk))
        return self._inbox.popleft()

    def _require_stream(self) -> anyio.abc.SocketStream:
        if self._stream is None:
            msg = "Not connected to RCON server"
            raise RconError(msg, code=RconErrorCode.DISCONNECTED)
        return self._stream

    async def disconnect(self) -> None:
        """Close the connection.

        A command waiting for its response is abandoned and raises a
        ``disconnected`` RconError in its own caller.
        """
        if self._send_scope is not None:
            self._send_scope.cancel()
            self._send_scope = None
        was_open = self._stream is not None
        await self._close(ConnectionState.DISCONNECTED)
        if was_open:
            self._logger.info("rcon_disconnected", host=self.host, port=self.port)

    async def _close(self, state: ConnectionState) -> None:
        self._state = state
        stream, self._stream = self._stream, None
        self._decoder.reset()
        self._inbox.clear()
        if stream is not None:
            with anyio.CancelScope(shield=True):
                await stream.aclose()
