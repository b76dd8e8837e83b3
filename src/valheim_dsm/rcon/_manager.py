"""Long-lived RCON session with reconnects, player polling and commands.

The session manager owns at most one RconClient. Unexpected disconnects
(including command timeouts) schedule a reconnect when ``auto_reconnect``
is set, but attempts only run while the supervised game server reports
``online``. A rejected password is never retried automatically; only an
explicit ``connect()`` or new settings try again.

Command helpers never raise for connection problems. They return None
(or an empty list) and report the failure through logging and connection
state notifications.
"""

from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from types import TracebackType
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc

from valheim_dsm.exceptions import RconAuthError, RconError
from valheim_dsm.server import AccessList, AccessLists, BaseServerObserver, GameServerProcess, ProcessState
from valheim_dsm.utils._logging import component_logger

from ._client import RconClient
from ._models import ConnectionState, GlobalKey, RconSettings, ValheimEvent
from ._observers import RconObserver, RconObserverSet  # noqa: TC001

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

PLAYERS_COMMAND = "players"
_PLAYERS_HEADER = "Players:"


def parse_players(response: str) -> list[str]:
    """Extract player names from a ``players`` response.

    One name per line; blank lines and the ``Players:`` header are
    skipped and duplicates collapse to their first occurrence.
    """
    players: list[str] = []
    for raw in response.splitlines():
        line = raw.strip()
        if not line or line.startswith(_PLAYERS_HEADER) or line in players:
            continue
        players.append(line)
    return players


def _split_lines(response: str | None) -> list[str]:
    if not response:
        return []
    return [line.strip() for line in response.splitlines() if line.strip()]


class _ServerStateListener(BaseServerObserver):
    __slots__ = ("_manager",)

    def __init__(self, manager: "RconSessionManager") -> None:
        self._manager = manager

    async def on_state_change(self, state: ProcessState) -> None:
        await self._manager._on_server_state(state)  # noqa: SLF001


@final
class RconSessionManager:
    """Persistent RCON session for one game server.

    Use as an async context manager; background polling and reconnects
    run in its task group.

    Example:
        >>> async with RconSessionManager(settings) as rcon:
        ...     rcon.watch(process)
        ...     await rcon.connect()
        ...     await rcon.save()

    Attributes:
        observers: Receivers of connection and player notifications.
    """

    __slots__ = (
        "_access_lists",
        "_auth_failed",
        "_client",
        "_connect_lock",
        "_exit_stack",
        "_logger",
        "_players",
        "_poll_scope",
        "_reconnect_scope",
        "_server_state",
        "_settings",
        "_state",
        "_task_group",
        "observers",
    )

    def __init__(
        self,
        settings: RconSettings | None = None,
        *,
        observers: Iterable[RconObserver] = (),
        server_state: Callable[[], ProcessState] | None = None,
        access_lists: AccessLists | None = None,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the session manager without connecting.

        Args:
            settings: Connection and session parameters.
            observers: Initial observers, notified in order.
            server_state: Returns the supervised server's state. Reconnects
                only run while it reports ``online``; None means no gate.
            access_lists: Player list files that ban commands fall back to
                while no session is connected.
            logger: Base logger.
        """
        self._settings = settings if settings is not None else RconSettings()
        self.observers = RconObserverSet(observers, logger=logger)
        self._server_state = server_state
        self._access_lists = access_lists
        self._logger = component_logger(logger, "rcon_manager")

        self._state = ConnectionState.DISCONNECTED
        self._client: RconClient | None = None
        self._players: list[str] | None = None
        self._auth_failed = False
        self._connect_lock = anyio.Lock()
        self._poll_scope: anyio.CancelScope | None = None
        self._reconnect_scope: anyio.CancelScope | None = None
        self._task_group: anyio.abc.TaskGroup | None = None
        self._exit_stack: AsyncExitStack | None = None

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as stack:
            self._task_group = await stack.enter_async_context(anyio.create_task_group())
            self._exit_stack = stack.pop_all()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        with anyio.CancelScope(shield=True):
            await self.disconnect()
        stack, self._exit_stack = self._exit_stack, None
        self._task_group = None
        if stack is None:
            return None
        return await stack.__aexit__(exc_type, exc, tb)

    @property
    def settings(self) -> RconSettings:
        """Return the active settings."""
        return self._settings

    @property
    def state(self) -> ConnectionState:
        """Return the session's connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Return whether commands can be sent."""
        return self._client is not None and self._client.is_connected

    @property
    def players(self) -> tuple[str, ...]:
        """Return the player list from the most recent poll."""
        return tuple(self._players or ())

    async def configure(self, settings: RconSettings) -> None:
        """Replace the settings.

        An open connection is kept when host, port and password are
        unchanged; otherwise the session disconnects and a new
        ``connect()`` is needed.
        """
        current = self._settings
        self._settings = settings
        self._auth_failed = False
        same_target = (current.host, current.port, current.password) == (
            settings.host,
            settings.port,
            settings.password,
        )
        if not (same_target and self.is_connected):
            await self.disconnect()

    def watch(self, process: GameServerProcess) -> None:
        """Follow a server process.

        The process state gates reconnects, and the session connects once
        the server reports ``online``.
        """
        self._server_state = lambda: process.state
        process.observers.add(_ServerStateListener(self))

    def _server_online(self) -> bool:
        return self._server_state is None or self._server_state() == ProcessState.ONLINE

    async def _on_server_state(self, state: ProcessState) -> None:
        if state != ProcessState.ONLINE:
            return
        if not self._settings.enabled or self._auth_failed or self.is_connected:
            return
        if self._task_group is None:
            self._logger.warning("rcon_autoconnect_skipped", reason="manager not entered")
            return
        self._task_group.start_soon(self._autoconnect)

    async def _autoconnect(self) -> None:
        if not await self._try_connect():
            self._schedule_reconnect()

    async def connect(self) -> bool:
        """Connect and start polling.

        Returns:
            True if connected. False if RCON is disabled or the attempt
            failed; a failed attempt other than a rejected password
            schedules a reconnect when ``auto_reconnect`` is set.
        """
        if not self._settings.enabled:
            self._logger.info("rcon_disabled")
            return False
        self._auth_failed = False
        connected = await self._try_connect()
        if not connected:
            self._schedule_reconnect()
        return connected

    async def _try_connect(self) -> bool:
        async with self._connect_lock:
            if self.is_connected:
                return True

            await self._set_state(ConnectionState.CONNECTING)
            settings = self._settings
            client = RconClient(
                settings.host,
                settings.port,
                settings.password,
                timeout=settings.timeout,
                logger=self._logger,
            )
            try:
                await client.connect()
            except RconAuthError as e:
                self._auth_failed = True
                self._logger.error("rcon_auth_failed", host=settings.host, port=settings.port, error=str(e))
                await self._set_state(ConnectionState.ERROR)
                return False
            except RconError as e:
                self._logger.warning("rcon_connect_failed", code=e.code, error=str(e))
                await self._set_state(ConnectionState.ERROR)
                return False

            self._client = client
            await self._set_state(ConnectionState.CONNECTED)
            self._start_polling()
            return True

    async def disconnect(self) -> None:
        """Close the connection and stop polling and reconnects."""
        self._cancel_reconnect()
        if self._poll_scope is not None:
            self._poll_scope.cancel()
            self._poll_scope = None

        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()
        self._players = None
        await self._set_state(ConnectionState.DISCONNECTED)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self._logger.info("rcon_state_changed", state=state)
        await self.observers.on_connection_state_change(state)

    async def _connection_lost(self, client: RconClient) -> None:
        if self._client is not client:
            return
        self._client = None
        self._logger.warning("rcon_connection_lost")
        await self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._settings.auto_reconnect or self._auth_failed:
            return
        if self._task_group is None or self._reconnect_scope is not None:
            return
        scope = anyio.CancelScope()
        self._reconnect_scope = scope
        self._task_group.start_soon(self._reconnect_loop, scope)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_scope is not None:
            self._reconnect_scope.cancel()
            self._reconnect_scope = None

    async def _reconnect_loop(self, scope: anyio.CancelScope) -> None:
        with scope:
            try:
                while True:
                    await anyio.sleep(self._settings.reconnect_delay)
                    if not self._server_online():
                        self._logger.debug("rcon_reconnect_deferred", reason="server not online")
                        continue
                    self._logger.info("rcon_reconnecting")
                    if await self._try_connect() or self._auth_failed:
                        return
            finally:
                if self._reconnect_scope is scope:
                    self._reconnect_scope = None

    def _start_polling(self) -> None:
        if self._task_group is None or self._poll_scope is not None:
            return
        scope = anyio.CancelScope()
        self._poll_scope = scope
        self._task_group.start_soon(self._poll_loop, scope)

    async def _poll_loop(self, scope: anyio.CancelScope) -> None:
        with scope:
            try:
                while True:
                    await anyio.sleep(self._settings.poll_interval)
                    if self.is_connected:
                        _ = await self.refresh_players()
            finally:
                if self._poll_scope is scope:
                    self._poll_scope = None

    async def send(self, command: str) -> str | None:
        """Run a console command.

        Returns:
            The response text, or None if not connected or the command
            failed.
        """
        client = self._client
        if client is None or not client.is_connected:
            self._logger.warning("rcon_command_skipped", command=command, reason="not connected")
            return None
        try:
            return await client.send(command)
        except RconError as e:
            self._logger.error("rcon_command_failed", command=command, code=e.code, error=str(e))
            if not client.is_connected:
                await self._connection_lost(client)
            return None

    async def refresh_players(self) -> list[str] | None:
        """Poll the player list and notify joins and leaves.

        The first poll of a connection only records the list; later polls
        report the names that appeared or disappeared.

        Returns:
            The current player names, or None if the poll failed.
        """
        response = await self.send(PLAYERS_COMMAND)
        if response is None:
            return None

        players = parse_players(response)
        previous, self._players = self._players, players
        if previous is not None:
            for name in players:
                if name not in previous:
                    await self.observers.on_player_join(name)
            for name in previous:
                if name not in players:
                    await self.observers.on_player_leave(name)
        await self.observers.on_player_list(list(players))
        return players

    async def kick(self, player: str) -> str | None:
        return await self.send(f"kick {player}")

    async def ban(self, player: str) -> str | None:
        """Ban a player by name or platform id.

        Without a session the id goes straight into the ban list file,
        which the server re-reads while running.

        Raises:
            AccessListError: If falling back to the file and the entry is
                not a single token.
        """
        if self.is_connected or self._access_lists is None:
            return await self.send(f"ban {player}")
        added = await self._access_lists.add(AccessList.BANNED, player)
        self._logger.info("ban_written_to_list", player=player, changed=added)
        return f"Banned {player}" if added else f"{player} is already banned"

    async def unban(self, player: str) -> str | None:
        """Lift a ban by player name or platform id, via the list file when offline."""
        if self.is_connected or self._access_lists is None:
            return await self.send(f"unban {player}")
        removed = await self._access_lists.remove(AccessList.BANNED, player)
        self._logger.info("unban_written_to_list", player=player, changed=removed)
        return f"Unbanned {player}" if removed else f"{player} is not banned"

    async def banned(self) -> list[str]:
        """Return the ban list, one entry per line.

        Reads the ban list file when no session is connected.
        """
        if self.is_connected or self._access_lists is None:
            return _split_lines(await self.send("banned"))
        return await self._access_lists.read(AccessList.BANNED)

    async def trigger_event(self, event: ValheimEvent | str | None = None) -> str | None:
        """Start a world event, or a random one when no event is given."""
        if event is None:
            return await self.send("randomevent")
        return await self.send(f"randomevent {event}")

    async def stop_event(self) -> str | None:
        return await self.send("stopevent")

    async def skip_time(self, seconds: int) -> str | None:
        return await self.send(f"skiptime {seconds}")

    async def sleep(self) -> str | None:
        """Skip to the next morning."""
        return await self.send("sleep")

    async def save(self) -> str | None:
        """Force a world save."""
        return await self.send("save")

    async def remove_drops(self) -> str | None:
        """Remove every dropped item from the world."""
        return await self.send("removedrops")

    async def info(self) -> str | None:
        return await self.send("info")

    async def ping(self) -> str | None:
        return await self.send("ping")

    async def list_keys(self) -> list[str]:
        """Return the active global keys."""
        return _split_lines(await self.send("listkeys"))

    async def set_key(self, key: GlobalKey | str) -> str | None:
        return await self.send(f"setkey {key}")

    async def remove_key(self, key: GlobalKey | str) -> str | None:
        return await self.send(f"removekey {key}")

    async def reset_keys(self) -> str | None:
        return await self.send("resetkeys")
