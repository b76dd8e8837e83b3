"""Persistent process handle record and OS process checks.

The handle file tells a later supervisor invocation that a server is
already running, which is what makes detach/attach and ``stop`` from a
second shell possible. It is rewritten atomically and re-validated on
every read; anything that fails validation is deleted rather than
partially trusted.
"""

from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, final

import anyio
import anyio.to_thread
import pendulum
import psutil
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, field_validator

from valheim_dsm.utils._logging import component_logger
from valheim_dsm.utils._paths import get_handle_file, get_server_executable_name

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_GAME_PORT = 2456
UNKNOWN_WORLD = "unknown"


class ProcessHandleRecord(BaseModel):
    """On-disk description of a running server process.

    Attributes:
        pid: OS process ID, always positive.
        started_at: ISO 8601 start time.
        world: World name the server was launched with.
        port: Game port.
        log_file: Output log of a detached server.
        detached: Whether the server runs in its own session.
        server_name: Public server name, if known.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="forbid",
        strict=True,
        populate_by_name=True,
    )

    pid: PositiveInt
    started_at: str = Field(alias="startedAt")
    world: str
    port: int = Field(ge=1, le=65535)
    log_file: str | None = Field(default=None, alias="logFile")
    detached: bool | None = None
    server_name: str | None = Field(default=None, alias="serverName")

    @field_validator("started_at")
    @classmethod
    def _check_iso8601(cls, value: str) -> str:
        try:
            _ = pendulum.parse(value)
        except ValueError as e:
            msg = f"startedAt is not an ISO 8601 timestamp: {value!r}"
            raise ValueError(msg) from e
        return value

    def to_json(self) -> str:
        """Serialize with the on-disk key names, omitting unset fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def is_process_alive(pid: int) -> bool:
    """Check whether a process exists without affecting it.

    Zombies count as dead: they have exited and only await reaping.
    """
    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def kill_process(pid: int, *, force: bool = False) -> bool:
    """Send a terminate or force-kill signal to a process.

    Args:
        pid: Target process ID.
        force: Send SIGKILL (TerminateProcess on Windows) instead of SIGTERM.

    Returns:
        True if the signal was delivered.
    """
    if pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        if force:
            proc.kill()
        else:
            proc.terminate()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False
    return True


def find_processes_by_name(name: str) -> list[int]:
    """Return the PIDs of all processes whose name is exactly ``name``."""
    pids: list[int] = []
    for proc in psutil.process_iter(["pid", "name"]):
        if proc.info["name"] == name:
            pids.append(proc.info["pid"])
    return sorted(pids)


@final
class ProcessHandleStore:
    """Reads, writes and resolves the persisted process handle record.

    Attributes:
        path: Location of the handle file.
        process_name: Exact OS process name of the server binary.
    """

    __slots__ = ("_logger", "path", "process_name")

    def __init__(
        self,
        path: Path | None = None,
        *,
        process_name: str | None = None,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the store.

        Args:
            path: Handle file location. Defaults to ``<app dir>/server.pid``.
            process_name: Name used by orphan scans. Defaults to the
                platform's server executable name.
            logger: Logger for discarded records and scans.
        """
        self.path = path if path is not None else get_handle_file()
        self.process_name = process_name if process_name is not None else get_server_executable_name()
        self._logger = component_logger(logger, "process_handle")

    async def write(self, record: ProcessHandleRecord) -> None:
        """Persist a record atomically (temp file, then rename).

        Args:
            record: The record to persist.
        """
        target = anyio.Path(self.path)
        tmp = target.with_name(f"{target.name}.tmp")
        await target.parent.mkdir(parents=True, exist_ok=True)
        _ = await tmp.write_text(record.to_json(), encoding="utf-8")
        _ = await tmp.replace(target)
        self._logger.debug("handle_written", pid=record.pid, path=str(self.path))

    async def read(self) -> ProcessHandleRecord | None:
        """Load and validate the record.

        Returns:
            The record, or None if absent. A record that fails validation is
            deleted and reported as absent.
        """
        target = anyio.Path(self.path)
        try:
            content = await target.read_bytes()
        except FileNotFoundError:
            return None

        try:
            return ProcessHandleRecord.model_validate_json(content)
        except ValidationError as e:
            self._logger.warning(
                "handle_invalid_discarded",
                path=str(self.path),
                errors=e.error_count(),
            )
            await self.remove()
            return None

    async def remove(self) -> None:
        """Delete the handle file if it exists."""
        await anyio.Path(self.path).unlink(missing_ok=True)

    def is_alive(self, pid: int) -> bool:
        """Check process liveness. See :func:`is_process_alive`."""
        return is_process_alive(pid)

    def kill(self, pid: int, *, force: bool = False) -> bool:
        """Signal a process. See :func:`kill_process`."""
        sent = kill_process(pid, force=force)
        self._logger.info("process_signalled", pid=pid, force=force, sent=sent)
        return sent

    async def scan_for_orphans(self) -> list[int]:
        """Enumerate running server processes by exact binary name.

        Returns:
            Matching PIDs, lowest first.
        """
        pids = await anyio.to_thread.run_sync(find_processes_by_name, self.process_name)
        if pids:
            self._logger.info("orphans_found", process_name=self.process_name, pids=pids)
        return pids

    async def resolve_running_server(self) -> ProcessHandleRecord | None:
        """Find the server that is running right now, if any.

        The persisted record wins when its process is alive. A stale record
        is deleted and treated exactly like a missing one: the process
        table is scanned and the first match is adopted through a
        best-effort record that is persisted for the next caller.

        Returns:
            A record describing the running server, or None.
        """
        record = await self.read()
        if record is not None:
            if self.is_alive(record.pid):
                return record
            self._logger.info("handle_stale_removed", pid=record.pid)
            await self.remove()

        pids = await self.scan_for_orphans()
        if not pids:
            return None

        adopted = ProcessHandleRecord(
            pid=pids[0],
            started_at=pendulum.now("UTC").to_iso8601_string(),
            world=UNKNOWN_WORLD,
            port=DEFAULT_GAME_PORT,
            detached=True,
        )
        await self.write(adopted)
        self._logger.info("orphan_adopted", pid=adopted.pid)
        return adopted
