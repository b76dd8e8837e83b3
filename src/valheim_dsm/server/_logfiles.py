"""Detached-mode server log files: naming, retention, tail reads and tailing."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, final

import anyio
import pendulum

from valheim_dsm.utils._logging import component_logger
from valheim_dsm.utils._paths import get_server_log_dir

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LOG_FILE_PREFIX = "valheim-server"
DEFAULT_KEEP_COUNT = 7
DEFAULT_POLL_INTERVAL = 0.5
_TAIL_CHUNK_SIZE = 16384


def server_log_file_name(date: pendulum.Date | None = None) -> str:
    """Return the dated log file name, ``valheim-server-YYYY-MM-DD.log``."""
    day = date if date is not None else pendulum.today().date()
    return f"{LOG_FILE_PREFIX}-{day.to_date_string()}.log"


async def prepare_server_log_file(log_dir: Path | None = None) -> Path:
    """Create the log directory and return today's log file path."""
    directory = log_dir if log_dir is not None else get_server_log_dir()
    await anyio.Path(directory).mkdir(parents=True, exist_ok=True)
    return directory / server_log_file_name()


async def cleanup_old_logs(
    log_dir: Path | None = None,
    keep: int = DEFAULT_KEEP_COUNT,
) -> list[Path]:
    """Delete all but the ``keep`` most recent server log files.

    Dated names sort chronologically, so recency is lexicographic order.

    Args:
        log_dir: Directory to prune. Defaults to the server log directory.
        keep: Number of newest files to retain.

    Returns:
        The deleted paths.
    """
    directory = anyio.Path(log_dir if log_dir is not None else get_server_log_dir())
    if not await directory.is_dir():
        return []

    names = sorted(
        [
            entry.name
            async for entry in directory.iterdir()
            if entry.name.startswith(f"{LOG_FILE_PREFIX}-") and entry.name.endswith(".log")
        ],
        reverse=True,
    )

    removed: list[Path] = []
    for name in names[max(keep, 0) :]:
        target = directory / name
        await target.unlink(missing_ok=True)
        removed.append(Path(target))
    return removed


async def read_last_lines(path: Path, count: int = 100) -> list[str]:
    """Read up to ``count`` non-blank trailing lines of a file.

    The file is read backwards in fixed-size chunks so large logs are not
    loaded whole.

    Returns:
        Lines oldest first, or an empty list if the file does not exist.
    """
    if count <= 0:
        return []
    try:
        async with await anyio.open_file(path, "rb") as f:
            size = await f.seek(0, 2)
            position = size
            content = b""
            lines: list[bytes] = []
            while position > 0:
                step = min(_TAIL_CHUNK_SIZE, position)
                position -= step
                _ = await f.seek(position)
                content = await f.read(step) + content
                lines = [line for line in content.split(b"\n") if line.strip()]
                if len(lines) > count:
                    break
    except FileNotFoundError:
        return []

    return [line.decode("utf-8", errors="replace").rstrip("\r") for line in lines[-count:]]


@final
class LineSplitter:
    """Reassembles newline-terminated lines from arbitrary byte chunks."""

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completes."""
        data = self._pending + chunk
        *complete, self._pending = data.split(b"\n")
        return [line.decode("utf-8", errors="replace").rstrip("\r") for line in complete]

    def flush(self) -> str | None:
        """Return a trailing unterminated line, if any, and forget it."""
        pending, self._pending = self._pending, b""
        if not pending:
            return None
        return pending.decode("utf-8", errors="replace").rstrip("\r")

    def reset(self) -> None:
        """Forget any partial line."""
        self._pending = b""


type LineHandler = Callable[[str], Awaitable[None]]


@final
class LogTailer:
    """Follows a growing log file, like ``tail -f``.

    The file may not exist yet when tailing begins. A file that shrinks
    (truncated or rotated) is re-read from the start.

    Attributes:
        path: File being followed.
        poll_interval: Seconds between size checks.
    """

    __slots__ = (
        "_lock",
        "_logger",
        "_on_line",
        "_position",
        "_splitter",
        "path",
        "poll_interval",
    )

    def __init__(
        self,
        path: Path,
        on_line: LineHandler,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        self.path = path
        self.poll_interval = poll_interval
        self._on_line = on_line
        self._position = 0
        self._splitter = LineSplitter()
        self._lock = anyio.Lock()
        self._logger = component_logger(logger, "log_tailer")

    @property
    def position(self) -> int:
        """Return the byte offset consumed so far."""
        return self._position

    async def seek_to_end(self) -> None:
        """Skip existing content so only new lines are delivered."""
        try:
            self._position = (await anyio.Path(self.path).stat()).st_size
        except FileNotFoundError:
            self._position = 0
        self._splitter.reset()

    async def poll(self) -> int:
        """Read whatever was appended since the last poll.

        Returns:
            The number of complete lines delivered.
        """
        async with self._lock:
            return await self._poll_locked()

    async def _poll_locked(self) -> int:
        try:
            size = (await anyio.Path(self.path).stat()).st_size
        except FileNotFoundError:
            return 0

        if size < self._position:
            self._logger.info("log_file_truncated", path=str(self.path))
            self._position = 0
            self._splitter.reset()
        if size == self._position:
            return 0

        async with await anyio.open_file(self.path, "rb") as f:
            _ = await f.seek(self._position)
            data = await f.read(size - self._position)
        self._position += len(data)

        lines = self._splitter.feed(data)
        for line in lines:
            await self._on_line(line)
        return len(lines)

    async def run(self, *, from_end: bool = True) -> None:
        """Poll forever. Cancel the enclosing scope to stop."""
        if from_end:
            await self.seek_to_end()
        while True:
            _ = await self.poll()
            await anyio.sleep(self.poll_interval)
