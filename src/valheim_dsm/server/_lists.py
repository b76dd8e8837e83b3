"""Admin, ban and permitted player lists kept beside the world saves.

The dedicated server reads ``adminlist.txt``, ``bannedlist.txt`` and
``permittedlist.txt`` from its save directory and picks up edits while it
runs, so these files are how bans and admin rights change when no RCON
session is available. Each file holds one entry per line; lines starting
with ``//`` are comments and survive every rewrite.
"""

import re
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Final, final

import anyio

from valheim_dsm.exceptions import AccessListError
from valheim_dsm.utils._logging import component_logger
from valheim_dsm.utils._paths import get_default_save_dir

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

COMMENT_PREFIX: Final = "//"
LIST_HEADER: Final = "// Auto-generated by valheim-dsm. One platform id per line."

_STEAM64_ID: Final = re.compile(r"^7656119\d{10}$")


class AccessList(StrEnum):
    """The player lists the dedicated server reads."""

    ADMIN = "admin"
    BANNED = "banned"
    PERMITTED = "permitted"

    @property
    def filename(self) -> str:
        return f"{self.value}list.txt"


def is_valid_steam_id(value: str) -> bool:
    """Return whether ``value`` is a 17-digit Steam64 id."""
    return _STEAM64_ID.fullmatch(value) is not None


def parse_list(content: str) -> list[str]:
    """Extract entries from list file content.

    Blank lines and comments are skipped, surrounding whitespace is
    stripped and duplicates collapse to their first occurrence.
    """
    entries: list[str] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith(COMMENT_PREFIX) or line in entries:
            continue
        entries.append(line)
    return entries


def _check_entry(kind: AccessList, entry: str) -> str:
    value = entry.strip()
    if not value or any(char.isspace() for char in value) or value.startswith(COMMENT_PREFIX):
        msg = f"Invalid {kind} list entry: {entry!r}"
        raise AccessListError(msg, entry=entry)
    # Admin rights are granted by platform id only.
    if kind == AccessList.ADMIN and not is_valid_steam_id(value):
        msg = f"Admin entries must be 17-digit Steam64 ids: {entry!r}"
        raise AccessListError(msg, entry=entry)
    return value


@final
class AccessLists:
    """Reads and edits the player lists in one save directory.

    Edits are serialized per instance and each rewrite replaces the file
    atomically, so the server never reads a half-written list.

    Attributes:
        save_dir: Directory holding the list files.
    """

    __slots__ = ("_lock", "_logger", "save_dir")

    def __init__(
        self,
        save_dir: Path | None = None,
        *,
        logger: "FilteringBoundLogger | None" = None,
    ) -> None:
        """Initialize the lists.

        Args:
            save_dir: Server save directory. Defaults to the server's own
                default save location.
            logger: Base logger.
        """
        self.save_dir = save_dir if save_dir is not None else get_default_save_dir()
        self._logger = component_logger(logger, "access_lists")
        self._lock = anyio.Lock()

    def path(self, kind: AccessList) -> Path:
        """Return the file backing a list."""
        return self.save_dir / kind.filename

    async def _read_lines(self, kind: AccessList) -> list[str]:
        try:
            content = await anyio.Path(self.path(kind)).read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return content.splitlines()

    async def _write_lines(self, kind: AccessList, lines: list[str]) -> None:
        target = anyio.Path(self.path(kind))
        tmp = target.with_name(f"{target.name}.tmp")
        await target.parent.mkdir(parents=True, exist_ok=True)
        _ = await tmp.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        _ = await tmp.replace(target)

    async def read(self, kind: AccessList) -> list[str]:
        """Return a list's entries; a missing file is an empty list."""
        return parse_list("\n".join(await self._read_lines(kind)))

    async def contains(self, kind: AccessList, entry: str) -> bool:
        return entry.strip() in await self.read(kind)

    async def count(self, kind: AccessList) -> int:
        return len(await self.read(kind))

    async def add(self, kind: AccessList, entry: str) -> bool:
        """Append an entry unless it is already listed.

        Returns:
            True if the file changed.

        Raises:
            AccessListError: If the entry is blank, contains whitespace or
                is not a Steam64 id on the admin list.
        """
        value = _check_entry(kind, entry)
        async with self._lock:
            lines = await self._read_lines(kind)
            if value in parse_list("\n".join(lines)):
                return False
            # Drop trailing blank lines so the file does not grow gaps.
            while lines and not lines[-1].strip():
                _ = lines.pop()
            await self._write_lines(kind, [*lines, value])
        self._logger.info("access_list_added", list=str(kind), entry=value)
        return True

    async def remove(self, kind: AccessList, entry: str) -> bool:
        """Remove every occurrence of an entry, keeping comments.

        Returns:
            True if the file changed. A missing file is left missing.
        """
        value = entry.strip()
        async with self._lock:
            lines = await self._read_lines(kind)
            kept = [line for line in lines if line.strip() and line.strip() != value]
            if len(kept) == len([line for line in lines if line.strip()]):
                return False
            await self._write_lines(kind, kept)
        self._logger.info("access_list_removed", list=str(kind), entry=value)
        return True

    async def clear(self, kind: AccessList) -> None:
        """Replace a list with just the generated header comment."""
        async with self._lock:
            await self._write_lines(kind, [LIST_HEADER])
        self._logger.info("access_list_cleared", list=str(kind))
