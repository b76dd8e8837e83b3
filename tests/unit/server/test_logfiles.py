"""Unit tests for detached-mode log file helpers."""

from pathlib import Path

import pendulum
import pytest


class TestServerLogFileName:
    def test_uses_date(self) -> None:
        from valheim_dsm.server import server_log_file_name

        assert server_log_file_name(pendulum.date(2024, 2, 5)) == "valheim-server-2024-02-05.log"

    def test_defaults_to_today(self) -> None:
        from valheim_dsm.server import server_log_file_name

        name = server_log_file_name()

        assert name == f"valheim-server-{pendulum.today().to_date_string()}.log"


class TestLineSplitter:
    def test_reassembles_split_lines(self) -> None:
        from valheim_dsm.server import LineSplitter

        splitter = LineSplitter()

        assert splitter.feed(b"Game ser") == []
        assert splitter.feed(b"ver connected\r\nWorld sa") == ["Game server connected"]
        assert splitter.feed(b"ved\n") == ["World saved"]

    def test_flush_returns_trailing_partial(self) -> None:
        from valheim_dsm.server import LineSplitter

        splitter = LineSplitter()
        _ = splitter.feed(b"done\ntrailing")

        assert splitter.flush() == "trailing"
        assert splitter.flush() is None

    def test_invalid_utf8_is_replaced(self) -> None:
        from valheim_dsm.server import LineSplitter

        assert LineSplitter().feed(b"caf\xff\n") == ["caf�"]


@pytest.mark.anyio
class TestLogFiles:
    async def test_prepare_creates_directory(self, tmp_path: Path) -> None:
        from valheim_dsm.server import prepare_server_log_file, server_log_file_name

        log_dir = tmp_path / "logs" / "server"

        path = await prepare_server_log_file(log_dir)

        assert log_dir.is_dir()
        assert path == log_dir / server_log_file_name()

    async def test_prepare_defaults_to_app_dir(self, app_home: Path) -> None:
        from valheim_dsm.server import prepare_server_log_file

        path = await prepare_server_log_file()

        assert path.parent == app_home / "logs" / "server"

    async def test_cleanup_keeps_newest(self, tmp_path: Path) -> None:
        from valheim_dsm.server import cleanup_old_logs

        for day in range(1, 6):
            (tmp_path / f"valheim-server-2024-01-0{day}.log").write_text("x")
        (tmp_path / "unrelated.log").write_text("x")

        removed = await cleanup_old_logs(tmp_path, keep=2)

        assert sorted(p.name for p in removed) == [
            "valheim-server-2024-01-01.log",
            "valheim-server-2024-01-02.log",
            "valheim-server-2024-01-03.log",
        ]
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "unrelated.log",
            "valheim-server-2024-01-04.log",
            "valheim-server-2024-01-05.log",
        ]

    async def test_cleanup_missing_directory(self, tmp_path: Path) -> None:
        from valheim_dsm.server import cleanup_old_logs

        assert await cleanup_old_logs(tmp_path / "absent") == []

    async def test_read_last_lines(self, tmp_path: Path) -> None:
        from valheim_dsm.server import read_last_lines

        path = tmp_path / "server.log"
        _ = path.write_text("one\n\ntwo\r\nthree\nfour\n")

        assert await read_last_lines(path, 3) == ["two", "three", "four"]

    async def test_read_last_lines_across_chunks(self, tmp_path: Path) -> None:
        from valheim_dsm.server import read_last_lines

        path = tmp_path / "server.log"
        _ = path.write_text("".join(f"line {i:05d} {'x' * 100}\n" for i in range(1000)))

        lines = await read_last_lines(path, 300)

        assert len(lines) == 300
        assert lines[0].startswith("line 00700")
        assert lines[-1].startswith("line 00999")

    async def test_read_last_lines_missing_file(self, tmp_path: Path) -> None:
        from valheim_dsm.server import read_last_lines

        assert await read_last_lines(tmp_path / "missing.log") == []


@pytest.mark.anyio
class TestLogTailer:
    async def test_delivers_only_appended_lines(self, tmp_path: Path) -> None:
        from valheim_dsm.server import LogTailer

        path = tmp_path / "server.log"
        _ = path.write_text("old line\n")
        seen: list[str] = []

        async def on_line(line: str) -> None:
            seen.append(line)

        tailer = LogTailer(path, on_line)
        await tailer.seek_to_end()

        with path.open("a") as f:
            _ = f.write("new line\npartial")
        assert await tailer.poll() == 1

        with path.open("a") as f:
            _ = f.write(" done\n")
        assert await tailer.poll() == 1

        assert seen == ["new line", "partial done"]

    async def test_waits_for_missing_file(self, tmp_path: Path) -> None:
        from valheim_dsm.server import LogTailer

        path = tmp_path / "later.log"
        seen: list[str] = []

        async def on_line(line: str) -> None:
            seen.append(line)

        tailer = LogTailer(path, on_line)
        await tailer.seek_to_end()
        assert await tailer.poll() == 0

        _ = path.write_text("hello\n")
        assert await tailer.poll() == 1
        assert seen == ["hello"]

    async def test_rereads_truncated_file(self, tmp_path: Path) -> None:
        from valheim_dsm.server import LogTailer

        path = tmp_path / "server.log"
        _ = path.write_text("a fairly long first line\n")
        seen: list[str] = []

        async def on_line(line: str) -> None:
            seen.append(line)

        tailer = LogTailer(path, on_line)
        await tailer.seek_to_end()

        _ = path.write_text("short\n")
        assert await tailer.poll() == 1
        assert seen == ["short"]
        assert tailer.position == len(b"short\n")
