"""Unit tests for logging utilities."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pyfakefs.fake_filesystem import FakeFilesystem


def _file_logger(path: str) -> logging.Logger:
    return logging.getLogger(f"valheim_dsm.file:{path}")


@pytest.fixture(autouse=True)
def _close_file_handlers():
    yield
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("valheim_dsm.file:"):
            stdlib_logger = logging.getLogger(name)
            for handler in list(stdlib_logger.handlers):
                stdlib_logger.removeHandler(handler)
                handler.close()


class TestCreateLogger:
    def test_creates_log_directory_if_missing(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        log_path = Path("/logs/test.log")
        assert not log_path.parent.exists()

        _ = _create_logger(str(log_path))

        assert log_path.parent.exists()

    def test_default_format_is_json(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        logger = _create_logger("/logs/test.log")

        logger.info("test_event", key="value")

        log_content = Path("/logs/test.log").read_text()
        assert '"event": "test_event"' in log_content
        assert '"key": "value"' in log_content

    def test_text_format(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        logger = _create_logger("/logs/test.log", log_format="text")

        logger.info("test_event", key="value")

        log_content = Path("/logs/test.log").read_text()
        assert "test_event" in log_content
        assert "key=value" in log_content

    def test_with_rotation_uses_stdlib_logger(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        logger = _create_logger("/logs/rotating.log", max_bytes=1000, backup_count=3)
        logger.info("rotated_event")

        handlers = _file_logger("/logs/rotating.log").handlers
        assert len(handlers) == 1
        handler = handlers[0]
        assert isinstance(handler, RotatingFileHandler)
        assert (handler.maxBytes, handler.backupCount) == (1000, 3)
        handler.flush()
        assert "rotated_event" in Path("/logs/rotating.log").read_text()

    def test_repeated_calls_share_one_handler(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        first = _create_logger("/logs/shared.log", max_bytes=1000, backup_count=3)
        second = _create_logger(Path("/logs/../logs/shared.log"), max_bytes=1000, backup_count=3)
        first.info("from_first")
        second.info("from_second")

        handlers = _file_logger("/logs/shared.log").handlers
        assert len(handlers) == 1
        handlers[0].flush()
        content = Path("/logs/shared.log").read_text()
        # Each event is written exactly once.
        assert content.count("from_first") == 1
        assert content.count("from_second") == 1

    def test_changed_rotation_replaces_handler(self, fs: "FakeFilesystem") -> None:
        from valheim_dsm.utils._logging import _create_logger

        _ = _create_logger("/logs/resized.log", max_bytes=1000, backup_count=3)
        old = _file_logger("/logs/resized.log").handlers[0]

        _ = _create_logger("/logs/resized.log", max_bytes=5000, backup_count=2)

        handlers = _file_logger("/logs/resized.log").handlers
        assert len(handlers) == 1
        assert handlers[0] is not old
        assert isinstance(handlers[0], RotatingFileHandler)
        assert handlers[0].maxBytes == 5000


class TestCreateSupervisorLogger:
    def test_defaults_to_app_log_dir(self, app_home: Path) -> None:
        from valheim_dsm.utils._logging import create_supervisor_logger

        logger = create_supervisor_logger(level="info", max_bytes=None, backup_count=None)
        logger.info("supervisor_started")

        assert "supervisor_started" in (app_home / "logs" / "supervisor.log").read_text()

    def test_respects_level(self, tmp_path: Path) -> None:
        from valheim_dsm.utils._logging import create_supervisor_logger

        log_file = tmp_path / "supervisor.log"
        logger = create_supervisor_logger(level="error", log_file=str(log_file), max_bytes=None, backup_count=None)

        logger.warning("warn_message")
        logger.error("error_message")

        content = log_file.read_text()
        assert "warn_message" not in content
        assert "error_message" in content

    def test_debug_env_overrides_level(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from valheim_dsm.utils._logging import create_supervisor_logger

        monkeypatch.setenv("VALHEIM_DSM_DEBUG", "1")
        log_file = tmp_path / "supervisor.log"
        logger = create_supervisor_logger(level="error", log_file=str(log_file), max_bytes=None, backup_count=None)

        logger.debug("debug_message")

        assert "debug_message" in log_file.read_text()


class TestCreateCliLogger:
    def test_binds_command(self, tmp_path: Path) -> None:
        from valheim_dsm.utils._logging import create_cli_logger

        log_file = tmp_path / "cli.log"
        logger = create_cli_logger(log_file=str(log_file), command="status")

        logger.info("cli_event")

        content = log_file.read_text()
        assert '"command": "status"' in content
        assert "cli_event" in content


class TestComponentLogger:
    def test_binds_component(self, tmp_path: Path) -> None:
        from valheim_dsm.utils._logging import _create_logger, component_logger

        log_file = tmp_path / "component.log"
        logger = component_logger(_create_logger(str(log_file)), "watchdog")

        logger.info("bound_event")

        assert '"component": "watchdog"' in log_file.read_text()

    def test_falls_back_to_default_logger(self) -> None:
        from valheim_dsm.utils._logging import component_logger

        logger = component_logger(None, "rcon")

        logger.debug("not_an_error")
