from pathlib import Path

import pytest

from valheim_dsm.utils._paths import (
    get_app_dir,
    get_cli_log_file,
    get_config_file,
    get_default_save_dir,
    get_default_server_dir,
    get_handle_file,
    get_server_executable,
    get_server_executable_name,
    get_server_log_dir,
    get_supervisor_log_file,
)


class TestGetAppDir:
    def test_honours_home_override(self, app_home: Path) -> None:
        assert get_app_dir() == app_home

    def test_falls_back_to_platform_config_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import platformdirs

        monkeypatch.delenv("VALHEIM_DSM_HOME")

        assert get_app_dir() == platformdirs.user_config_path("valheim-dsm")


class TestDerivedPaths:
    def test_layout(self, app_home: Path) -> None:
        assert get_config_file() == app_home / "config.toml"
        assert get_handle_file() == app_home / "server.pid"
        assert get_server_log_dir() == app_home / "logs" / "server"
        assert get_supervisor_log_file() == app_home / "logs" / "supervisor.log"
        assert get_cli_log_file() == app_home / "logs" / "cli.log"
        assert get_default_server_dir().parent == app_home / "steamcmd" / "steamapps" / "common"


class TestServerExecutable:
    @pytest.mark.parametrize(
        ("platform", "expected"),
        [("win32", "valheim_server.exe"), ("linux", "valheim_server.x86_64"), ("darwin", "valheim_server.x86_64")],
    )
    def test_name_per_platform(self, platform: str, expected: str) -> None:
        assert get_server_executable_name(platform) == expected

    def test_path_inside_server_dir(self, tmp_path: Path) -> None:
        assert get_server_executable(tmp_path).parent == tmp_path


class TestDefaultSaveDir:
    def test_linux_honours_xdg_config_home(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert get_default_save_dir("linux") == tmp_path / "unity3d" / "IronGate" / "Valheim"

    def test_linux_defaults_to_dot_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

        assert get_default_save_dir("linux") == Path.home() / ".config" / "unity3d" / "IronGate" / "Valheim"

    def test_windows_uses_locallow(self) -> None:
        assert get_default_save_dir("win32") == Path.home() / "AppData" / "LocalLow" / "IronGate" / "Valheim"

    def test_macos(self) -> None:
        assert get_default_save_dir("darwin") == Path.home() / "Library" / "Application Support" / "IronGate" / "Valheim"
