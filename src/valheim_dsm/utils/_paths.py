import os
import sys
from pathlib import Path

import platformdirs

APP_NAME = "valheim-dsm"

SERVER_EXECUTABLE_WINDOWS = "valheim_server.exe"
SERVER_EXECUTABLE_POSIX = "valheim_server.x86_64"


def get_app_dir() -> Path:
    """Get the application data directory.

    Honours VALHEIM_DSM_HOME so tests and portable installs can relocate
    everything the supervisor writes.
    """
    override = os.environ.get("VALHEIM_DSM_HOME")
    if override:
        return Path(override)
    return platformdirs.user_config_path(APP_NAME)


def get_config_file() -> Path:
    """Get the path to the user configuration file."""
    return get_app_dir() / "config.toml"


def get_handle_file() -> Path:
    """Get the path to the persisted process handle record."""
    return get_app_dir() / "server.pid"


def get_log_dir() -> Path:
    """Get the path to the logs/ directory inside the app dir."""
    return get_app_dir() / "logs"


def get_server_log_dir() -> Path:
    """Get the directory holding detached server output logs."""
    return get_log_dir() / "server"


def get_supervisor_log_file() -> Path:
    """Get the path to the supervisor's own structured log file."""
    return get_log_dir() / "supervisor.log"


def get_cli_log_file() -> Path:
    """Get the path to the CLI log file inside logs/."""
    return get_log_dir() / "cli.log"


def get_default_server_dir() -> Path:
    """Get the default dedicated server install location."""
    return get_app_dir() / "steamcmd" / "steamapps" / "common" / "Valheim dedicated server"


def get_server_executable_name(platform: str | None = None) -> str:
    """Get the dedicated server binary's file name for a platform.

    Args:
        platform: A ``sys.platform`` value. Defaults to the running platform.

    Returns:
        The executable name, which is also its OS process name.
    """
    current = platform if platform is not None else sys.platform
    if current == "win32":
        return SERVER_EXECUTABLE_WINDOWS
    return SERVER_EXECUTABLE_POSIX


def get_server_executable(server_dir: Path) -> Path:
    """Get the path to the dedicated server binary inside an install dir."""
    return server_dir / get_server_executable_name()


def get_default_save_dir(platform: str | None = None) -> Path:
    """Get the directory the dedicated server saves worlds and player lists in.

    This is the server's own default, used when no ``-savedir`` is given.

    Args:
        platform: A ``sys.platform`` value. Defaults to the running platform.
    """
    current = platform if platform is not None else sys.platform
    home = Path.home()
    if current == "win32":
        return home / "AppData" / "LocalLow" / "IronGate" / "Valheim"
    if current == "darwin":
        return home / "Library" / "Application Support" / "IronGate" / "Valheim"
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else home / ".config"
    return base / "unity3d" / "IronGate" / "Valheim"
