"""Data models for game server supervision.

- ProcessState: Lifecycle states of the server process
- Preset, CombatModifier, DeathPenalty, ResourceModifier, PortalMode:
  World difficulty settings
- WorldModifiers: Per-world modifier overrides
- LaunchConfig: How to launch the dedicated server binary
- WatchdogPolicy: Crash-restart policy
"""

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations

VALHEIM_STEAM_APP_ID = "892970"


class ProcessState(StrEnum):
    """Server process lifecycle states.

    - OFFLINE: No server process
    - STARTING: Spawned, waiting for the server to accept connections
    - ONLINE: The server reported it is connected and joinable
    - STOPPING: Operator-requested shutdown in progress
    - CRASHED: Exited without being asked to; terminal for the process
      wrapper, the watchdog decides what happens next
    """

    OFFLINE = "offline"
    STARTING = "starting"
    ONLINE = "online"
    STOPPING = "stopping"
    CRASHED = "crashed"


class Preset(StrEnum):
    """World difficulty presets accepted by ``-preset``."""

    NORMAL = "normal"
    CASUAL = "casual"
    EASY = "easy"
    HARD = "hard"
    HARDCORE = "hardcore"
    IMMERSIVE = "immersive"
    HAMMER = "hammer"


class CombatModifier(StrEnum):
    VERY_EASY = "veryeasy"
    EASY = "easy"
    DEFAULT = "default"
    HARD = "hard"
    VERY_HARD = "veryhard"


class DeathPenalty(StrEnum):
    CASUAL = "casual"
    VERY_EASY = "veryeasy"
    EASY = "easy"
    DEFAULT = "default"
    HARD = "hard"
    HARDCORE = "hardcore"


class ResourceModifier(StrEnum):
    MUCH_LESS = "muchless"
    LESS = "less"
    DEFAULT = "default"
    MORE = "more"
    MUCH_MORE = "muchmore"
    MOST = "most"


class PortalMode(StrEnum):
    DEFAULT = "default"
    CASUAL = "casual"
    HARD = "hard"
    VERY_HARD = "veryhard"


@dataclass(frozen=True, slots=True)
class WorldModifiers:
    """Per-world modifiers passed as ``-modifier <key> <value>`` pairs.

    Default values are omitted from the command line. Raids are a switch:
    disabling them sends ``raids none``.
    """

    combat: CombatModifier = CombatModifier.DEFAULT
    death_penalty: DeathPenalty = DeathPenalty.DEFAULT
    resources: ResourceModifier = ResourceModifier.DEFAULT
    raids: bool = True
    portals: PortalMode = PortalMode.DEFAULT

    def to_args(self) -> list[str]:
        """Return the ``-modifier`` arguments for non-default values."""
        pairs: list[tuple[str, str]] = []
        if self.combat != CombatModifier.DEFAULT:
            pairs.append(("combat", self.combat.value))
        if self.death_penalty != DeathPenalty.DEFAULT:
            pairs.append(("deathpenalty", self.death_penalty.value))
        if self.resources != ResourceModifier.DEFAULT:
            pairs.append(("resources", self.resources.value))
        if not self.raids:
            pairs.append(("raids", "none"))
        if self.portals != PortalMode.DEFAULT:
            pairs.append(("portals", self.portals.value))
        return [arg for key, value in pairs for arg in ("-modifier", key, value)]


@dataclass(frozen=True, slots=True)
class LaunchConfig:
    """Launch parameters for the dedicated server.

    Attributes:
        name: Public server name.
        port: Game port; the server also binds port + 1.
        world: World save name.
        password: Join password; empty means none.
        public: List the server in the community browser.
        crossplay: Enable crossplay networking.
        save_interval_sec: Autosave interval in seconds.
        backup_count: Number of automatic world backups.
        backup_short_sec: Interval of the first automatic backup, in seconds.
        backup_long_sec: Interval of the later automatic backups, in seconds.
        preset: World difficulty preset.
        modifiers: Per-world modifier overrides, applied after the preset.
        detached: Run in a separate session writing to a log file, so the
            server outlives the supervisor.
        save_dir: Alternate directory for world saves.
        log_file: Path passed to the server's own ``-logFile`` option.
        extra_args: Additional arguments appended verbatim.
    """

    name: str = "Land of OZ Valheim"
    port: int = 2456
    world: str = "Dedicated"
    password: str = ""
    public: bool = False
    crossplay: bool = False
    save_interval_sec: int | None = 1800
    backup_count: int | None = 4
    backup_short_sec: int | None = None
    backup_long_sec: int | None = None
    preset: Preset | None = None
    modifiers: WorldModifiers = field(default_factory=WorldModifiers)
    detached: bool = False
    save_dir: Path | None = None
    log_file: Path | None = None
    extra_args: tuple[str, ...] = field(default_factory=tuple)


def build_args(config: LaunchConfig) -> list[str]:
    """Build the dedicated server's command line arguments."""
    args = [
        "-nographics",
        "-batchmode",
        "-name",
        config.name,
        "-port",
        str(config.port),
        "-world",
        config.world,
        "-password",
        config.password,
        "-public",
        "1" if config.public else "0",
    ]
    if config.crossplay:
        args.append("-crossplay")
    if config.save_dir is not None:
        args.extend(["-savedir", str(config.save_dir)])
    if config.log_file is not None:
        args.extend(["-logFile", str(config.log_file)])
    if config.save_interval_sec:
        args.extend(["-saveinterval", str(config.save_interval_sec)])
    if config.backup_count:
        args.extend(["-backups", str(config.backup_count)])
    if config.backup_short_sec:
        args.extend(["-backupshort", str(config.backup_short_sec)])
    if config.backup_long_sec:
        args.extend(["-backuplong", str(config.backup_long_sec)])
    if config.preset is not None:
        args.extend(["-preset", config.preset.value])
    args.extend(config.modifiers.to_args())
    args.extend(config.extra_args)
    return args


def build_environment(
    server_dir: Path,
    *,
    base: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> dict[str, str]:
    """Build the server's environment.

    Args:
        server_dir: Dedicated server install directory.
        base: Environment to extend. Defaults to ``os.environ``.
        platform: A ``sys.platform`` value. Defaults to the running one.

    Returns:
        The environment with SteamAppId set and, on Linux, the bundled
        Steam runtime libraries prepended to LD_LIBRARY_PATH.
    """
    env = dict(base if base is not None else os.environ)
    current = platform if platform is not None else sys.platform

    if current.startswith("linux"):
        libs = f"{server_dir}/linux64"
        existing = env.get("LD_LIBRARY_PATH")
        env["LD_LIBRARY_PATH"] = f"{libs}:{existing}" if existing else libs

    env["SteamAppId"] = VALHEIM_STEAM_APP_ID
    return env


@dataclass(frozen=True, slots=True)
class WatchdogPolicy:
    """Crash-restart policy.

    Attributes:
        enabled: Restart after crashes at all.
        max_restarts: Restarts allowed within one cooldown window.
        restart_delay_ms: Delay before the first restart.
        cooldown_period_ms: Quiet time after which the restart count resets.
        backoff_multiplier: Delay growth factor per consecutive restart.
        max_delay_ms: Ceiling on the restart delay, or None for unbounded.
        jitter: Fraction of each delay to randomize, from 0.0 to 1.0.
    """

    enabled: bool = True
    max_restarts: int = 5
    restart_delay_ms: int = 5000
    cooldown_period_ms: int = 300_000
    backoff_multiplier: float = 2.0
    max_delay_ms: int | None = None
    jitter: float = 0.0
