"""Configuration models.

Each section is a frozen pydantic model that ignores unknown keys, so an
older config file keeps loading after options are removed. Validation
bounds mirror what the dedicated server accepts.
"""

from enum import StrEnum
from pathlib import Path  # noqa: TC003 - pydantic resolves field annotations at runtime
from typing import Annotated, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from valheim_dsm.rcon import DEFAULT_RCON_PORT, RconSettings
from valheim_dsm.server import (
    CombatModifier,
    DeathPenalty,
    LaunchConfig,
    PortalMode,
    Preset,
    ResourceModifier,
    WatchdogPolicy,
    WorldModifiers,
)
from valheim_dsm.utils._paths import get_default_save_dir, get_default_server_dir, get_server_executable

Port = Annotated[int, Field(ge=1024, le=65535)]
ShortName = Annotated[str, Field(min_length=1, max_length=64)]

MIN_PASSWORD_LENGTH = 5


class LogLevel(StrEnum):
    """Log level threshold values."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Supervisor log file path (empty uses the default location).
        server_log_retention: Number of dated server output logs to keep.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    file: str = ""
    server_log_retention: Annotated[int, Field(ge=1, le=365)] = 7


class ModifiersConfiguration(BaseModel):
    """World modifier overrides; "default" leaves the preset's value."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    combat: CombatModifier = CombatModifier.DEFAULT
    deathpenalty: DeathPenalty = DeathPenalty.DEFAULT
    resources: ResourceModifier = ResourceModifier.DEFAULT
    raids: bool = True
    portals: PortalMode = PortalMode.DEFAULT

    def to_modifiers(self) -> WorldModifiers:
        return WorldModifiers(
            combat=self.combat,
            death_penalty=self.deathpenalty,
            resources=self.resources,
            raids=self.raids,
            portals=self.portals,
        )


class ServerConfiguration(BaseModel):
    """Dedicated server launch settings.

    Attributes:
        name: Public server name.
        port: Game port.
        world: World save name.
        password: Join password, empty or at least five characters.
        public: List in the community server browser.
        crossplay: Enable crossplay networking.
        save_interval: Autosave interval in seconds.
        backups: Number of automatic world backups.
        backup_short: Seconds until the first automatic backup.
        backup_long: Seconds between later automatic backups.
        preset: World difficulty preset.
        modifiers: World modifier overrides.
        save_dir: Alternate world save directory.
        log_file: Path handed to the server's ``-logFile`` option.
        detached: Let the server outlive the supervisor.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    name: ShortName = "Land of OZ Valheim"
    port: Port = 2456
    world: ShortName = "Dedicated"
    password: Annotated[str, Field(max_length=64)] = ""
    public: bool = False
    crossplay: bool = False
    save_interval: Annotated[int, Field(ge=60, le=7200)] = 1800
    backups: Annotated[int, Field(ge=1, le=100)] = 4
    backup_short: Annotated[int, Field(ge=60, le=86_400)] = 7200
    backup_long: Annotated[int, Field(ge=3600, le=604_800)] = 43_200
    preset: Preset | None = None
    modifiers: ModifiersConfiguration = ModifiersConfiguration()
    save_dir: Path | None = None
    log_file: Path | None = None
    detached: bool = True

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        if value and len(value) < MIN_PASSWORD_LENGTH:
            msg = f"Password must be empty or at least {MIN_PASSWORD_LENGTH} characters"
            raise ValueError(msg)
        return value


class WatchdogConfiguration(BaseModel):
    """Crash-restart policy settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = True
    max_restarts: Annotated[int, Field(ge=0, le=100)] = 5
    restart_delay_ms: Annotated[int, Field(ge=1000, le=300_000)] = 5000
    cooldown_period_ms: Annotated[int, Field(ge=60_000, le=3_600_000)] = 300_000
    backoff_multiplier: Annotated[float, Field(ge=1, le=10)] = 2.0
    max_delay_ms: Annotated[int, Field(ge=1000, le=3_600_000)] | None = None
    jitter: Annotated[float, Field(ge=0, le=1)] = 0.0


class RconConfiguration(BaseModel):
    """RCON connection settings.

    Attributes:
        enabled: Connect to the server's RCON endpoint.
        host: RCON host.
        port: RCON port.
        password: Shared secret.
        timeout_ms: Connect and command timeout in milliseconds.
        auto_reconnect: Reconnect after unexpected disconnects while the
            server is online.
        poll_interval_ms: Player list poll interval in milliseconds.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    enabled: bool = False
    host: str = "localhost"
    port: Port = DEFAULT_RCON_PORT
    password: str = ""
    timeout_ms: Annotated[int, Field(ge=1000, le=60_000)] = 5000
    auto_reconnect: bool = True
    poll_interval_ms: Annotated[int, Field(ge=1000, le=600_000)] = 10_000


class PathsConfiguration(BaseModel):
    """Filesystem locations.

    Attributes:
        server_dir: Dedicated server install directory.
        executable: Explicit server binary, overriding the one derived from
            server_dir.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    server_dir: Path | None = None
    executable: Path | None = None


class AppConfig(BaseModel):
    """Root configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    server: ServerConfiguration = ServerConfiguration()
    watchdog: WatchdogConfiguration = WatchdogConfiguration()
    rcon: RconConfiguration = RconConfiguration()
    logging: LoggingConfig = LoggingConfig()
    paths: PathsConfiguration = PathsConfiguration()

    def server_dir(self) -> Path:
        """Return the configured or default server install directory."""
        if self.paths.server_dir is not None:
            return self.paths.server_dir
        return get_default_server_dir()

    def save_dir(self) -> Path:
        """Return the directory holding world saves and player lists."""
        if self.server.save_dir is not None:
            return self.server.save_dir
        return get_default_save_dir()

    def executable(self) -> Path:
        """Return the server binary to launch."""
        if self.paths.executable is not None:
            return self.paths.executable
        return get_server_executable(self.server_dir())

    def launch_config(self) -> LaunchConfig:
        """Build the runtime launch parameters."""
        server = self.server
        return LaunchConfig(
            name=server.name,
            port=server.port,
            world=server.world,
            password=server.password,
            public=server.public,
            crossplay=server.crossplay,
            save_interval_sec=server.save_interval,
            backup_count=server.backups,
            backup_short_sec=server.backup_short,
            backup_long_sec=server.backup_long,
            preset=server.preset,
            modifiers=server.modifiers.to_modifiers(),
            detached=server.detached,
            save_dir=server.save_dir,
            log_file=server.log_file,
        )

    def watchdog_policy(self) -> WatchdogPolicy:
        """Build the runtime restart policy."""
        watchdog = self.watchdog
        return WatchdogPolicy(
            enabled=watchdog.enabled,
            max_restarts=watchdog.max_restarts,
            restart_delay_ms=watchdog.restart_delay_ms,
            cooldown_period_ms=watchdog.cooldown_period_ms,
            backoff_multiplier=watchdog.backoff_multiplier,
            max_delay_ms=watchdog.max_delay_ms,
            jitter=watchdog.jitter,
        )

    def rcon_settings(self) -> RconSettings:
        """Build the runtime RCON session settings."""
        rcon = self.rcon
        return RconSettings(
            host=rcon.host,
            port=rcon.port,
            password=rcon.password,
            timeout=rcon.timeout_ms / 1000,
            enabled=rcon.enabled,
            auto_reconnect=rcon.auto_reconnect,
            poll_interval=rcon.poll_interval_ms / 1000,
        )
