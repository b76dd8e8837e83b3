"""Configuration for valheim-dsm.

Configuration lives in ``<app dir>/config.toml`` and can be overridden
with ``VALHEIM_DSM_<SECTION>__<KEY>`` environment variables.

Example:
    >>> from valheim_dsm.config import load_config
    >>> config = load_config()
    >>> config.launch_config().world
    'Dedicated'
"""

from ._loader import (
    ENV_PREFIX,
    copy_value,
    deep_merge,
    load_config,
    parse_env_vars,
    parse_string_value,
    read_toml_file,
    set_nested_key,
    validate_config,
)
from ._models import (
    AppConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ModifiersConfiguration,
    PathsConfiguration,
    RconConfiguration,
    ServerConfiguration,
    WatchdogConfiguration,
)

__all__ = [
    "ENV_PREFIX",
    "AppConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "ModifiersConfiguration",
    "PathsConfiguration",
    "RconConfiguration",
    "ServerConfiguration",
    "WatchdogConfiguration",
    "copy_value",
    "deep_merge",
    "load_config",
    "parse_env_vars",
    "parse_string_value",
    "read_toml_file",
    "set_nested_key",
    "validate_config",
]
