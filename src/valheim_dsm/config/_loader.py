# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""TOML configuration loading and merging.

Sources, lowest precedence first: model defaults, the config file,
``VALHEIM_DSM_*`` environment variables, explicit overrides.
"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from valheim_dsm.exceptions import ConfigLoadError, ConfigValidationError
from valheim_dsm.utils._paths import get_config_file

from ._models import AppConfig

ENV_PREFIX = "VALHEIM_DSM_"


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content as dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigLoadError: If the file cannot be parsed or read.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file: {e}"
        # lineno/colno only exist on Python 3.14+.
        line: int | None = getattr(e, "lineno", None)
        column: int | None = getattr(e, "colno", None)
        raise ConfigLoadError(msg, path=path, line=line, column=column) from e
    except FileNotFoundError:
        raise
    except OSError as e:
        msg = f"Failed to read config file: {e}"
        raise ConfigLoadError(msg, path=path) from e


def deep_merge(
    base: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    override: dict[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Deep merge two configuration dictionaries.

    Neither input is modified. Nested tables merge recursively; any other
    value in ``override`` replaces the one in ``base``.
    """
    result = {key: copy_value(value) for key, value in base.items()}
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy_value(value)
    return result


def copy_value(value: Any) -> Any:  # pyright: ignore[reportExplicitAny]
    """Deep copy nested dicts and lists; other values are returned as is."""
    if isinstance(value, dict):
        return {k: copy_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    return value


def parse_string_value(value: str) -> Any:  # pyright: ignore[reportExplicitAny]
    """Parse a string value with type inference.

    Precedence: boolean (true/false), integer, float (with a decimal
    point), JSON array or object, then the string itself.

    Examples:
        >>> parse_string_value("true")
        True
        >>> parse_string_value("2456")
        2456
        >>> parse_string_value("Midgard")
        'Midgard'
    """
    lower_value = value.lower()
    if lower_value in ("true", "false"):
        return lower_value == "true"

    try:
        return int(value)
    except ValueError:
        pass

    if "." in value:
        try:
            return float(value)
        except ValueError:
            pass

    if (value.startswith("[") and value.endswith("]")) or (value.startswith("{") and value.endswith("}")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def set_nested_key(
    d: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    key_path: str,
    value: Any,  # pyright: ignore[reportExplicitAny]
) -> None:
    """Set a value at a dotted key path, creating intermediate tables.

    Example:
        >>> d = {}
        >>> set_nested_key(d, "server.port", 2456)
        >>> d
        {'server': {'port': 2456}}
    """
    parts = key_path.split(".")
    current = d
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def parse_env_vars(prefix: str = ENV_PREFIX) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Parse prefixed environment variables into a config dictionary.

    ``VALHEIM_DSM_SERVER__PORT=2457`` becomes ``{"server": {"port": 2457}}``.
    Variables without a section (``VALHEIM_DSM_HOME``) land at the root,
    where the config model ignores them.
    """
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        if not config_key:
            continue
        set_nested_key(result, config_key.replace("__", ".").lower(), parse_string_value(value))
    return result


def validate_config(
    data: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    *,
    source: str | None = None,
) -> AppConfig:
    """Validate a merged configuration dictionary.

    Raises:
        ConfigValidationError: Describing the first invalid key.
    """
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        first = errors[0]
        key = ".".join(str(part) for part in first.get("loc", ()))
        ctx = first.get("ctx") or {}
        expected = ", ".join(f"{name}={value}" for name, value in ctx.items() if name != "error")
        msg = f"Invalid configuration value for '{key}': {first.get('msg', 'validation error')}"
        if len(errors) > 1:
            msg += f" (and {len(errors) - 1} more)"
        raise ConfigValidationError(
            msg,
            key=key,
            value=first.get("input"),
            expected=expected or first.get("type", ""),
            source=source,
        ) from e


def load_config(
    path: Path | None = None,
    *,
    include_env: bool = True,
    overrides: dict[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
) -> AppConfig:
    """Load the application configuration.

    Args:
        path: Explicit config file, which must exist. Defaults to
            ``<app dir>/config.toml``, which may be absent.
        include_env: Apply ``VALHEIM_DSM_*`` environment variables.
        overrides: Highest-precedence values, e.g. from command line flags.

    Returns:
        The validated configuration.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed, or an
            explicit path does not exist.
        ConfigValidationError: If a value is invalid.
    """
    config_path = path if path is not None else get_config_file()
    data: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    try:
        data = read_toml_file(config_path)
    except FileNotFoundError as e:
        if path is not None:
            msg = f"Config file not found: {path}"
            raise ConfigLoadError(msg, path=path) from e

    if include_env:
        data = deep_merge(data, parse_env_vars())
    if overrides:
        data = deep_merge(data, overrides)

    return validate_config(data, source=str(config_path))
