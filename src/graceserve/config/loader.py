"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (applied by the caller on the returned config)
2. Environment variables (GRACESERVE_*)
3. Config file (TOML)
4. Default values

Environment variables:
- GRACESERVE_CONFIG_PATH: Path to config file
- GRACESERVE_ADDRESS: Listen address (host:port)
- GRACESERVE_SHUTDOWN_TIMEOUT: Graceful shutdown grace period in seconds
- GRACESERVE_READ_TIMEOUT: Request body read timeout in seconds
- GRACESERVE_WRITE_TIMEOUT: Response write timeout in seconds
- GRACESERVE_IDLE_TIMEOUT: Keep-alive idle timeout in seconds
- GRACESERVE_STATIC_DIR: Directory to serve static files from
- GRACESERVE_STATIC_PREFIX: URL prefix for static files
- GRACESERVE_CACHE_TTL: Static file cache TTL in seconds
- GRACESERVE_LOG_LEVEL: debug, info, warning or error
- GRACESERVE_LOG_FORMAT: text or json
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from graceserve.config.env import EnvReader
from graceserve.config.models import (
    GraceserveConfig,
    LoggingConfig,
    ServerConfig,
    StaticConfig,
)
from graceserve.options import (
    ServerOption,
    with_graceful_shutdown,
    with_idle_timeout,
    with_max_header_bytes,
    with_read_header_timeout,
    with_read_timeout,
    with_write_timeout,
)

logger = logging.getLogger(__name__)

_SECTIONS: dict[str, type] = {
    "server": ServerConfig,
    "static": StaticConfig,
    "logging": LoggingConfig,
}

_PATH_FIELDS = {("static", "directory"), ("logging", "file")}


class ConfigError(Exception):
    """The configuration file or environment holds invalid settings."""


def load_config_file(path: Path | None) -> dict[str, Any]:
    """Load configuration from a TOML file.

    Args:
        path: Path to config file. None means no file.

    Returns:
        Parsed configuration dict. Empty dict if the file doesn't exist.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    if path is None:
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e


def _env_values(reader: EnvReader) -> dict[str, dict[str, Any]]:
    values: dict[str, dict[str, Any]] = {
        "server": {
            "address": reader.get_str("GRACESERVE_ADDRESS"),
            "shutdown_timeout": reader.get_float("GRACESERVE_SHUTDOWN_TIMEOUT"),
            "read_timeout": reader.get_float("GRACESERVE_READ_TIMEOUT"),
            "write_timeout": reader.get_float("GRACESERVE_WRITE_TIMEOUT"),
            "idle_timeout": reader.get_float("GRACESERVE_IDLE_TIMEOUT"),
        },
        "static": {
            "directory": reader.get_path("GRACESERVE_STATIC_DIR"),
            "prefix": reader.get_str("GRACESERVE_STATIC_PREFIX"),
            "cache_ttl": reader.get_float("GRACESERVE_CACHE_TTL"),
        },
        "logging": {
            "level": reader.get_str("GRACESERVE_LOG_LEVEL"),
            "format": reader.get_str("GRACESERVE_LOG_FORMAT"),
        },
    }
    # Unset variables leave lower-precedence values alone
    return {
        section: {key: value for key, value in fields.items() if value is not None}
        for section, fields in values.items()
    }


def _file_section(file_config: Mapping[str, Any], section: str) -> dict[str, Any]:
    values = file_config.get(section, {})
    if not isinstance(values, dict):
        raise ConfigError(f"[{section}] must be a table")
    values = dict(values)
    for path_section, key in _PATH_FIELDS:
        if path_section == section and isinstance(values.get(key), str):
            values[key] = Path(values[key]).expanduser()
    return values


def get_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> GraceserveConfig:
    """Get graceserve configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides GRACESERVE_CONFIG_PATH).
        env: Optional mapping used instead of os.environ, for testing.

    Returns:
        GraceserveConfig with merged configuration.

    Raises:
        ConfigError: If the config file cannot be parsed or a setting is
            invalid.
    """
    reader = EnvReader(env)
    if config_path is None:
        config_path = reader.get_path("GRACESERVE_CONFIG_PATH", must_exist=False)

    file_config = load_config_file(config_path)
    env_config = _env_values(reader)

    sections: dict[str, Any] = {}
    for name, section_type in _SECTIONS.items():
        merged = {**_file_section(file_config, name), **env_config.get(name, {})}
        try:
            sections[name] = section_type(**merged)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid [{name}] configuration: {e}") from e

    return GraceserveConfig(**sections)


def server_options(config: ServerConfig) -> list[ServerOption]:
    """Translate a ServerConfig into Server options."""
    return [
        with_read_timeout(config.read_timeout),
        with_read_header_timeout(config.read_header_timeout),
        with_write_timeout(config.write_timeout),
        with_idle_timeout(config.idle_timeout),
        with_max_header_bytes(config.max_header_bytes),
        with_graceful_shutdown(config.shutdown_timeout),
    ]
