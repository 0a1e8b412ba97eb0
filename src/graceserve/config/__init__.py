"""Configuration for the graceserve command line server."""

from graceserve.config.env import EnvReader
from graceserve.config.loader import (
    ConfigError,
    get_config,
    load_config_file,
    server_options,
)
from graceserve.config.models import (
    GraceserveConfig,
    LoggingConfig,
    ServerConfig,
    StaticConfig,
)

__all__ = [
    "ConfigError",
    "EnvReader",
    "GraceserveConfig",
    "LoggingConfig",
    "ServerConfig",
    "StaticConfig",
    "get_config",
    "load_config_file",
    "server_options",
]
