"""Configuration data models for graceserve.

Each section is a dataclass that validates itself in ``__post_init__``;
``GraceserveConfig`` aggregates them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from graceserve.options import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_MAX_HEADER_BYTES,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
)


@dataclass
class ServerConfig:
    """Listener and lifecycle settings for `graceserve serve`."""

    address: str = "127.0.0.1:8080"
    """Listen address as host:port. Default localhost for security."""

    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    """Seconds in-flight requests get to finish on shutdown."""

    read_timeout: float = DEFAULT_READ_TIMEOUT
    read_header_timeout: float = 0.0
    write_timeout: float = DEFAULT_WRITE_TIMEOUT
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT

    max_header_bytes: int = DEFAULT_MAX_HEADER_BYTES
    """Cap on request line and header field size; 0 means the default."""

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.address:
            raise ValueError("address must not be empty")
        for name in (
            "shutdown_timeout",
            "read_timeout",
            "read_header_timeout",
            "write_timeout",
            "idle_timeout",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.max_header_bytes < 0:
            raise ValueError(
                f"max_header_bytes must be non-negative, got {self.max_header_bytes}"
            )


@dataclass
class StaticConfig:
    """Static file serving settings."""

    # Directory to serve (None = static serving disabled)
    directory: Path | None = None

    # URL prefix the files are served under
    prefix: str = "/static"

    # Seconds clients may cache a file (0 = no caching headers)
    cache_ttl: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.prefix.startswith("/"):
            raise ValueError(f"prefix must start with '/', got {self.prefix!r}")
        if self.cache_ttl < 0:
            raise ValueError(f"cache_ttl must be non-negative, got {self.cache_ttl}")


LOG_LEVELS = ("debug", "info", "warning", "error")
LOG_FORMATS = ("text", "json")


@dataclass
class LoggingConfig:
    """Where and how log records are written."""

    level: str = "info"
    format: str = "text"

    # None logs to stderr only
    file: Path | None = None
    include_stderr: bool = False

    # RotatingFileHandler limits for ``file``
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    def __post_init__(self) -> None:
        if self.level.lower() not in LOG_LEVELS:
            raise ValueError(
                f"level must be one of {', '.join(LOG_LEVELS)}, got {self.level!r}"
            )
        if self.format.lower() not in LOG_FORMATS:
            raise ValueError(
                f"format must be one of {', '.join(LOG_FORMATS)}, got {self.format!r}"
            )
        if self.max_bytes < 0 or self.backup_count < 0:
            raise ValueError("max_bytes and backup_count must be non-negative")


@dataclass
class GraceserveConfig:
    """Top-level configuration: one attribute per TOML table."""

    server: ServerConfig = field(default_factory=ServerConfig)
    static: StaticConfig = field(default_factory=StaticConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
