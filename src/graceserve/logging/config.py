"""Root logger setup driven by LoggingConfig."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from graceserve.logging.context import RequestContextFilter
from graceserve.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from graceserve.config.models import LoggingConfig

# request_tag is "[GET /path] " inside a request and empty otherwise.
TEXT_FORMAT = "%(asctime)s - %(request_tag)s%(name)s - %(levelname)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = {
    name: getattr(logging, name.upper())
    for name in ("debug", "info", "warning", "error")
}


def _make_formatter(fmt: str) -> logging.Formatter:
    if fmt.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def _open_log_file(config: LoggingConfig) -> logging.Handler | None:
    """Return a rotating handler for config.file, or None if it can't be opened."""
    if not config.file:
        return None
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Logging isn't up yet, so this goes straight to stderr.
        print(f"Warning: Could not open log file {config.file}: {e}", file=sys.stderr)
        return None


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root logger's handlers according to config.

    Logs go to the configured file, to stderr, or both. An unusable log
    file falls back to stderr rather than failing startup.
    """
    level = _LEVELS.get(config.level.casefold(), logging.INFO)

    handlers: list[logging.Handler] = []
    file_handler = _open_log_file(config)
    if file_handler is not None:
        handlers.append(file_handler)
    if config.include_stderr or file_handler is None:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = _make_formatter(config.format)
    request_filter = RequestContextFilter()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(request_filter)
        root.addHandler(handler)

    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))
