"""Structured logging module for graceserve.

Provides configurable logging with JSON format support and file rotation.
Includes request context support for handler log lines.
"""

from graceserve.logging.config import configure_logging
from graceserve.logging.context import (
    ComponentLogger,
    RequestContextFilter,
    clear_request_context,
    get_request_context,
    request_context,
    set_request_context,
)
from graceserve.logging.handlers import JSONFormatter

__all__ = [
    "ComponentLogger",
    "JSONFormatter",
    "RequestContextFilter",
    "clear_request_context",
    "configure_logging",
    "get_request_context",
    "request_context",
    "set_request_context",
]
