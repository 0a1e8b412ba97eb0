"""Logging context for the server.

Provides two pieces of context for log records:

- ``ComponentLogger``: a LoggerAdapter that stamps a fixed set of
  key-values (e.g. ``component=httpserver``) on every record while still
  merging per-call ``extra`` key-values.
- Request context propagated with contextvars, so log lines emitted while
  a request is being handled carry its method and path.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

_http_method: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "http_method", default=None
)
_http_path: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "http_path", default=None
)


class ComponentLogger(logging.LoggerAdapter):
    """LoggerAdapter that merges fixed key-values into per-call extras.

    Example:
        log = ComponentLogger(logging.getLogger(__name__), {"component": "httpserver"})
        log.info("starting HTTP server", extra={"addr": ":8080"})
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def set_request_context(method: str, path: str) -> None:
    """Set the request being handled in the current context."""
    _http_method.set(method)
    _http_path.set(path)


def clear_request_context() -> None:
    """Clear the current request context."""
    _http_method.set(None)
    _http_path.set(None)


def get_request_context() -> tuple[str | None, str | None]:
    """Get current request context.

    Returns:
        Tuple of (method, path), either may be None.
    """
    return _http_method.get(), _http_path.get()


@contextmanager
def request_context(method: str, path: str) -> Generator[None, None, None]:
    """Context manager for request handling context.

    Sets request context on entry, restores the previous one on exit.
    Each aiohttp handler runs in its own task, so contexts never leak
    between concurrent requests.

    Example:
        with request_context(request.method, request.path):
            logger.info("Serving file")  # Automatically includes context
    """
    old_method = _http_method.get()
    old_path = _http_path.get()
    try:
        set_request_context(method, path)
        yield
    finally:
        _http_method.set(old_method)
        _http_path.set(old_path)


class RequestContextFilter(logging.Filter):
    """Logging filter that injects request context into log records.

    Adds http_method and http_path attributes from contextvars. For text
    format, also adds a compact request_tag like ``[GET /static/app.js] ``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        method, path = get_request_context()

        record.http_method = method
        record.http_path = path

        if method and path:
            record.request_tag = f"[{method} {path}] "
        else:
            record.request_tag = ""

        return True  # Never filter out records
