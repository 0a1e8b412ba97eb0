"""Server options.

A ``Server`` is configured by applying an ordered list of option
callables to a default-initialised instance; later options override
earlier ones on the same field. Options only touch configuration, never
sockets, so they are safe to build ahead of time and reuse.

Example:
    server = Server(
        "127.0.0.1:8080",
        app,
        with_read_timeout(2.0),
        with_graceful_shutdown(10.0),
    )
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Union

from aiohttp import web

if TYPE_CHECKING:
    from graceserve.server import Server

RequestHandler = Callable[[web.BaseRequest], Awaitable[web.StreamResponse]]
Handler = Union[web.Application, RequestHandler]

# Called once per TLS connection with the ALPN protocol the client
# negotiated (None when ALPN was not used).
TLSNextProtoCallback = Callable[[web.BaseRequest, Union[str, None]], Any]

ServerOption = Callable[["Server"], None]

DEFAULT_READ_TIMEOUT = 5.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_IDLE_TIMEOUT = 15.0
DEFAULT_MAX_HEADER_BYTES = 1 << 20  # 1 MiB
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class Logger(Protocol):
    """Lifecycle logging sink.

    Any ``logging.Logger`` or ``logging.LoggerAdapter`` satisfies it.
    Key-values are passed through ``extra``.
    """

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


@dataclass
class HTTPSettings:
    """Settings of the underlying aiohttp server.

    Durations are seconds; 0 means unbounded unless noted otherwise.
    """

    address: str
    handler: Handler
    read_timeout: float = DEFAULT_READ_TIMEOUT
    read_header_timeout: float = 0.0
    write_timeout: float = DEFAULT_WRITE_TIMEOUT
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    max_header_bytes: int = DEFAULT_MAX_HEADER_BYTES
    ssl_context: ssl.SSLContext | None = None
    tls_next_proto: TLSNextProtoCallback | None = None
    error_log: logging.Logger | None = None

    @property
    def effective_idle_timeout(self) -> float:
        """Keep-alive idle bound: idle timeout, else read timeout, else 0."""
        return self.idle_timeout or self.read_timeout

    @property
    def effective_max_header_bytes(self) -> int:
        return self.max_header_bytes or DEFAULT_MAX_HEADER_BYTES


def with_preconfigured_server(settings: HTTPSettings) -> ServerOption:
    """Replace the entire underlying server settings.

    Useful for TLS or other setups that are easier to express as a
    complete HTTPSettings value. Options applied after this one still
    override individual fields.
    """

    def apply(server: Server) -> None:
        server.http = settings

    return apply


def with_read_timeout(seconds: float) -> ServerOption:
    """Set the maximum duration for reading a request body.

    The clock starts once the headers are parsed; a handler reading a
    body that has not fully arrived by then gets a 408. Header parsing
    itself is not covered: aiohttp reads headers inside its protocol
    without a per-request deadline, so a client trickling header bytes
    is not timed out by this setting.

    Also the keep-alive idle bound when no idle timeout is set.
    A duration of 0 means no timeout.
    """

    def apply(server: Server) -> None:
        server.http.read_timeout = seconds

    return apply


def with_read_header_timeout(seconds: float) -> ServerOption:
    """Cap the time a connection may wait before sending its next request.

    aiohttp parses headers inside its protocol and keeps a single timer
    for both new connections and keep-alive idling; a non-zero value caps
    that timer. A duration of 0 means no cap.
    """

    def apply(server: Server) -> None:
        server.http.read_header_timeout = seconds

    return apply


def with_write_timeout(seconds: float) -> ServerOption:
    """Set the maximum duration for producing a response.

    A request whose handler runs longer gets a 503. A duration of 0 means
    no timeout.
    """

    def apply(server: Server) -> None:
        server.http.write_timeout = seconds

    return apply


def with_idle_timeout(seconds: float) -> ServerOption:
    """Set the keep-alive idle timeout.

    If zero, the read timeout is used. If both are zero, aiohttp's own
    keep-alive default applies.
    """

    def apply(server: Server) -> None:
        server.http.idle_timeout = seconds

    return apply


def with_max_header_bytes(size: int) -> ServerOption:
    """Set the maximum size of a request line or header field.

    If zero, the default of 1 MiB is used.
    """

    def apply(server: Server) -> None:
        server.http.max_header_bytes = size

    return apply


def with_tls_config(context: ssl.SSLContext | None) -> ServerOption:
    """Serve HTTPS using the given SSL context. None disables TLS."""

    def apply(server: Server) -> None:
        server.http.ssl_context = context

    return apply


def with_tls_next_proto(callback: TLSNextProtoCallback) -> ServerOption:
    """Register a hook invoked once per TLS connection after the handshake.

    The callback receives the first request on the connection and the
    negotiated ALPN protocol. It may be a plain function or a coroutine
    function.
    """

    def apply(server: Server) -> None:
        server.http.tls_next_proto = callback

    return apply


def with_error_log(error_logger: logging.Logger | None) -> ServerOption:
    """Set the logger aiohttp uses for low-level server errors.

    If None, aiohttp's ``aiohttp.server`` logger is used.
    """

    def apply(server: Server) -> None:
        server.http.error_log = error_logger

    return apply


def with_graceful_shutdown(seconds: float) -> ServerOption:
    """Set the graceful shutdown grace period.

    If zero, the default of 5 seconds is used.
    """

    def apply(server: Server) -> None:
        server.shutdown_timeout = seconds or DEFAULT_SHUTDOWN_TIMEOUT

    return apply


def with_logger(lifecycle_logger: Logger | None) -> ServerOption:
    """Set the lifecycle logger. None keeps the default logger."""

    def apply(server: Server) -> None:
        if lifecycle_logger is not None:
            server.log = lifecycle_logger

    return apply
