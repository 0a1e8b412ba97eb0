"""Server-side request middlewares.

The coordinator wraps every request handler with these middlewares:

- in-flight tracking, which graceful shutdown waits on;
- request-body delivery deadline (read timeout);
- response deadline (write timeout);
- the TLS next-protocol hook.

For an ``aiohttp.web.Application`` they are inserted at the front of
``app.middlewares``; a plain handler callable is wrapped with
``wrap_handler``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import TYPE_CHECKING

from aiohttp import web

from graceserve.logging.context import request_context

if TYPE_CHECKING:
    from graceserve.lifecycle import ServerLifecycle
    from graceserve.options import RequestHandler, TLSNextProtoCallback

logger = logging.getLogger(__name__)

Middleware = Callable[
    [web.Request, "RequestHandler"], Awaitable[web.StreamResponse]
]


def create_tracking_middleware(lifecycle: ServerLifecycle) -> Middleware:
    """Count in-flight requests on the lifecycle and set logging context."""

    @web.middleware
    async def tracking_middleware(
        request: web.Request, handler: RequestHandler
    ) -> web.StreamResponse:
        lifecycle.request_started()
        try:
            with request_context(request.method, request.path):
                return await handler(request)
        finally:
            lifecycle.request_finished()

    return tracking_middleware


class RequestBodyTimeout(TimeoutError):
    """Raised by request body reads once the read deadline has passed."""


def create_read_timeout_middleware(timeout: float) -> Middleware:
    """Bound the time a client may take to deliver the request body.

    The body is left untouched for the handler to read, stream or parse
    as it likes. A timer armed when the handler starts checks whether the
    whole body has arrived; if not, the payload is failed so the handler's
    next read raises ``RequestBodyTimeout``, which is answered with 408.
    """

    @web.middleware
    async def read_timeout_middleware(
        request: web.Request, handler: RequestHandler
    ) -> web.StreamResponse:
        if not request.can_read_body:
            return await handler(request)

        payload = request.content

        def expire() -> None:
            if payload.is_eof():
                return
            logger.warning(
                "Request body not received within %.1fs: %s %s",
                timeout,
                request.method,
                request.path,
            )
            payload.set_exception(RequestBodyTimeout())

        timer = asyncio.get_running_loop().call_later(timeout, expire)
        try:
            return await handler(request)
        except RequestBodyTimeout as e:
            raise web.HTTPRequestTimeout() from e
        finally:
            timer.cancel()

    return read_timeout_middleware


def create_write_timeout_middleware(timeout: float) -> Middleware:
    """Bound the time a handler may take to produce its response.

    A handler still running at the deadline is cancelled and the client
    gets a 503. If the response was already being streamed, aiohttp drops
    the connection instead.
    """

    @web.middleware
    async def write_timeout_middleware(
        request: web.Request, handler: RequestHandler
    ) -> web.StreamResponse:
        try:
            return await asyncio.wait_for(handler(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Handler exceeded write timeout of %.1fs: %s %s",
                timeout,
                request.method,
                request.path,
            )
            raise web.HTTPServiceUnavailable(text="handler timeout")

    return write_timeout_middleware


def create_tls_next_proto_middleware(callback: TLSNextProtoCallback) -> Middleware:
    """Invoke ``callback`` on the first request of every TLS connection."""
    # One SSLObject per TLS connection; weak so closed connections drop out.
    seen: weakref.WeakSet = weakref.WeakSet()

    @web.middleware
    async def tls_next_proto_middleware(
        request: web.Request, handler: RequestHandler
    ) -> web.StreamResponse:
        ssl_object = (
            request.transport.get_extra_info("ssl_object")
            if request.transport is not None
            else None
        )
        if ssl_object is not None and ssl_object not in seen:
            seen.add(ssl_object)
            result = callback(request, ssl_object.selected_alpn_protocol())
            if inspect.isawaitable(result):
                await result
        return await handler(request)

    return tls_next_proto_middleware


def wrap_handler(
    handler: RequestHandler, middlewares: Sequence[Middleware]
) -> RequestHandler:
    """Apply middlewares to a plain handler, first one outermost."""
    for middleware in reversed(middlewares):
        handler = partial(middleware, handler=handler)
    return handler
