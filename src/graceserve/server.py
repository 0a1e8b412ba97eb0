"""HTTP server lifecycle coordinator.

A ``Server`` wraps one aiohttp listener and supervises two tasks while it
runs: the accept side, which binds the listener and waits until it is
closed, and a shutdown watcher, which waits for the caller's shutdown
event or SIGINT/SIGTERM and then drains the server with a bounded grace
period. If draining does not finish in time the remaining connections are
force-closed.

Example:
    server = Server("127.0.0.1:8080", app, with_graceful_shutdown(10.0))
    await server.start(shutdown_event)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Coroutine
from typing import Any

from aiohttp import web

from graceserve.errors import (
    EmptyAddressError,
    NilHandlerError,
    ServerError,
    ServerForceCloseError,
    ServerStartError,
    ServerStopError,
)
from graceserve.lifecycle import ServerLifecycle, ServerState
from graceserve.logging.context import ComponentLogger
from graceserve.middleware import (
    Middleware,
    create_read_timeout_middleware,
    create_tls_next_proto_middleware,
    create_tracking_middleware,
    create_write_timeout_middleware,
    wrap_handler,
)
from graceserve.options import (
    DEFAULT_SHUTDOWN_TIMEOUT,
    Handler,
    HTTPSettings,
    Logger,
    ServerOption,
)
from graceserve.signals import shutdown_signals

# Upper bound on releasing the runner once every connection was
# force-closed; handlers that ignore cancellation make close() fail.
FORCE_CLOSE_TIMEOUT = 2.0


def _validate(address: str, handler: Handler | None) -> None:
    if not address:
        raise EmptyAddressError()
    if handler is None:
        raise NilHandlerError()


def _split_address(address: str) -> tuple[str | None, int]:
    """Split ``host:port`` into its parts.

    An empty host (``":8080"``) listens on all interfaces. IPv6 hosts are
    written in brackets (``"[::1]:8080"``).

    Raises:
        ValueError: If the port is missing or not a number.
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    host = host.strip("[]")
    return host or None, int(port)


async def _wait_first(*aws: Coroutine[Any, Any, Any]) -> None:
    """Wait until any of the given coroutines completes."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()


class Server:
    """Graceful lifecycle wrapper around one aiohttp listener.

    Args:
        address: Listen address as ``host:port``; ``":port"`` listens on
            all interfaces.
        handler: An ``aiohttp.web.Application`` or an
            ``async (request) -> StreamResponse`` callable.
        *options: Option callables from ``graceserve.options``, applied
            in order.

    Raises:
        EmptyAddressError: If ``address`` is empty.
        NilHandlerError: If ``handler`` is None.
    """

    def __init__(
        self, address: str, handler: Handler | None, *options: ServerOption
    ) -> None:
        _validate(address, handler)

        self.http = HTTPSettings(address=address, handler=handler)
        self.shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
        self.log: Logger = ComponentLogger(
            logging.getLogger(__name__), {"component": "httpserver"}
        )

        for option in options:
            option(self)

        # A preconfigured settings object may carry its own address/handler
        _validate(self.http.address, self.http.handler)

        self.lifecycle = ServerLifecycle()
        self._runner: web.BaseRunner | None = None
        self._stop_task: asyncio.Task[None] | None = None
        self._bind_done = asyncio.Event()
        self._listener_closed = asyncio.Event()
        self._stopped = asyncio.Event()
        self._signal_event = asyncio.Event()
        self._received_signal: signal.Signals | None = None

    def __repr__(self) -> str:
        return f"<Server {self.http.address} {self.lifecycle.state.value}>"

    @property
    def state(self) -> ServerState:
        return self.lifecycle.state

    @property
    def addresses(self) -> list[Any]:
        """Socket addresses the listener is bound to, empty when not listening."""
        if self._runner is None:
            return []
        return self._runner.addresses

    async def start(self, shutdown_event: asyncio.Event | None = None) -> None:
        """Serve until shut down.

        Returns once the server is fully stopped after ``shutdown_event``
        was set, a SIGINT/SIGTERM arrived, or ``stop()``/``close()`` was
        called directly. If the task running ``start()`` is cancelled, the
        graceful stop still runs with its grace period before the
        cancellation propagates.

        Raises:
            ServerStartError: If the listener could not be bound, or the
                server was already started.
            ServerStopError: If graceful shutdown did not complete in time.
        """
        self.lifecycle.mark_running()
        self.log.info(
            "starting HTTP server",
            extra={
                "addr": self.http.address,
                "read_timeout": self.http.read_timeout,
                "write_timeout": self.http.write_timeout,
                "idle_timeout": self.http.idle_timeout,
            },
        )

        with shutdown_signals(self._on_signal):
            try:
                async with asyncio.TaskGroup() as group:
                    group.create_task(self._accept(), name="graceserve-accept")
                    group.create_task(
                        self._watch_shutdown(shutdown_event),
                        name="graceserve-shutdown-watcher",
                    )
            except BaseExceptionGroup as group_error:
                error = group_error.exceptions[0]
                self.log.error(
                    "server stopped with error: %s", error, extra={"error": str(error)}
                )
                raise error
            except asyncio.CancelledError:
                self.log.info("start cancelled, initiating shutdown")
                # The accept task has been joined, bound or not
                self._bind_done.set()
                # stop() logs its own failure; the cancellation is what propagates
                with contextlib.suppress(ServerError):
                    await self.stop()
                raise

        self.log.info("server stopped gracefully")

    async def stop(self, timeout: float | None = None) -> None:
        """Stop accepting connections and drain in-flight requests.

        The drain runs in its own task, so cancelling the caller does not
        cut the grace period short. Concurrent and repeated calls wait on
        the same drain.

        Args:
            timeout: Grace period in seconds; defaults to the configured
                shutdown timeout.

        Raises:
            ServerStopError: If requests were still in flight when the
                grace period ran out. Remaining connections have been
                force-closed by then.
        """
        if timeout is None:
            timeout = self.shutdown_timeout
        self.log.info("stopping HTTP server", extra={"timeout": timeout})

        if self._stop_task is None:
            if self.lifecycle.state in (ServerState.NOT_STARTED, ServerState.STOPPED):
                return
            self._stop_task = asyncio.create_task(
                self._stop_gracefully(timeout), name="graceserve-stop"
            )
        await asyncio.shield(self._stop_task)

    async def close(self) -> None:
        """Terminate every connection immediately.

        A server that was never started is left alone.

        Raises:
            ServerForceCloseError: If the listener could not be released.
        """
        if self._runner is None and self.lifecycle.state is ServerState.NOT_STARTED:
            return

        self.log.info("force closing HTTP server")
        try:
            runner = self._runner
            if runner is not None:
                if runner.server is not None:
                    for connection in runner.server.connections:
                        connection.force_close()
                self._listener_closed.set()
                await asyncio.wait_for(
                    self._release_runner(), timeout=FORCE_CLOSE_TIMEOUT
                )
        except Exception as e:
            self.log.error("error during force close: %s", e, extra={"error": str(e)})
            raise ServerForceCloseError(f"server force close failed: {e}") from e
        finally:
            self._listener_closed.set()
            self.lifecycle.mark_stopped()
            self._stopped.set()

    def _on_signal(self, sig: signal.Signals) -> None:
        self._received_signal = sig
        self._signal_event.set()

    async def _accept(self) -> None:
        try:
            await self._listen()
        except Exception as e:
            await self._abort_start()
            raise ServerStartError(f"server failed to start: {e}") from e
        finally:
            self._bind_done.set()
        # Closing the listener during shutdown is the normal way out
        await self._listener_closed.wait()

    async def _listen(self) -> None:
        host, port = _split_address(self.http.address)
        self._runner = self._make_runner()
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port, ssl_context=self.http.ssl_context)
        await site.start()
        self.log.info("listening", extra={"addresses": self._runner.addresses})

    async def _abort_start(self) -> None:
        try:
            await self._release_runner()
        except Exception:
            logging.getLogger(__name__).debug(
                "Failed to release runner after start failure", exc_info=True
            )
        self._listener_closed.set()
        self.lifecycle.mark_stopped()
        self._stopped.set()

    async def _watch_shutdown(self, shutdown_event: asyncio.Event | None) -> None:
        waiters = [self._listener_closed.wait(), self._signal_event.wait()]
        if shutdown_event is not None:
            waiters.append(shutdown_event.wait())
        await _wait_first(*waiters)

        if self._signal_event.is_set():
            sig = self._received_signal
            self.log.info(
                "received shutdown signal",
                extra={"signal": sig.name if sig is not None else None},
            )
        elif shutdown_event is not None and shutdown_event.is_set():
            self.log.info("shutdown requested, initiating shutdown")
        else:
            # stop() or close() was called directly; wait for it to finish
            await self._stopped.wait()
            return

        await self.stop(self.shutdown_timeout)

    async def _stop_gracefully(self, timeout: float) -> None:
        drain = self.lifecycle.begin_drain(timeout)
        self.log.debug(
            "draining %d request(s)",
            drain.in_flight_at_start,
            extra={"deadline_in": drain.remaining()},
        )
        try:
            await asyncio.wait_for(self._shutdown(), timeout=timeout)
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                message = (
                    f"server failed to stop: grace period of {timeout:.1f}s "
                    f"exceeded with {self.lifecycle.requests_in_flight} "
                    "request(s) in flight"
                )
            else:
                message = f"server failed to stop: {e}"
            error = ServerStopError(message)
            self.log.error(
                "error during server shutdown: %s", error, extra={"error": str(error)}
            )
            # close() logs its own failure; the stop error is the one reported
            with contextlib.suppress(ServerForceCloseError):
                await self.close()
            raise error from e

        self.log.info("HTTP server shutdown complete")

    async def _shutdown(self) -> None:
        if self.lifecycle.start_time is not None:
            # Let a bind in progress finish so its listener is closed too
            await self._bind_done.wait()
        runner = self._runner
        if runner is not None:
            for site in list(runner.sites):
                await site.stop()
        self._listener_closed.set()

        if runner is not None and runner.server is not None:
            # Idle keep-alive connections close now, busy ones after
            # their current request.
            runner.server.pre_shutdown()
        await self.lifecycle.wait_idle()

        await self._release_runner()
        self.lifecycle.mark_stopped()
        self._stopped.set()

    async def _release_runner(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def _make_runner(self) -> web.BaseRunner:
        settings = self.http
        kwargs: dict[str, Any] = {
            "handler_cancellation": True,
            "max_line_size": settings.effective_max_header_bytes,
            "max_field_size": settings.effective_max_header_bytes,
        }
        keepalive = [
            t
            for t in (settings.effective_idle_timeout, settings.read_header_timeout)
            if t > 0
        ]
        if keepalive:
            kwargs["keepalive_timeout"] = min(keepalive)
        if settings.error_log is not None:
            kwargs["logger"] = settings.error_log

        middlewares: list[Middleware] = [create_tracking_middleware(self.lifecycle)]
        if settings.tls_next_proto is not None and settings.ssl_context is not None:
            middlewares.append(
                create_tls_next_proto_middleware(settings.tls_next_proto)
            )
        if settings.write_timeout > 0:
            middlewares.append(create_write_timeout_middleware(settings.write_timeout))
        if settings.read_timeout > 0:
            middlewares.append(create_read_timeout_middleware(settings.read_timeout))

        handler = settings.handler
        if isinstance(handler, web.Application):
            for index, middleware in enumerate(middlewares):
                handler.middlewares.insert(index, middleware)
            return web.AppRunner(
                handler, shutdown_timeout=self.shutdown_timeout, **kwargs
            )

        return web.ServerRunner(
            web.Server(wrap_handler(handler, middlewares), **kwargs),
            shutdown_timeout=self.shutdown_timeout,
        )


async def run(
    address: str, handler: Handler, shutdown_event: asyncio.Event | None = None
) -> None:
    """Serve ``handler`` on ``address`` with default options until shut down.

    Raises:
        EmptyAddressError: If ``address`` is empty.
        NilHandlerError: If ``handler`` is None.
        ServerStartError: If the listener could not be bound.
        ServerStopError: If graceful shutdown did not complete in time.
    """
    server = Server(address, handler)
    await server.start(shutdown_event)
