"""Unit tests for Server construction and lifecycle edges."""

import logging
from unittest.mock import MagicMock

import pytest
from aiohttp import web

from graceserve.errors import (
    EmptyAddressError,
    NilHandlerError,
    ServerConfigError,
    ServerStartError,
)
from graceserve.lifecycle import ServerState
from graceserve.options import with_read_timeout, with_write_timeout
from graceserve.server import Server, _split_address, run


async def handler(request: web.BaseRequest) -> web.Response:
    return web.Response(text="ok")


class TestConstruction:
    """Construction validates address and handler before touching sockets."""

    @pytest.mark.parametrize("address", [":8080", "127.0.0.1:0", "[::1]:8080"])
    def test_valid_inputs(self, address: str) -> None:
        server = Server(address, handler)
        assert server.state is ServerState.NOT_STARTED
        assert server.addresses == []

    def test_empty_address(self) -> None:
        with pytest.raises(EmptyAddressError):
            Server("", handler)

    def test_none_handler(self) -> None:
        with pytest.raises(NilHandlerError):
            Server(":8080", None)

    def test_empty_address_checked_first(self) -> None:
        with pytest.raises(EmptyAddressError):
            Server("", None)

    def test_invalid_construction_applies_no_options(self) -> None:
        option = MagicMock()
        with pytest.raises(ServerConfigError):
            Server("", handler, option)
        option.assert_not_called()

    def test_options_applied_in_order(self) -> None:
        calls: list[str] = []

        def first(server: Server) -> None:
            calls.append("first")

        def second(server: Server) -> None:
            calls.append("second")

        Server(":8080", handler, first, second)
        assert calls == ["first", "second"]

    def test_application_handler_accepted(self) -> None:
        server = Server(":8080", web.Application())
        assert isinstance(server.http.handler, web.Application)


class TestSplitAddress:
    """host:port parsing."""

    @pytest.mark.parametrize(
        ("address", "expected"),
        [
            (":8080", (None, 8080)),
            ("127.0.0.1:80", ("127.0.0.1", 80)),
            ("localhost:8080", ("localhost", 8080)),
            ("[::1]:8443", ("::1", 8443)),
        ],
    )
    def test_valid(self, address: str, expected: tuple) -> None:
        assert _split_address(address) == expected

    @pytest.mark.parametrize("address", ["localhost", "127.0.0.1:http", "host:"])
    def test_invalid(self, address: str) -> None:
        with pytest.raises(ValueError):
            _split_address(address)


class TestNeverStarted:
    """Stop and close on a server that never started."""

    @pytest.mark.asyncio
    async def test_close_returns_none(self) -> None:
        server = Server("127.0.0.1:0", handler)
        assert await server.close() is None
        assert await server.close() is None
        assert server.state is ServerState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_stop_returns_none(self) -> None:
        server = Server("127.0.0.1:0", handler)
        assert await server.stop() is None
        assert server.state is ServerState.NOT_STARTED


class TestStartFailures:
    """Failures surfaced by start()."""

    @pytest.mark.asyncio
    async def test_bad_address_is_start_error(self) -> None:
        server = Server("no-port-here", handler)
        with pytest.raises(ServerStartError) as exc_info:
            await server.start()
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert server.state is ServerState.STOPPED

    @pytest.mark.asyncio
    async def test_start_on_stopped_server_fails(self) -> None:
        server = Server("no-port-here", handler)
        with pytest.raises(ServerStartError):
            await server.start()
        with pytest.raises(ServerStartError, match="listener unavailable"):
            await server.start()

    @pytest.mark.asyncio
    async def test_start_error_is_logged(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        server = Server("no-port-here", handler)
        with caplog.at_level(logging.INFO, logger="graceserve.server"):
            with pytest.raises(ServerStartError):
                await server.start()

        messages = [record.getMessage() for record in caplog.records]
        assert any(m.startswith("starting HTTP server") for m in messages)
        assert any(m.startswith("server stopped with error") for m in messages)

    @pytest.mark.asyncio
    async def test_run_validates_arguments(self) -> None:
        with pytest.raises(EmptyAddressError):
            await run("", handler)
        with pytest.raises(NilHandlerError):
            await run(":8080", None)


class TestMakeRunner:
    """Runner construction from settings."""

    @pytest.mark.asyncio
    async def test_plain_handler_uses_server_runner(self) -> None:
        server = Server("127.0.0.1:0", handler)
        runner = server._make_runner()
        assert isinstance(runner, web.ServerRunner)

    @pytest.mark.asyncio
    async def test_application_gets_middlewares_in_front(self) -> None:
        @web.middleware
        async def user_middleware(request, handler):
            return await handler(request)

        app = web.Application(middlewares=[user_middleware])
        server = Server("127.0.0.1:0", app)

        runner = server._make_runner()

        assert isinstance(runner, web.AppRunner)
        # tracking, write timeout, read timeout, then the app's own
        assert len(app.middlewares) == 4
        assert app.middlewares[-1] is user_middleware

    @pytest.mark.asyncio
    async def test_disabled_timeouts_add_no_middleware(self) -> None:
        app = web.Application()
        server = Server(
            "127.0.0.1:0", app, with_read_timeout(0), with_write_timeout(0)
        )

        server._make_runner()

        assert len(app.middlewares) == 1

    @pytest.mark.asyncio
    async def test_tls_hook_needs_tls(self) -> None:
        from graceserve.options import with_tls_next_proto

        app = web.Application()
        server = Server(
            "127.0.0.1:0",
            app,
            with_tls_next_proto(lambda request, protocol: None),
            with_read_timeout(0),
            with_write_timeout(0),
        )

        server._make_runner()

        assert len(app.middlewares) == 1


def test_repr_shows_state() -> None:
    server = Server("127.0.0.1:0", handler)
    assert repr(server) == "<Server 127.0.0.1:0 not-started>"
