"""Tests for the serve command."""

from __future__ import annotations

import os
import socket
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from conftest import APP_JS

from graceserve.cli import main
from graceserve.cli.exit_codes import ExitCode
from graceserve.cli.serve import create_app, run_server, serve_command
from graceserve.config import GraceserveConfig, ServerConfig, StaticConfig
from graceserve.errors import ServerForceCloseError, ServerStopError


@pytest.fixture
def mock_run(monkeypatch: pytest.MonkeyPatch) -> Iterator[MagicMock]:
    """Stop serve_command short of starting the event loop.

    Yields the run_server mock; its call args hold the merged config.
    """
    for var in [name for name in os.environ if name.startswith("GRACESERVE_")]:
        monkeypatch.delenv(var)
    with (
        patch("graceserve.cli.serve.run_server") as run_server_mock,
        patch("graceserve.cli.serve.asyncio.run", return_value=ExitCode.SUCCESS),
        patch("graceserve.cli.serve.configure_logging"),
    ):
        yield run_server_mock


class TestServeCommand:
    """Tests for flag handling."""

    def test_defaults(self, mock_run: MagicMock) -> None:
        """Running with no flags uses the default configuration."""
        result = CliRunner().invoke(serve_command, [], catch_exceptions=False)

        assert result.exit_code == ExitCode.SUCCESS
        config = mock_run.call_args.args[0]
        assert config.server.address == "127.0.0.1:8080"
        assert config.static.directory is None

    def test_flags_override_config(
        self, mock_run: MagicMock, tmp_path: Path
    ) -> None:
        """CLI flags take precedence over the config file."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text('[server]\naddress = ":1"\n[static]\ncache_ttl = 5\n')

        result = CliRunner().invoke(
            serve_command,
            [
                "--config",
                str(config_file),
                "--address",
                "127.0.0.1:9000",
                "--static-dir",
                str(tmp_path),
                "--static-prefix",
                "/assets",
                "--cache-ttl",
                "600",
                "--shutdown-timeout",
                "2.5",
                "--log-format",
                "json",
            ],
            catch_exceptions=False,
        )

        assert result.exit_code == ExitCode.SUCCESS
        config = mock_run.call_args.args[0]
        assert config.server.address == "127.0.0.1:9000"
        assert config.server.shutdown_timeout == 2.5
        assert config.static.directory == tmp_path
        assert config.static.prefix == "/assets"
        assert config.static.cache_ttl == 600
        assert config.logging.format == "json"

    def test_config_file_values_kept_without_flags(
        self, mock_run: MagicMock, tmp_path: Path
    ) -> None:
        """Settings absent from the command line come from the file."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text("[static]\ncache_ttl = 5\n")

        CliRunner().invoke(
            serve_command, ["-c", str(config_file)], catch_exceptions=False
        )

        assert mock_run.call_args.args[0].static.cache_ttl == 5

    def test_invalid_config_file(self, mock_run: MagicMock, tmp_path: Path) -> None:
        """A broken config file exits with CONFIG_ERROR before starting."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text("[server\n")

        result = CliRunner().invoke(serve_command, ["--config", str(config_file)])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "Error:" in result.output
        mock_run.assert_not_called()

    def test_invalid_override(self, mock_run: MagicMock) -> None:
        """An override that fails validation exits with CONFIG_ERROR."""
        result = CliRunner().invoke(serve_command, ["--static-prefix", "assets"])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "prefix must start with '/'" in result.output

    def test_negative_cache_ttl_rejected_by_click(self, mock_run: MagicMock) -> None:
        result = CliRunner().invoke(serve_command, ["--cache-ttl", "-1"])
        assert result.exit_code == 2

    def test_run_exit_code_propagates(self, mock_run: MagicMock) -> None:
        """The exit code returned by run_server becomes the process status."""
        with patch(
            "graceserve.cli.serve.asyncio.run", return_value=ExitCode.STOP_FAILED
        ):
            result = CliRunner().invoke(serve_command, [])

        assert result.exit_code == ExitCode.STOP_FAILED

    def test_interrupt_before_start(self, mock_run: MagicMock) -> None:
        with patch("graceserve.cli.serve.asyncio.run", side_effect=KeyboardInterrupt):
            result = CliRunner().invoke(serve_command, [])

        assert result.exit_code == ExitCode.INTERRUPTED


class TestMainGroup:
    """Tests for the top-level command group."""

    def test_serve_registered(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "serve" in result.output

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestCreateApp:
    """Tests for the served application."""

    @pytest.mark.asyncio
    async def test_index(self, aiohttp_client) -> None:
        client = await aiohttp_client(create_app(StaticConfig()))

        resp = await client.get("/")

        assert resp.status == 200
        assert await resp.text() == "Hello, World!"

    @pytest.mark.asyncio
    async def test_static_route(self, aiohttp_client, static_root: Path) -> None:
        app = create_app(
            StaticConfig(directory=static_root, prefix="/assets/", cache_ttl=60)
        )
        client = await aiohttp_client(app)

        resp = await client.get("/assets/app.js")

        assert resp.status == 200
        assert await resp.read() == APP_JS
        assert resp.headers["Cache-Control"] == "public, max-age=60"

    @pytest.mark.asyncio
    async def test_no_static_route_without_directory(self, aiohttp_client) -> None:
        client = await aiohttp_client(create_app(StaticConfig()))

        resp = await client.get("/static/app.js")

        assert resp.status == 404


class TestRunServer:
    """Tests for run_server exit codes."""

    @pytest.mark.asyncio
    async def test_address_in_use(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            config = GraceserveConfig(
                server=ServerConfig(address=f"127.0.0.1:{port}")
            )
            assert await run_server(config) == ExitCode.START_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, expected",
        [
            (ServerStopError("grace period exceeded"), ExitCode.STOP_FAILED),
            (ServerForceCloseError("listener stuck"), ExitCode.GENERAL_ERROR),
        ],
    )
    async def test_server_errors_map_to_exit_codes(
        self, error: Exception, expected: ExitCode
    ) -> None:
        with patch(
            "graceserve.cli.serve.Server.start", AsyncMock(side_effect=error)
        ):
            assert await run_server(GraceserveConfig()) == expected
