"""CLI serve command.

This module provides the `graceserve serve` command: a hello-world index
page plus static files from a directory, served until SIGINT or SIGTERM
with a graceful drain of in-flight requests.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import click
from aiohttp import web

from graceserve.cli.exit_codes import ExitCode
from graceserve.config import (
    ConfigError,
    GraceserveConfig,
    StaticConfig,
    get_config,
    server_options,
)
from graceserve.errors import ServerError, ServerStartError, ServerStopError
from graceserve.logging import configure_logging
from graceserve.server import Server
from graceserve.static import static_handler

logger = logging.getLogger(__name__)


async def handle_index(request: web.Request) -> web.Response:
    return web.Response(text="Hello, World!")


def create_app(static: StaticConfig) -> web.Application:
    """Create the application served by `graceserve serve`.

    Args:
        static: Static file settings; no static route is added when no
            directory is configured.
    """
    app = web.Application()
    app.router.add_get("/", handle_index)

    if static.directory is not None:
        prefix = static.prefix.rstrip("/")
        app.router.add_get(
            prefix + "/{path:.*}",
            static_handler(prefix, static.directory, static.cache_ttl),
        )
        logger.info(
            "Serving %s under %s/ (cache TTL %.0fs)",
            static.directory,
            prefix,
            static.cache_ttl,
        )

    return app


async def run_server(config: GraceserveConfig) -> int:
    """Run the server until it is shut down.

    Args:
        config: Fully merged configuration.

    Returns:
        Exit code (0 for clean shutdown, non-zero for errors).
    """
    server = Server(
        config.server.address,
        create_app(config.static),
        *server_options(config.server),
    )

    try:
        await server.start()
    except ServerStartError as e:
        logger.error("Server failed to start: %s", e)
        return ExitCode.START_FAILED
    except ServerStopError as e:
        logger.error("Server did not stop cleanly: %s", e)
        return ExitCode.STOP_FAILED
    except ServerError as e:
        logger.error("Server error: %s", e)
        return ExitCode.GENERAL_ERROR

    return ExitCode.SUCCESS


def _apply_overrides(
    config: GraceserveConfig,
    address: str | None,
    static_dir: Path | None,
    static_prefix: str | None,
    cache_ttl: float | None,
    shutdown_timeout: float | None,
    log_level: str | None,
    log_format: str | None,
) -> GraceserveConfig:
    """Apply CLI flags on top of the loaded configuration.

    Raises:
        ValueError: If an override fails section validation.
    """

    def changes(**values: object) -> dict[str, object]:
        return {key: value for key, value in values.items() if value is not None}

    return GraceserveConfig(
        server=dataclasses.replace(
            config.server,
            **changes(address=address, shutdown_timeout=shutdown_timeout),
        ),
        static=dataclasses.replace(
            config.static,
            **changes(directory=static_dir, prefix=static_prefix, cache_ttl=cache_ttl),
        ),
        logging=dataclasses.replace(
            config.logging, **changes(level=log_level, format=log_format)
        ),
    )


@click.command("serve")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to a TOML configuration file.",
)
@click.option(
    "--address",
    "-a",
    type=str,
    default=None,
    help="Listen address as host:port (default: 127.0.0.1:8080).",
)
@click.option(
    "--static-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory to serve static files from.",
)
@click.option(
    "--static-prefix",
    type=str,
    default=None,
    help="URL prefix for static files (default: /static).",
)
@click.option(
    "--cache-ttl",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds clients may cache static files; 0 disables caching headers.",
)
@click.option(
    "--shutdown-timeout",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait for in-flight requests on shutdown (default: 5).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default=None,
    help="Log format: text or json (default: text).",
)
def serve_command(
    config_path: Path | None,
    address: str | None,
    static_dir: Path | None,
    static_prefix: str | None,
    cache_ttl: float | None,
    shutdown_timeout: float | None,
    log_level: str | None,
    log_format: str | None,
) -> None:
    """Serve HTTP until SIGINT or SIGTERM.

    Responds to GET / with a greeting and serves files from --static-dir
    under --static-prefix with ETag/Last-Modified caching. On shutdown,
    in-flight requests get --shutdown-timeout seconds to finish.

    Configuration precedence (highest to lowest):
      1. CLI flags
      2. Environment variables (GRACESERVE_*)
      3. Config file (--config or GRACESERVE_CONFIG_PATH)
      4. Default values

    \b
    Examples:
        graceserve serve                                # Start with defaults
        graceserve serve --address :9000                # All interfaces
        graceserve serve --static-dir ./public --cache-ttl 600
        graceserve serve --log-format json              # JSON logging
    """
    try:
        config = _apply_overrides(
            get_config(config_path=config_path),
            address,
            static_dir,
            static_prefix,
            cache_ttl,
            shutdown_timeout,
            log_level,
            log_format,
        )
    except (ConfigError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(ExitCode.CONFIG_ERROR)

    configure_logging(config.logging)

    logger.info(
        "Starting graceserve (address=%s, timeout=%.1fs)",
        config.server.address,
        config.server.shutdown_timeout,
    )

    try:
        exit_code = asyncio.run(run_server(config))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        # User pressed Ctrl+C before the server installed its handlers
        logger.info("Interrupted before server started")
        sys.exit(ExitCode.INTERRUPTED)
