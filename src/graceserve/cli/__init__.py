"""CLI module for graceserve."""

import click


@click.group()
@click.version_option(package_name="graceserve")
def main() -> None:
    """graceserve - serve an aiohttp app with graceful shutdown."""


# Defer import to avoid circular dependency
def _register_commands():
    from graceserve.cli.serve import serve_command

    main.add_command(serve_command)


_register_commands()
