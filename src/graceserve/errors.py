"""Exception types raised by the server lifecycle coordinator.

Construction errors and start/stop errors are distinct kinds so callers
can tell "never started" apart from "started, then failed to stop".
Wrapped network or shutdown errors are available as ``__cause__``.
"""

from __future__ import annotations


class ServerError(Exception):
    """Base class for all graceserve server errors."""


class ServerConfigError(ServerError):
    """Server construction was rejected; no socket was opened."""


class EmptyAddressError(ServerConfigError):
    """The listen address is empty."""

    def __init__(self) -> None:
        super().__init__("server address cannot be empty")


class NilHandlerError(ServerConfigError):
    """The request handler is missing."""

    def __init__(self) -> None:
        super().__init__("server handler cannot be None")


class ServerStartError(ServerError):
    """The server failed to start (bind failure, bad address, re-entry)."""


class ServerStopError(ServerError):
    """Graceful shutdown did not complete within the grace period."""


class ServerForceCloseError(ServerError):
    """The last-resort forced close itself failed."""
