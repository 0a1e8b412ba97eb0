"""graceserve - graceful aiohttp server lifecycle with cache-aware static files."""

from graceserve.errors import (
    EmptyAddressError,
    NilHandlerError,
    ServerConfigError,
    ServerError,
    ServerForceCloseError,
    ServerStartError,
    ServerStopError,
)
from graceserve.filestore import DirectoryStore, FileInfo, FileStore, PackageStore
from graceserve.lifecycle import ServerLifecycle, ServerState
from graceserve.options import (
    HTTPSettings,
    with_error_log,
    with_graceful_shutdown,
    with_idle_timeout,
    with_logger,
    with_max_header_bytes,
    with_preconfigured_server,
    with_read_header_timeout,
    with_read_timeout,
    with_tls_config,
    with_tls_next_proto,
    with_write_timeout,
)
from graceserve.server import Server, run
from graceserve.static import package_static_handler, static_handler

__version__ = "0.1.0"

__all__ = [
    "DirectoryStore",
    "EmptyAddressError",
    "FileInfo",
    "FileStore",
    "HTTPSettings",
    "NilHandlerError",
    "PackageStore",
    "Server",
    "ServerConfigError",
    "ServerError",
    "ServerForceCloseError",
    "ServerLifecycle",
    "ServerStartError",
    "ServerState",
    "ServerStopError",
    "__version__",
    "package_static_handler",
    "run",
    "static_handler",
    "with_error_log",
    "with_graceful_shutdown",
    "with_idle_timeout",
    "with_logger",
    "with_max_header_bytes",
    "with_preconfigured_server",
    "with_read_header_timeout",
    "with_read_timeout",
    "with_tls_config",
    "with_tls_next_proto",
    "with_write_timeout",
]
