"""Static file handler with HTTP conditional caching.

The handler maps a URL prefix onto a read-only file store. Directories are
never listed, and every store error is answered with 404 so clients
cannot discover the layout behind the prefix. With a non-zero cache TTL the
response carries ETag, Last-Modified, Cache-Control, Expires and Pragma
headers, and revalidation requests are answered with 304.

Example:
    app.router.add_get(
        "/static/{path:.*}", static_handler("/static", "./public", 600)
    )
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import os
from datetime import datetime, timedelta, timezone

from aiohttp import hdrs, web

from graceserve.content import http_date, serve_content
from graceserve.filestore import (
    DirectoryStore,
    FileInfo,
    FileStore,
    PackageStore,
    StoreFile,
)
from graceserve.options import RequestHandler

logger = logging.getLogger(__name__)

# HTTP dates have whole-second resolution, store mtimes may not
MODIFIED_SINCE_TOLERANCE = timedelta(seconds=1)


def make_etag(info: FileInfo) -> str:
    """Return the quoted ETag for a file: hex mtime epoch seconds and hex size."""
    seconds = calendar.timegm(info.mtime.utctimetuple())
    return '"%x-%x"' % (seconds, info.size)


def caching_headers(info: FileInfo, cache_ttl: float) -> dict[str, str]:
    """Build the cache validator and freshness headers for a file."""
    expires = datetime.now(timezone.utc) + timedelta(seconds=cache_ttl)
    return {
        hdrs.ETAG: make_etag(info),
        hdrs.LAST_MODIFIED: http_date(info.mtime),
        hdrs.CACHE_CONTROL: f"public, max-age={int(cache_ttl)}",
        hdrs.EXPIRES: http_date(expires),
        hdrs.PRAGMA: "cache",
    }


def is_not_modified(request: web.BaseRequest, etag: str, mtime: datetime) -> bool:
    """Check the client's cached copy against the current validators.

    If-None-Match matches when it contains the ETag anywhere in its value.
    Otherwise If-Modified-Since matches when the file is older than the
    given date plus one second.
    """
    if_none_match = request.headers.get(hdrs.IF_NONE_MATCH)
    if if_none_match and etag in if_none_match:
        return True
    modified_since = request.if_modified_since
    if modified_since is not None:
        return mtime < modified_since + MODIFIED_SINCE_TOLERANCE
    return False


async def _serve_file(
    request: web.BaseRequest, file: StoreFile, info: FileInfo, cache_ttl: float
) -> web.StreamResponse:
    if cache_ttl == 0:
        return await serve_content(request, file, info)

    headers = caching_headers(info, cache_ttl)
    if is_not_modified(request, headers[hdrs.ETAG], info.mtime):
        return web.Response(status=web.HTTPNotModified.status_code, headers=headers)
    return await serve_content(request, file, info, headers)


async def _close(file: StoreFile, name: str, response: web.StreamResponse) -> None:
    try:
        await asyncio.to_thread(file.close)
    except OSError as e:
        if not response.prepared:
            raise web.HTTPInternalServerError(text=str(e)) from e
        # Already committed to the client
        logger.warning("Failed to close %s after serving it: %s", name, e)


def _make_handler(
    public_path: str, store: FileStore, cache_ttl: float
) -> RequestHandler:
    prefix = public_path.rstrip("/")

    async def handle_static(request: web.BaseRequest) -> web.StreamResponse:
        path = request.path
        name = path[len(prefix) :] if path.startswith(prefix) else path

        # Any store failure looks the same to the client
        try:
            file = await asyncio.to_thread(store.open, name)
        except Exception as e:
            logger.debug("Cannot open %r: %s", name, e)
            raise web.HTTPNotFound()

        try:
            try:
                info = await asyncio.to_thread(file.stat)
            except Exception as e:
                logger.debug("Cannot stat %r: %s", name, e)
                raise web.HTTPNotFound()
            if info.is_dir:
                raise web.HTTPNotFound()
            response = await _serve_file(request, file, info, cache_ttl)
        except BaseException:
            try:
                await asyncio.to_thread(file.close)
            except OSError as e:
                logger.warning("Failed to close %s: %s", name, e)
            raise

        await _close(file, name, response)
        return response

    return handle_static


def static_handler(
    public_path: str,
    root: str | os.PathLike[str] | FileStore,
    cache_ttl: float,
) -> RequestHandler:
    """Create a handler serving files from ``root`` under ``public_path``.

    Args:
        public_path: URL prefix the handler is mounted at, e.g. ``"/static"``.
            Trailing slashes are ignored.
        root: A directory path or any ``FileStore``.
        cache_ttl: Seconds clients may cache a file. 0 disables the caching
            headers.

    Returns:
        An aiohttp request handler coroutine.
    """
    store: FileStore
    if isinstance(root, (str, os.PathLike)):
        store = DirectoryStore(root)
    else:
        store = root
    return _make_handler(public_path, store, cache_ttl)


def package_static_handler(
    public_path: str, package: str, cache_ttl: float, subdir: str = ""
) -> RequestHandler:
    """Create a handler serving files shipped inside ``package``.

    Args:
        public_path: URL prefix the handler is mounted at.
        package: Importable package holding the files.
        cache_ttl: Seconds clients may cache a file. 0 disables the caching
            headers.
        subdir: Directory inside the package to serve, e.g. ``"static"``.
    """
    return _make_handler(public_path, PackageStore(package, subdir), cache_ttl)
