"""Serving an open store file with conditional and range request support.

``serve_content`` behaves like aiohttp's ``FileResponse`` for a file that
is already open: preconditions are evaluated first (If-Match,
If-Unmodified-Since, If-None-Match, If-Modified-Since), then a single
byte range is honoured (guarded by If-Range), and the body is streamed in
chunks read on a worker thread.
"""

from __future__ import annotations

import asyncio
import mimetypes
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import format_datetime

from aiohttp import hdrs, web
from aiohttp.helpers import ETAG_ANY, ETag
from multidict import CIMultiDict

from graceserve.filestore import EPOCH, FileInfo, StoreFile

CHUNK_SIZE = 256 * 1024
SNIFF_LEN = 512
FALLBACK_CONTENT_TYPE = "application/octet-stream"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def http_date(value: datetime) -> str:
    """Format an aware datetime as an RFC 7231 HTTP date."""
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _has_mtime(mtime: datetime) -> bool:
    return mtime != EPOCH


def _whole_seconds(mtime: datetime) -> datetime:
    return mtime.replace(microsecond=0)


def _etag_match(current: str | None, etags: tuple[ETag, ...], weak: bool) -> bool:
    if len(etags) == 1 and etags[0].value == ETAG_ANY:
        return True
    if not current:
        return False
    current_weak = current.startswith("W/")
    if current_weak and not weak:
        return False
    value = current.removeprefix("W/").strip('"')
    return any(etag.value == value for etag in etags if weak or not etag.is_weak)


def check_preconditions(
    request: web.BaseRequest, etag: str | None, mtime: datetime
) -> int | None:
    """Evaluate conditional request headers.

    Args:
        request: The incoming request.
        etag: The response ETag header value, if any.
        mtime: Modification time of the representation.

    Returns:
        304 or 412 when the request is answered without a body, None when
        the content should be served.
    """
    if_match = request.if_match
    if if_match is not None:
        if not _etag_match(etag, if_match, weak=False):
            return web.HTTPPreconditionFailed.status_code
    elif (unmodified_since := request.if_unmodified_since) is not None:
        if _has_mtime(mtime) and _whole_seconds(mtime) > unmodified_since:
            return web.HTTPPreconditionFailed.status_code

    safe_method = request.method in (hdrs.METH_GET, hdrs.METH_HEAD)
    if_none_match = request.if_none_match
    if if_none_match is not None:
        if _etag_match(etag, if_none_match, weak=True):
            if safe_method:
                return web.HTTPNotModified.status_code
            return web.HTTPPreconditionFailed.status_code
    elif safe_method and (modified_since := request.if_modified_since) is not None:
        if _has_mtime(mtime) and _whole_seconds(mtime) <= modified_since:
            return web.HTTPNotModified.status_code

    return None


def _range_applies(request: web.BaseRequest, etag: str | None, mtime: datetime) -> bool:
    if_range = request.headers.get(hdrs.IF_RANGE)
    if if_range is None:
        return True
    if if_range.startswith(('"', "W/")):
        # Only a strong validator may guard a range
        return bool(etag) and not etag.startswith("W/") and if_range == etag
    ranged_since = request.if_range
    return (
        ranged_since is not None
        and _has_mtime(mtime)
        and _whole_seconds(mtime) == ranged_since
    )


def _sniff_content_type(file: StoreFile) -> str:
    """Guess a content type from the first bytes of the file.

    Runs on a worker thread. Leaves the file positioned at offset 0.
    """
    head = file.read(SNIFF_LEN)
    file.seek(0)
    if b"\x00" in head:
        return FALLBACK_CONTENT_TYPE
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte sequence cut off by the sniff window is still text
        if e.reason != "unexpected end of data":
            return FALLBACK_CONTENT_TYPE
    return TEXT_CONTENT_TYPE


def _not_modified(headers: CIMultiDict[str]) -> web.Response:
    for name in (hdrs.CONTENT_TYPE, hdrs.CONTENT_LENGTH, hdrs.CONTENT_ENCODING):
        headers.popall(name, None)
    if hdrs.ETAG in headers:
        headers.popall(hdrs.LAST_MODIFIED, None)
    return web.Response(status=web.HTTPNotModified.status_code, headers=headers)


def _range_not_satisfiable(size: int) -> web.Response:
    return web.Response(
        status=web.HTTPRequestRangeNotSatisfiable.status_code,
        headers={hdrs.CONTENT_RANGE: f"bytes */{size}"},
        text="invalid range: failed to overlap",
    )


async def serve_content(
    request: web.BaseRequest,
    file: StoreFile,
    info: FileInfo,
    headers: Mapping[str, str] | None = None,
) -> web.StreamResponse:
    """Serve ``file`` honouring conditional and range headers.

    Args:
        request: The incoming request.
        file: Open store file, positioned anywhere.
        info: Metadata of ``file``.
        headers: Extra response headers. An ``ETag`` among them takes part
            in If-Match / If-None-Match / If-Range evaluation.

    Returns:
        An unprepared 304/412/416 response, or a prepared and completed
        200/206 response whose body has already been written.
    """
    response_headers: CIMultiDict[str] = CIMultiDict(headers or {})
    mtime = info.mtime
    if _has_mtime(mtime) and hdrs.LAST_MODIFIED not in response_headers:
        response_headers[hdrs.LAST_MODIFIED] = http_date(mtime)

    etag = response_headers.get(hdrs.ETAG)
    status = check_preconditions(request, etag, mtime)
    if status == web.HTTPNotModified.status_code:
        return _not_modified(response_headers)
    if status is not None:
        return web.Response(status=status, headers=response_headers)

    if hdrs.CONTENT_TYPE not in response_headers:
        content_type = mimetypes.guess_type(info.name)[0]
        if content_type is None:
            content_type = await asyncio.to_thread(_sniff_content_type, file)
        response_headers[hdrs.CONTENT_TYPE] = content_type

    size = info.size
    start = 0
    count = size
    status = web.HTTPOk.status_code
    if hdrs.RANGE in request.headers and _range_applies(request, etag, mtime):
        try:
            rng = request.http_range
        except ValueError:
            return _range_not_satisfiable(size)

        start, end = rng.start, rng.stop
        if start < 0 and end is None:
            # Suffix range: the last -start bytes
            start = max(start + size, 0)
            count = size - start
        else:
            count = min(end if end is not None else size, size) - start
        if start >= size:
            return _range_not_satisfiable(size)

        status = web.HTTPPartialContent.status_code
        response_headers[hdrs.CONTENT_RANGE] = (
            f"bytes {start}-{start + count - 1}/{size}"
        )

    response_headers[hdrs.ACCEPT_RANGES] = "bytes"
    response = web.StreamResponse(status=status, headers=response_headers)
    response.content_length = count
    await response.prepare(request)

    if request.method != hdrs.METH_HEAD and count > 0:
        await asyncio.to_thread(file.seek, start)
        remaining = count
        while remaining > 0:
            chunk = await asyncio.to_thread(file.read, min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            await response.write(chunk)
            remaining -= len(chunk)

    await response.write_eof()
    return response
