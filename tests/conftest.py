"""Shared test fixtures for graceserve."""

from __future__ import annotations

import os
import socket
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Fixed modification time for static fixtures: 2023-11-14T22:13:20.25Z.
# The fractional part exercises the whole-second handling of HTTP dates.
FIXTURE_MTIME = 1_700_000_000.25
FIXTURE_LAST_MODIFIED = "Tue, 14 Nov 2023 22:13:20 GMT"

APP_JS = b"console.log('hello');\n"
SITE_CSS = b"body { margin: 0; }\n"


def find_free_port() -> int:
    """Find a free port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        return s.getsockname()[1]


def wait_for_port(port: int, timeout: float = 5.0) -> bool:
    """Wait for a port to accept connections."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.1):
                return True
        except OSError:
            time.sleep(0.05)
    return False


def expected_etag(size: int, mtime: float = FIXTURE_MTIME) -> str:
    """ETag the static handler must produce for a fixture file."""
    return '"%x-%x"' % (int(mtime), size)


@pytest.fixture
def free_port() -> int:
    """A port that was free a moment ago."""
    return find_free_port()


@pytest.fixture
def fixture_mtime() -> datetime:
    return datetime.fromtimestamp(FIXTURE_MTIME, tz=timezone.utc)


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """Create a static directory with files at a fixed modification time.

    Layout:
        public/app.js
        public/css/site.css
        public/notes          (text, no extension)
        public/blob           (binary, no extension)
    """
    root = tmp_path / "public"
    (root / "css").mkdir(parents=True)

    files = {
        root / "app.js": APP_JS,
        root / "css" / "site.css": SITE_CSS,
        root / "notes": "plain text without an extension\n".encode(),
        root / "blob": b"\x00\x01\x02\x03binary",
    }
    for path, data in files.items():
        path.write_bytes(data)
        os.utime(path, (FIXTURE_MTIME, FIXTURE_MTIME))

    return root
