"""Read-only file stores for the static handler.

A store maps slash-separated names to files. Names are cleaned before
lookup (``..`` cannot climb above the store root) and every failure is an
``OSError``, so callers can treat "cannot open" uniformly.

Two stores are provided:

- ``DirectoryStore``: files under a directory on disk.
- ``PackageStore``: files shipped inside a Python package, read through
  ``importlib.resources``.
"""

from __future__ import annotations

import io
import os
import posixpath
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path
from typing import BinaryIO, Protocol

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FileInfo:
    """Metadata of one store entry."""

    name: str
    """Base name of the entry."""

    size: int
    """Size in bytes, 0 for directories."""

    mtime: datetime
    """Last modification time (UTC). EPOCH when the store has none."""

    is_dir: bool


class StoreFile(Protocol):
    """An open store entry: a readable, seekable, closable byte stream."""

    def read(self, size: int = -1) -> bytes: ...

    def seek(self, offset: int, whence: int = 0) -> int: ...

    def close(self) -> None: ...

    def stat(self) -> FileInfo: ...


class FileStore(Protocol):
    """A read-only hierarchical file store."""

    def open(self, name: str) -> StoreFile:
        """Open ``name``.

        Raises:
            OSError: If the entry does not exist or cannot be read.
        """
        ...


class OpenFile:
    """StoreFile over a binary file object and its metadata."""

    def __init__(self, fileobj: BinaryIO, info: FileInfo) -> None:
        self._fileobj = fileobj
        self._info = info

    def read(self, size: int = -1) -> bytes:
        if self._info.is_dir:
            raise IsADirectoryError(self._info.name)
        return self._fileobj.read(size)

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._fileobj.seek(offset, whence)

    def close(self) -> None:
        self._fileobj.close()

    def stat(self) -> FileInfo:
        return self._info


def clean_name(name: str) -> str:
    """Normalize a store name to a relative slash-separated path.

    The result has no leading slash and no ``.``/``..`` segments; the
    empty string names the store root.

    Raises:
        FileNotFoundError: If the name can never refer to a store entry.
    """
    if "\x00" in name or (os.sep != "/" and os.sep in name):
        raise FileNotFoundError(name)
    return posixpath.normpath("/" + name).lstrip("/")


def _mtime(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def _directory_handle(name: str, mtime: datetime) -> OpenFile:
    return OpenFile(io.BytesIO(), FileInfo(name, 0, mtime, True))


class DirectoryStore:
    """Files below a directory on disk.

    Symbolic links are followed but must resolve inside the root.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).resolve()

    def __repr__(self) -> str:
        return f"DirectoryStore({str(self.root)!r})"

    def open(self, name: str) -> StoreFile:
        cleaned = clean_name(name)
        path = self.root.joinpath(*cleaned.split("/")) if cleaned else self.root
        resolved = path.resolve(strict=True)
        if resolved != self.root and self.root not in resolved.parents:
            raise FileNotFoundError(name)

        base = posixpath.basename(cleaned) or "/"
        st = resolved.stat()
        if stat.S_ISDIR(st.st_mode):
            return _directory_handle(base, _mtime(st))

        fileobj = resolved.open("rb")
        try:
            # Stat the open file so size and mtime match what will be read
            st = os.fstat(fileobj.fileno())
        except OSError:
            fileobj.close()
            raise
        return OpenFile(fileobj, FileInfo(base, st.st_size, _mtime(st), False))


class PackageStore:
    """Files shipped inside an importable package.

    Resources that live on disk report their real modification time;
    resources inside zip archives report EPOCH, so caching falls back to
    the size part of the ETag.

    Args:
        package: Package name or module, e.g. ``"myapp"``.
        subdir: Slash-separated directory inside the package to serve.
    """

    def __init__(self, package: str, subdir: str = "") -> None:
        self.package = package
        self.subdir = clean_name(subdir)

    def __repr__(self) -> str:
        return f"PackageStore({self.package!r}, {self.subdir!r})"

    def open(self, name: str) -> StoreFile:
        cleaned = clean_name(name)
        traversable = resources.files(self.package)
        for part in "/".join(p for p in (self.subdir, cleaned) if p).split("/"):
            if part:
                traversable = traversable.joinpath(part)

        base = posixpath.basename(cleaned) or "/"
        mtime = EPOCH
        if isinstance(traversable, Path):
            mtime = _mtime(traversable.stat())

        if traversable.is_dir():
            return _directory_handle(base, mtime)
        if not traversable.is_file():
            raise FileNotFoundError(name)

        data = traversable.read_bytes()
        return OpenFile(io.BytesIO(data), FileInfo(base, len(data), mtime, False))
