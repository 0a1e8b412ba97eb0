"""Typed access to GRACESERVE_* environment variables.

EnvReader takes an optional mapping in place of os.environ so the loader
can be exercised without touching the process environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EnvReader:
    """Read environment variables as typed values.

    An empty variable counts as unset. A value that fails to parse is
    logged at warning level and the default is returned instead, so a
    typo in the environment never prevents startup.

        reader = EnvReader({"GRACESERVE_CACHE_TTL": "600"})
        reader.get_float("GRACESERVE_CACHE_TTL", 30.0)  # 600.0
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = os.environ if env is None else env

    def _parse(
        self, var: str, convert: Callable[[str], T], kind: str, default: T | None
    ) -> T | None:
        raw = self._env.get(var)
        if not raw:
            return default
        try:
            return convert(raw)
        except ValueError:
            logger.warning("Invalid %s value for %s: %r", kind, var, raw)
            return default

    def get_str(self, var: str, default: str | None = None) -> str | None:
        return self._parse(var, str, "string", default)

    def get_int(self, var: str, default: int | None = None) -> int | None:
        return self._parse(var, int, "integer", default)

    def get_float(self, var: str, default: float | None = None) -> float | None:
        return self._parse(var, float, "float", default)

    def get_path(
        self, var: str, must_exist: bool = True, default: Path | None = None
    ) -> Path | None:
        """Return var as an expanded Path.

        With must_exist, a path that isn't on disk is logged and replaced
        by default.
        """
        path = self._parse(var, lambda raw: Path(raw).expanduser(), "path", None)
        if path is None:
            return default
        if must_exist and not path.exists():
            logger.warning("%s points to non-existent path: %s", var, path)
            return default
        return path
