"""JSON log output.

One object per line: timestamp, level, message and logger, then any
``extra`` key-values under ``context`` and a formatted traceback under
``exception`` when the record carries one.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord has, plus the ones Formatter.format() adds.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Injected by RequestContextFilter on every record, set or not.
_REQUEST_ATTRS = ("http_method", "http_path")


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    context = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS
        and key not in _REQUEST_ATTRS
        and key != "request_tag"
        and not key.startswith("_")
    }
    # Outside a request the filter leaves these as None; drop them.
    for key in _REQUEST_ATTRS:
        value = getattr(record, key, None)
        if value:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": when.isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.name != "root":
            entry["logger"] = record.name

        context = _context_of(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)
