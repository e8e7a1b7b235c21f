"""Logging setup for cos-upload.

Two output formats share one set of context fields. Request exchanges carry
``method``, ``path``, ``status`` and ``duration_ms``; upload steps carry
``object_key``, ``upload_id`` and ``part_number``. The JSON format emits them
as keys, the text format appends them as ``name=value`` pairs.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

REQUEST_FIELDS = ("method", "path", "status", "duration_ms")
UPLOAD_FIELDS = ("object_key", "upload_id", "part_number")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _context(record: logging.LogRecord) -> dict:
    """Collect the context fields present on a record, in a fixed order."""
    context = {}
    for key in UPLOAD_FIELDS + REQUEST_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            context[key] = val
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines with the upload context appended, e.g.

    ``... INFO cos_upload.uploader: Uploaded part [object_key=a.bin part_number=2]``
    """

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = _context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={val}" for key, val in context.items())
        return f"{line} [{pairs}]"


def configure_logging(
    level: str = "INFO", fmt: str = "text", stream: TextIO | None = None
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO.
        fmt: ``json`` for :class:`JSONFormatter`, anything else for
            :class:`ContextTextFormatter`.
        stream: Output stream, ``sys.stderr`` by default.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ContextTextFormatter())
    root.addHandler(handler)

    # httpx logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("httpx").setLevel(
        logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    )
