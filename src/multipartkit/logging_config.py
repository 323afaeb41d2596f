"""Structured logging configuration for multipartkit."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

# Extras attached via ``logger.info(..., extra={...})`` that both formatters
# surface; JSON promotes them to top-level fields.
EXTRA_FIELDS = ("bucket", "key", "upload_id", "part_number", "http_status")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _upload_context(record: logging.LogRecord) -> dict:
    context = {}
    for name in EXTRA_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = value
    return context


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any upload extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_upload_context(record))
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines with the upload id and part number appended."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _upload_context(record)
        tail = " ".join(
            f"{name}={context[name]}" for name in ("upload_id", "part_number") if name in context
        )
        return f"{line} [{tail}]" if tail else line


def configure_logging(level: str = "INFO", fmt: str = "text", stream: TextIO | None = None) -> None:
    """Install a single root handler with the specified level and format.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: 'text' for human-readable lines, 'json' for structured output.
        stream: Destination stream. Defaults to stderr.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ContextTextFormatter())
    root.addHandler(handler)

    # botocore is chatty at DEBUG and logs full presigned URLs
    if numeric_level <= logging.DEBUG:
        logging.getLogger("botocore").setLevel(logging.INFO)
