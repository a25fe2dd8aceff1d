"""Logging setup for StitchStore.

Merge and upload log calls attach the upload they concern through
``extra=``. Both output formats carry that context: JSON lines as keys,
text lines as a trailing ``[upload_id=... part_number=...]`` tag.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

# Record attributes that describe which upload a log line belongs to.
UPLOAD_CONTEXT_FIELDS = ("upload_id", "part_number", "object_name", "strategy", "duration_ms")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Marks handlers installed by configure_logging so reconfiguring replaces
# only those and leaves handlers added by the host application alone.
_HANDLER_MARK = "_stitchstore_handler"


def upload_context(record: logging.LogRecord) -> dict:
    """Return the upload context fields set on ``record``, in field order."""
    context = {}
    for key in UPLOAD_CONTEXT_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            context[key] = val
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(upload_context(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with the upload context appended."""

    def __init__(self, fmt: str = TEXT_FORMAT) -> None:
        super().__init__(fmt)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = upload_context(record)
        if context:
            tags = " ".join(f"{key}={val}" for key, val in context.items())
            line = f"{line} [{tags}]"
        return line


_FORMATTERS = {"json": JSONFormatter, "text": TextFormatter}


def build_formatter(fmt: str) -> logging.Formatter:
    """Return a formatter for ``fmt`` ("text" or "json").

    Raises:
        ValueError: If the format is unknown.
    """
    try:
        return _FORMATTERS[fmt.lower()]()
    except KeyError:
        raise ValueError(f"Unknown log format: {fmt}") from None


def configure_logging(
    level: str = "INFO", fmt: str = "text", stream: IO[str] | None = None
) -> logging.Handler:
    """Install the StitchStore log handler on the root logger.

    Calling it again replaces the handler from the previous call.

    Args:
        level: Log level name; unknown names fall back to INFO.
        fmt: "text" or "json".
        stream: Where to write; defaults to stderr.

    Returns:
        The installed handler.

    Raises:
        ValueError: If the format is unknown.
    """
    formatter = build_formatter(fmt)
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    for existing in root.handlers[:]:
        if getattr(existing, _HANDLER_MARK, False):
            root.removeHandler(existing)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_MARK, True)

    root.setLevel(numeric_level)
    root.addHandler(handler)
    return handler
