"""Logging setup for archiver runs.

Both output styles carry the ``extra=`` context attached by the engine
(window start, chunk index, attempt) so a failed chunk can be traced from the
log alone.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from imap_archiver.config.settings import LoggingSettings

# Attributes every LogRecord has; anything else came in through ``extra=``.
_STANDARD_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra=`` fields attached to ``record``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_KEYS and not key.startswith("_")
    }


class JsonLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain-text formatter that appends ``key=value`` context to each line."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{pairs}]{sep}{tail}"


def resolve_level(settings: LoggingSettings) -> int:
    """Return the numeric log level, honoring the debug switch."""
    if settings.debug:
        return logging.DEBUG
    level = logging.getLevelName(settings.level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, settings: LoggingSettings) -> None:
    """Configure stderr logging for CLI runs.

    Args:
        settings: Logging settings (level, debug and JSON/human output).
    """
    level = resolve_level(settings)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter() if settings.json_logs else ContextTextFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Protocol traces are only wanted when debugging.
    logging.getLogger("aioimaplib").setLevel(logging.DEBUG if settings.debug else logging.WARNING)
