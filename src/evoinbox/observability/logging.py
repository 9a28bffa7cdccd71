"""JSON lines on stdout, one object per record.

Every record carries the correlation ID of the delivery that caused it and
the name of the thread that emitted it, so work finished by the webhook pool
after the ACK can still be tied back to its request.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

DEFAULT_LEVEL = logging.INFO

# extra_fields may add keys but never replace these
_CORE_KEYS = frozenset({"timestamp", "level", "logger", "thread", "message", "exception"})


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None) or {}
        for key, value in extra_fields.items():
            if key not in _CORE_KEYS:
                log_obj[key] = value

        return json.dumps(log_obj, default=str)


def _level_from_env() -> int:
    """LOG_LEVEL by name (DEBUG, INFO, ...); unknown names give INFO."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "").strip().upper())
    return level if isinstance(level, int) else DEFAULT_LEVEL


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output."""
    logger = logging.getLogger(name)

    # Configured once per name; later calls reuse the handler
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_from_env())
        logger.propagate = False

    return logger
