"""JSON logs on stdout, one object per line.

Every line carries the active correlation ID (request or audit run). Call
sites pass context through log_fields() so guest data is redacted before
it reaches a handler. LOG_LEVEL sets the threshold (default INFO).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id
from .redaction import safe_log_context

# Record attribute that carries the redacted context of a log call
EXTRA_FIELDS_ATTR = "extra_fields"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        if record.exc_info:
            entry["exceptionType"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(getattr(record, EXTRA_FIELDS_ATTR, None) or {})
        return json.dumps(entry, default=str)


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON to stdout (configured on first use of a name)."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(_level_from_env())
    logger.propagate = False
    return logger


def log_fields(**kwargs: Any) -> dict[str, dict[str, str]]:
    """The ``extra`` mapping of a log call, with every value redacted.

    Usage:
        logger.info("payment recorded", extra=log_fields(folio_id=..., amount_cents=...))
    """
    return {EXTRA_FIELDS_ATTR: safe_log_context(**kwargs)}
