"""Structured logs for the bot: one JSON object per line on stdout.

Callers attach data with `extra={"context": {...}}`. Keys that name credentials are
replaced before the line is written, at any nesting depth.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

SERVICE_NAME = "wabot"
REDACTED = "[REDACTED]"
REDACTED_KEYS = {"admin_pass", "gateway_api_key", "authorization", "cookie", "password"}

# third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def redact(context: Any) -> Any:
    if isinstance(context, dict):
        return {
            key: REDACTED if str(key).lower() in REDACTED_KEYS else redact(value)
            for key, value in context.items()
        }
    if isinstance(context, (list, tuple)):
        return [redact(item) for item in context]
    return context


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = redact(context)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # context may carry ints from the DB, enums or exceptions
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through a single stdout JSON handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    threshold = getattr(logging, level.upper(), None)
    if not isinstance(threshold, int):
        threshold = logging.INFO

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(threshold)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")
