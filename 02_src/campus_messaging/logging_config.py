"""Structured logging configuration for the messaging service."""

import json
import logging
import logging.config
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_LOG_PATH

# Library loggers that are chatty at INFO (per-query, per-request, per-ping)
QUIET_LOGGERS = ("aiosqlite", "httpx", "httpcore", "sse_starlette", "redis")


def log_context(**fields: Any) -> dict[str, Any]:
    """``extra=`` payload carrying structured fields into the JSON record.

    ``None`` values are dropped so optional identifiers stay out of the log.

        logger.error("Send failed", extra=log_context(operation="send message", attempts=4))
    """
    return {"context": {k: v for k, v in fields.items() if v is not None}}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``context`` fields are nested verbatim."""

    def __init__(self, service: str = "campus_messaging"):
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self._service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Enums, datetimes and ids in context are not JSON-native
        return json.dumps(log_data, default=str)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console: bool = True,
) -> None:
    """
    Setup structured logging for the service.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to LOG_LEVEL env var or INFO.
        log_file: Path to log file. Defaults to LOG_FILE env var or 04_logs/app.log.
        console: Also write records to stdout.
    """
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE") or str(DEFAULT_LOG_PATH)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handlers: dict[str, dict] = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        },
    }
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": "campus_messaging.logging_config.JSONFormatter"},
            },
            "handlers": handlers,
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {"level": log_level, "handlers": list(handlers)},
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)
