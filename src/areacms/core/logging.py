"""Logging configuration for the areacms backend."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

# Context variable for storing the request id in request scope
request_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

_STANDARD_RECORD_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

# Extras promoted to Cloud Logging labels
LABEL_FIELDS = ("project_id", "user_id", "file_id")

SOURCE_LOCATION_KEY = "logging.googleapis.com/sourceLocation"
LABELS_KEY = "logging.googleapis.com/labels"


class CloudLoggingFormatter(logging.Formatter):
    """JSON formatter for structured log ingestion.

    Each record becomes one JSON line:

    - ``severity``, ``message``, ``timestamp`` and ``logger`` at the top level
    - the call site under ``logging.googleapis.com/sourceLocation``
    - ``project_id``, ``user_id`` and ``file_id`` extras as string labels
    - the bound request id as ``request_id``
    - any other ``extra={...}`` fields unchanged
    - exceptions under ``error``
    """

    SEVERITY_MAP = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON."""
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_FIELDS
        }

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            SOURCE_LOCATION_KEY: {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        labels = {
            key: str(extras.pop(key))
            for key in LABEL_FIELDS
            if extras.get(key) is not None
        }
        if labels:
            log_entry[LABELS_KEY] = labels

        request_id = extras.pop("request_id", None) or request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        log_entry.update(extras)

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            log_entry["error"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging() -> None:
    """Configure structured logging for the application.

    Local development gets a plain text format; every other environment
    emits single-line JSON on stdout.
    """
    from areacms.core.config import settings

    log_level = logging.DEBUG if settings.ENV == "local" else getattr(
        logging, settings.LOG_LEVEL.upper(), logging.INFO
    )

    handler = logging.StreamHandler(sys.stdout)

    if settings.ENV == "local":
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = CloudLoggingFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.setLevel(log_level)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False

    # SQL echo is controlled by DATABASE_ECHO, keep the engine quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
