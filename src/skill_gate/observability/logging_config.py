"""Logging setup for skill gating: JSON or text output plus per-task context.

The registry binds `skill_id` and `source` with `add_context` inside each
gating task; both formatters attach those fields to every record emitted
while the task runs, including probe log lines.
"""

import json
import logging
import logging.config
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "skill_gate"

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Anything on a record beyond these was passed through `extra=`
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ContextualFormatter(logging.Formatter):
    """Text formatter that appends the active gating context to each line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _log_context.get()
        if context:
            fields = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} [{fields}]"
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with context and `extra=` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = _log_context.get()
        if context:
            log_data["context"] = context
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
) -> None:
    """
    Route the package's log records to stderr and, optionally, a file.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'json' or 'text'
        log_file: Optional file path that receives the same records
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = "json" if format_type == "json" else "text"

    # stdout is reserved for the CLI's own output
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": sys.stderr,
            "formatter": formatter,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": log_file,
            "formatter": formatter,
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JSONFormatter},
                "text": {
                    "()": ContextualFormatter,
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": handlers,
            "loggers": {
                PACKAGE_LOGGER: {
                    "level": log_level,
                    "handlers": list(handlers),
                    "propagate": False,
                },
            },
        }
    )


def configure_from_env(default_level: str = "INFO") -> None:
    """Configure logging from LOG_LEVEL, LOG_FORMAT (default text) and LOG_FILE."""
    setup_logging(
        level=os.getenv("LOG_LEVEL", default_level),
        format_type=os.getenv("LOG_FORMAT", "text"),
        log_file=os.getenv("LOG_FILE"),
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def add_context(**kwargs: Any) -> None:
    """
    Bind fields to every record logged from the current context.

    Each asyncio task runs in its own copy of the context, so fields bound
    inside one gating task never show up in a sibling's log lines.
    """
    _log_context.set({**_log_context.get(), **kwargs})


def clear_context() -> None:
    _log_context.set({})
