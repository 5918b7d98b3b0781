"""
Structured logging configuration with JSON formatter.

This module provides:
- JSONFormatter for structured JSON logging
- Contextual fields passed through ``extra=`` (object_id, key, run_id, ...)
- A single setup entry point shared by the API process and the cleanup CLI
"""
import logging
import json
import traceback
from datetime import datetime, timezone
from typing import Any, Dict
import sys


PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'getMessage', 'message', 'taskName',
])


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Example output:
    {
        "timestamp": "2025-01-19T10:30:45.123456+00:00",
        "level": "INFO",
        "logger": "ephemera.services.lifecycle",
        "message": "Soft-deleted object",
        "object_id": "5f0c...",
        "key": "uploads/u1/5f0c...-report.pdf"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "process_id": record.process,
            "thread_name": record.threadName,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = self._serialize_value(value)

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _serialize_value(self, value: Any) -> Any:
        """
        Serialize value for JSON output.

        Handles common Python types that aren't JSON serializable.
        """
        if isinstance(value, datetime):
            return value.isoformat()

        if isinstance(value, bytes):
            try:
                return value.decode('utf-8')
            except UnicodeDecodeError:
                return f"<binary data: {len(value)} bytes>"

        if isinstance(value, Exception):
            return {
                "type": type(value).__name__,
                "message": str(value),
                "traceback": traceback.format_exc() if sys.exc_info()[0] else None
            }

        if hasattr(value, '__dict__'):
            return str(value)

        return value


def setup_logging(level: str = "INFO", json_format: bool = False) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit one JSON object per line instead of plain text

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    root.addHandler(handler)

    return root
