"""
Log formatters for console viewing and log aggregation
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "workflow_id",
}


class SimpleConsoleFormatter(logging.Formatter):
    """
    Plain text formatter for console viewing
    Example: INFO:     2025-08-11 14:03:25 - workflow_lifecycle - [workflow_service.py:123] [Workflow:abc] - Activated
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        file_location = f"{record.filename}:{record.lineno}"

        workflow_tag = ""
        if getattr(record, "workflow_id", None):
            workflow_tag = f" [Workflow:{record.workflow_id}]"

        formatted = (
            f"{record.levelname}:     {timestamp} - {record.name} - "
            f"[{file_location}]{workflow_tag} - {record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for log aggregation queries
    Includes every extra field passed through ``extra={...}``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": f"{record.filename}:{record.lineno}",
            "function": record.funcName,
        }

        if getattr(record, "workflow_id", None):
            log_obj["workflow_id"] = record.workflow_id

        if record.exc_info:
            log_obj["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra_fields:
            log_obj["extra"] = extra_fields

        return json.dumps(log_obj, ensure_ascii=False, default=str)
