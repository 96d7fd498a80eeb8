"""Structured logging for the auto-reply service.

Emits one JSON object per record so webhook deliveries can be traced by
platform, page and tenant in the log aggregator.
"""

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# Cache for logger instances
_loggers: dict[str, "StructuredLogger"] = {}

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "autoreply-core"

# Extra fields whose values are never written out
SENSITIVE_FIELDS = {
    "access_token",
    "token",
    "secret",
    "app_secret",
    "verify_token",
    "authorization",
    "api_key",
}


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    RESERVED_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            log_entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        for key, value in record.__dict__.items():
            if key in self.RESERVED_FIELDS or key.startswith("_"):
                continue
            if key.lower() in SENSITIVE_FIELDS:
                log_entry[key] = "***"
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


@dataclass
class DeliveryContext:
    """Fields identifying one webhook delivery, attached to every log line."""

    platform: Optional[str] = None
    page_id: Optional[str] = None
    tenant_id: Optional[int] = None
    event_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}

        if self.platform:
            result["platform"] = self.platform
        if self.page_id:
            result["page_id"] = self.page_id
        if self.tenant_id is not None:
            result["tenant_id"] = self.tenant_id
        if self.event_id:
            result["event_id"] = self.event_id

        result.update(self.extra)
        return result


class StructuredLogger:
    """Thin wrapper over ``logging.Logger`` taking keyword fields."""

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        context: Optional[DeliveryContext] = None,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        if context:
            kwargs.update(context.to_dict())
        self._logger.log(level, msg, exc_info=exc_info, extra=dict(kwargs))

    def debug(self, msg: str, context: Optional[DeliveryContext] = None, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, context, **kwargs)

    def info(self, msg: str, context: Optional[DeliveryContext] = None, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, context, **kwargs)

    def warning(self, msg: str, context: Optional[DeliveryContext] = None, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, context, **kwargs)

    def error(
        self,
        msg: str,
        context: Optional[DeliveryContext] = None,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        self._log(logging.ERROR, msg, context, exc_info=exc_info, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name (typically module name)

    Returns:
        StructuredLogger instance
    """
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of plain text
        service_name: Value of the ``service`` field in JSON output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )

    root_logger.addHandler(handler)
