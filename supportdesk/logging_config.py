"""Structured logging for the support desk service.

Every line is one JSON object. Identifiers that operators filter on
(conversation, tenant, attempt, job) are lifted out of the free-form
`context` to top-level keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, Optional

ROOT_LOGGER_NAME = "supportdesk"
CORRELATION_KEYS = ("conversation_id", "tenant_id", "attempt_id", "job_id")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "redis")

_handler: Optional[logging.Handler] = None


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        for key in CORRELATION_KEYS:
            if key in context:
                entry[key] = str(context.pop(key))
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> logging.Handler:
    """Route all logging through one JSON handler. Safe to call more than once."""
    global _handler
    root = logging.getLogger()
    root.setLevel(logging.getLevelName(level.upper()))

    if _handler is not None:
        root.removeHandler(_handler)
    _handler = logging.StreamHandler(stream or sys.stdout)
    _handler.setFormatter(JSONFormatter())
    root.addHandler(_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return _handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries bound context; `context=` on a call adds to it for that line only."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        context = {**self.extra, **extra.get("context", {}), **(kwargs.pop("context", None) or {})}
        if context:
            extra["context"] = context
            kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        return LoggerAdapter(self.logger, {**self.extra, **context})


def conversation_logger(name: str, conversation, **context: Any) -> LoggerAdapter:
    """Logger bound to one conversation for the AI pipeline."""
    return LoggerAdapter(
        get_logger(name),
        {"conversation_id": conversation.id, "tenant_id": conversation.tenant_id, **context},
    )
