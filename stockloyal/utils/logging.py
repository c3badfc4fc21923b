"""
Structured JSON logging for the receiver.

One JSON object per line: timestamp, level, correlation_id, module, message,
plus the delivery context (request_id, event_type, source_ip) bound by the
webhook pipeline. Explicit `extra=` values on a record win over the bound context.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
webhook_ctx: ContextVar[dict] = ContextVar("webhook_ctx", default={})

CONTEXT_FIELDS = ("request_id", "event_type", "source_ip")
RECORD_FIELDS = CONTEXT_FIELDS + ("category",)

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def webhook_log_context(**fields) -> Iterator[dict]:
    """Bind delivery fields to every log line emitted inside the block."""
    bound = {k: v for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None}
    token = webhook_ctx.set({**webhook_ctx.get(), **bound})
    try:
        yield bound
    finally:
        webhook_ctx.reset(token)


class StructuredJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        entry.update(webhook_ctx.get())

        for key in RECORD_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger. Call once from create_app()."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
