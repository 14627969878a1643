"""
Structured logging for the order pipeline

Every log line emitted while handling an event carries the correlation id
propagated in the event headers, so one order can be followed across the
order and inventory services.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

correlation_context: ContextVar[dict[str, Any]] = ContextVar("correlation_context", default={})


@contextmanager
def correlation_scope(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Bind correlation fields (correlation_id, order_id, event_id, topic) for
    the duration of a block. Nested scopes inherit and extend the outer one.
    """
    merged = {**correlation_context.get({}), **{k: v for k, v in fields.items() if v}}
    token = correlation_context.set(merged)
    try:
        yield merged
    finally:
        correlation_context.reset(token)


class CorrelationJsonFormatter(logging.Formatter):
    """JSON formatter that includes the active correlation context"""

    _EXTRA_FIELDS = (
        "correlation_id",
        "order_id",
        "event_id",
        "topic",
        "consumer_id",
        "record_id",
        "retry_count",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_entry.update(correlation_context.get({}))
        for field in self._EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class CorrelationContextFilter(logging.Filter):
    """Adds correlation fields to log records for plain-text formats"""

    def filter(self, record: logging.LogRecord) -> bool:
        context = correlation_context.get({})
        record.correlation_id = context.get("correlation_id", "-")
        record.order_id = context.get("order_id", "-")
        return True


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> logging.Logger:
    """
    Set up console logging for the orderflow namespace.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting for structured logs

    Returns:
        The configured 'orderflow' logger
    """
    root_logger = logging.getLogger("orderflow")
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    if json_format:
        console_handler.setFormatter(CorrelationJsonFormatter())
    else:
        console_handler.addFilter(CorrelationContextFilter())
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s:%(order_id)s] - %(message)s"
            )
        )
    root_logger.addHandler(console_handler)
    return root_logger
