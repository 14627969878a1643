"""
Monitoring utilities: structured logging with correlation ids and
Prometheus metrics.

Quick Start:
    >>> from orderflow.monitoring import configure_logging, correlation_scope
    >>> configure_logging(json_format=True)
    >>> with correlation_scope(correlation_id="c-1", order_id="o-1"):
    ...     logger.info("reserved")
"""

from .logging import (
    CorrelationContextFilter,
    CorrelationJsonFormatter,
    configure_logging,
    correlation_context,
    correlation_scope,
)
from .metrics import start_metrics_server

__all__ = [
    "CorrelationContextFilter",
    "CorrelationJsonFormatter",
    "configure_logging",
    "correlation_context",
    "correlation_scope",
    "start_metrics_server",
]
