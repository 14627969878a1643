"""
Tests for correlation-aware logging.
"""

import json
import logging

from orderflow.monitoring.logging import (
    CorrelationContextFilter,
    CorrelationJsonFormatter,
    configure_logging,
    correlation_context,
    correlation_scope,
)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("orderflow.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationScope:
    def test_nested_scopes_extend_and_restore(self):
        with correlation_scope(correlation_id="corr-1", order_id="o-1"):
            with correlation_scope(event_id="e-1", order_id=None) as inner:
                assert inner == {"correlation_id": "corr-1", "order_id": "o-1", "event_id": "e-1"}
            assert "event_id" not in correlation_context.get()

        assert correlation_context.get() == {}


class TestFormatting:
    def test_json_lines_carry_context_and_extras(self):
        formatter = CorrelationJsonFormatter()

        with correlation_scope(correlation_id="corr-1", order_id="o-1"):
            line = json.loads(formatter.format(make_record(retry_count=2)))

        assert line["message"] == "hello"
        assert line["level"] == "INFO"
        assert line["correlation_id"] == "corr-1"
        assert line["order_id"] == "o-1"
        assert line["retry_count"] == 2

    def test_plain_filter_fills_placeholders(self):
        record = make_record()

        assert CorrelationContextFilter().filter(record)
        assert record.correlation_id == "-"

    def test_configure_logging_replaces_handlers(self):
        logger = configure_logging("DEBUG", json_format=True)
        configure_logging("WARNING", json_format=False)

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
