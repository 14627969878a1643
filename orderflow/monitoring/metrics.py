"""
Prometheus metrics for the outbox publisher, idempotent consumers and the
dead-letter router. Exposition (HTTP endpoint, dashboards) is left to the
hosting process.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

OUTBOX_PUBLISHED_EVENTS = Counter(
    "orderflow_outbox_published_total",
    "Outbox records acknowledged by the event bus",
    ["publisher_id", "event_type"],
)

OUTBOX_FAILED_ATTEMPTS = Counter(
    "orderflow_outbox_failed_attempts_total",
    "Outbox publish attempts that failed or timed out",
    ["publisher_id", "event_type"],
)

OUTBOX_ERRORED_RECORDS = Counter(
    "orderflow_outbox_errored_total",
    "Outbox records that exhausted their retry budget",
    ["publisher_id", "event_type"],
)

OUTBOX_PENDING_RECORDS = Gauge(
    "orderflow_outbox_pending",
    "NEW outbox records at the last poll",
    ["publisher_id"],
)

OUTBOX_PUBLISH_DURATION = Histogram(
    "orderflow_outbox_publish_duration_seconds",
    "Time to get a publish acknowledged",
    ["publisher_id", "event_type"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
)

LEDGER_APPLIED = Counter(
    "orderflow_ledger_processed_total",
    "Inbound events applied by an idempotent consumer",
    ["consumer_id", "event_type", "outcome"],
)

LEDGER_DUPLICATES = Counter(
    "orderflow_ledger_duplicates_total",
    "Inbound events skipped because the ledger already held a claim",
    ["consumer_id", "event_type"],
)

LEDGER_PROCESSING_DURATION = Histogram(
    "orderflow_ledger_processing_duration_seconds",
    "Time spent in one claim-and-apply unit",
    ["consumer_id", "event_type"],
)

DEAD_LETTERED = Counter(
    "orderflow_dead_lettered_total",
    "Events quarantined to a dead-letter topic",
    ["source_topic"],
)


def start_metrics_server(port: int = 8000) -> None:
    """Serve /metrics on the given port in a background thread."""
    start_http_server(port)
