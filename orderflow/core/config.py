"""
Service configuration.

Each deployed service (order side, inventory side) builds one ServiceConfig,
usually from the environment:

    >>> from orderflow.core.config import ServiceConfig
    >>> config = ServiceConfig.from_env("order")
    >>> config.database_url
    'sqlite:///orderflow-order.db'

Retry budgets, backoff curves, partition counts and the ledger retention
window are tunable values. The defaults below are starting points, not
guarantees.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from orderflow.core.env import get_float, get_int
from orderflow.outbox.types import OutboxConfig


@dataclass
class ConsumerConfig:
    """
    Configuration for consumer workers.

    Attributes:
        poll_timeout_seconds: How long one poll waits for deliveries
        max_records: Deliveries fetched per poll
        max_attempts: Handler attempts on transient failure before dead-lettering
        backoff_base_seconds: First retry delay, doubled per attempt
        backoff_max_seconds: Retry delay cap
    """

    poll_timeout_seconds: float = 1.0
    max_records: int = 50
    max_attempts: int = 5
    backoff_base_seconds: float = 0.2
    backoff_max_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> ConsumerConfig:
        """Create config from environment variables."""
        return cls(
            poll_timeout_seconds=get_float("CONSUMER_POLL_TIMEOUT", 1.0),
            max_records=get_int("CONSUMER_MAX_RECORDS", 50),
            max_attempts=get_int("CONSUMER_MAX_ATTEMPTS", 5),
            backoff_base_seconds=get_float("CONSUMER_BACKOFF_BASE", 0.2),
            backoff_max_seconds=get_float("CONSUMER_BACKOFF_MAX", 10.0),
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.backoff_base_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)


@dataclass
class ServiceConfig:
    """
    Configuration for one service process.

    Attributes:
        service_name: "order" or "inventory"
        database_url: sqlite:///path, sqlite:///:memory: or postgresql://...
        bus_type: "memory" or "kafka"
        kafka_bootstrap_servers: Kafka bootstrap servers (comma-separated)
        consumer_group: Consumer group id for this service's workers
        workers_per_topic: Independent consumer-group members per subscribed topic
        ledger_retention_days: Ledger entries older than this may be purged;
            must exceed the broker's maximum redelivery window
    """

    service_name: str
    database_url: str
    bus_type: str = "memory"
    kafka_bootstrap_servers: str = "localhost:9092"
    consumer_group: str = ""
    workers_per_topic: int = 1
    ledger_retention_days: int = 30
    outbox: OutboxConfig = field(default_factory=OutboxConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)

    def __post_init__(self):
        if not self.consumer_group:
            self.consumer_group = f"{self.service_name}-service"

    @classmethod
    def from_env(cls, service_name: str) -> ServiceConfig:
        """
        Create config from environment variables.

        Service specific variables are prefixed with the upper-cased service
        name (ORDER_DATABASE_URL, INVENTORY_DATABASE_URL); DATABASE_URL is the
        shared fallback.
        """
        prefix = service_name.upper()
        database_url = (
            os.getenv(f"{prefix}_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or f"sqlite:///orderflow-{service_name}.db"
        )
        return cls(
            service_name=service_name,
            database_url=database_url,
            bus_type=os.getenv("BUS_TYPE", "memory").lower(),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            consumer_group=os.getenv(f"{prefix}_CONSUMER_GROUP", ""),
            workers_per_topic=get_int(f"{prefix}_WORKERS_PER_TOPIC", 1),
            ledger_retention_days=get_int("LEDGER_RETENTION_DAYS", 30),
            outbox=OutboxConfig.from_env(),
            consumer=ConsumerConfig.from_env(),
        )
