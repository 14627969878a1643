"""
Outbox Pattern - record types and publisher configuration.

The outbox guarantees that a local state change and the event announcing it
are never observed inconsistently:
1. The record is appended in the same transaction as the state change
2. The publisher drains NEW records to the event bus after commit
3. A record is marked SENT only after the bus acknowledged it, so a crash
   anywhere in between leaves it NEW and it is published again

Quick Start:
    >>> from orderflow.outbox import OutboxRecord
    >>>
    >>> record = OutboxRecord.for_event(event, aggregate_type="order")
    >>> async with database.transaction() as tx:
    ...     await orders.insert(tx, order)
    ...     await outbox.append(tx, record)
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from orderflow.core.env import get_float, get_int
from orderflow.events.types import Event


class OutboxStatus(Enum):
    """
    Status of an outbox record.

    State transitions:
        NEW → SENT     publish acknowledged
        NEW → ERROR    retry budget exhausted
        ERROR → NEW    operator replay only (requeue)
    """

    NEW = "NEW"
    """Waiting to be published (possibly backing off after a failed attempt)"""

    SENT = "SENT"
    """Acknowledged by the event bus; never published again"""

    ERROR = "ERROR"
    """Retry budget exhausted; needs manual intervention or replay"""


@dataclass
class OutboxRecord:
    """
    One event waiting in (or drained from) a service's outbox.

    Attributes:
        aggregate_type: Type of aggregate ("order", "inventory")
        aggregate_id: Aggregate instance id; becomes the partition key
        event_type: Topic the event is published to
        payload: Event payload in wire form
        event_id: Stable event id carried in the envelope
        envelope_type: Envelope eventType (e.g. "OrderCreated")
        schema_version: Payload schema version
        headers: String headers, including the propagated correlationId
        record_id: Outbox row identity
        status: Current status
        created_at: When the record was appended
        sent_at: When the bus acknowledged it
        next_attempt_at: Earliest time the publisher may try again
        retry_count: Failed publish attempts so far
        last_error: Last failure reason
        sequence: Creation order within the store (assigned on append)
        dead_lettered_at: When an ERROR record reached its dead-letter topic
    """

    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    envelope_type: str = ""
    schema_version: int = 1
    headers: dict[str, str] = field(default_factory=dict)
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: OutboxStatus = OutboxStatus.NEW
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    sent_at: datetime | None = None
    next_attempt_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None
    sequence: int | None = None
    dead_lettered_at: datetime | None = None

    def __post_init__(self):
        if self.next_attempt_at is None:
            self.next_attempt_at = self.created_at

    @classmethod
    def for_event(cls, event: Event, aggregate_type: str) -> "OutboxRecord":
        """Wrap an event built by a producer into a NEW outbox record."""
        return cls(
            aggregate_type=aggregate_type,
            aggregate_id=event.key,
            event_type=event.topic,
            payload=event.payload,
            event_id=event.event_id,
            envelope_type=event.event_type,
            schema_version=event.version,
            headers=dict(event.headers),
        )

    def to_event(self) -> Event:
        """The event this record announces."""
        return Event(
            topic=self.event_type,
            key=self.aggregate_id,
            event_type=self.envelope_type,
            payload=self.payload,
            event_id=self.event_id,
            version=self.schema_version,
            headers=dict(self.headers),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "sequence": self.sequence,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "event_id": self.event_id,
            "envelope_type": self.envelope_type,
            "schema_version": self.schema_version,
            "payload": self.payload,
            "headers": self.headers,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "dead_lettered_at": self.dead_lettered_at.isoformat() if self.dead_lettered_at else None,
        }


@dataclass
class OutboxConfig:
    """
    Configuration for the outbox publisher.

    Attributes:
        batch_size: Records drained per batch
        poll_interval_seconds: Seconds between polls when the outbox is idle
        max_retries: Failed attempts before a record moves to ERROR
        backoff_base_seconds: Delay after the first failure, doubled per failure
        backoff_max_seconds: Backoff cap
        sent_retention_days: SENT records older than this may be purged
    """

    batch_size: int = 100
    poll_interval_seconds: float = 1.0
    max_retries: int = 10
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 60.0
    sent_retention_days: int = 7

    @classmethod
    def from_env(cls) -> "OutboxConfig":
        """Create config from environment variables."""
        return cls(
            batch_size=get_int("OUTBOX_BATCH_SIZE", 100),
            poll_interval_seconds=get_float("OUTBOX_POLL_INTERVAL", 1.0),
            max_retries=get_int("OUTBOX_MAX_RETRIES", 10),
            backoff_base_seconds=get_float("OUTBOX_BACKOFF_BASE", 0.5),
            backoff_max_seconds=get_float("OUTBOX_BACKOFF_MAX", 60.0),
            sent_retention_days=get_int("OUTBOX_SENT_RETENTION_DAYS", 7),
        )

    def backoff(self, retry_count: int) -> float:
        """Delay after the `retry_count`-th failure (1-based)."""
        return min(self.backoff_base_seconds * 2 ** (retry_count - 1), self.backoff_max_seconds)
