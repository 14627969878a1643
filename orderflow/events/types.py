"""
Event envelope and topic names.

An Event is one logical occurrence on the bus. Its event_id is fixed when the
occurrence is first recorded (in the producer's outbox) and stays the same on
every redelivery, which is what consumers deduplicate on.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

ORDER_CREATED = "order.created"
INVENTORY_RESERVED = "inventory.reserved"
INVENTORY_REJECTED = "inventory.rejected"
ORDER_CONFIRMED = "order.confirmed"
ORDER_FAILED = "order.failed"

DLQ_SUFFIX = ".dlq"

CORRELATION_ID_HEADER = "correlationId"

# eventType carried in the envelope -> topic it is published on
EVENT_TYPE_TOPICS = {
    "OrderCreated": ORDER_CREATED,
    "InventoryReserved": INVENTORY_RESERVED,
    "InventoryRejected": INVENTORY_REJECTED,
    "OrderConfirmed": ORDER_CONFIRMED,
    "OrderFailed": ORDER_FAILED,
}

TOPIC_EVENT_TYPES = {topic: event_type for event_type, topic in EVENT_TYPE_TOPICS.items()}


def dlq_topic(topic: str) -> str:
    """Quarantine topic for a source topic."""
    return f"{topic}{DLQ_SUFFIX}"


@dataclass
class Event:
    """
    A message on the event bus.

    Attributes:
        topic: Topic the event is published on
        key: Partition key (the order id)
        event_type: Envelope eventType, e.g. "OrderCreated"
        payload: Topic-specific fields in wire (camelCase) form, without eventId
        event_id: Globally unique, stable across redelivery
        version: Payload schema version
        headers: String headers; always propagates correlationId
    """

    topic: str
    key: str
    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    version: int = 1
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def correlation_id(self) -> str | None:
        return self.headers.get(CORRELATION_ID_HEADER)

    @property
    def order_id(self) -> str:
        return self.payload.get("orderId", self.key)
