"""
Dead-Letter Router - quarantine for events that cannot be processed.

The original message bytes are published unchanged to `<source_topic>.dlq`,
with the failure annotated in headers:

    x-dlq-reason        why the event was quarantined
    x-dlq-source-topic  topic it was consumed from (or destined for)
    x-dlq-failed-at     ISO-8601 UTC timestamp
    x-dlq-consumer      consumer (or outbox publisher) that gave up

Nothing in the pipeline consumes a DLQ topic; replay is an operator decision.

Usage:
    >>> router = DeadLetterRouter(bus)
    >>> await router.route(delivery.topic, delivery.key, delivery.value,
    ...                    reason="undecodable JSON", consumer_id="inventory-service")
"""

from orderflow.bus.base import EventBus
from orderflow.core.logger import get_logger
from orderflow.events.codec import encode_event
from orderflow.events.types import Event, dlq_topic
from orderflow.monitoring.metrics import DEAD_LETTERED
from orderflow.outbox.types import OutboxRecord
from orderflow.storage.database import utcnow

logger = get_logger(__name__)

REASON_HEADER = "x-dlq-reason"
SOURCE_TOPIC_HEADER = "x-dlq-source-topic"
FAILED_AT_HEADER = "x-dlq-failed-at"
CONSUMER_HEADER = "x-dlq-consumer"


class DeadLetterRouter:
    """
    Publishes failed events to their dead-letter topic.

    The router never retries: if the DLQ publish itself fails or is not
    acknowledged within the bus publish timeout, the error propagates and
    the caller keeps the delivery unacknowledged (or the outbox record
    pending dead-lettering), so nothing is lost.
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._routed = 0

    async def route(
        self,
        source_topic: str,
        key: str | None,
        message: bytes | Event,
        reason: str,
        headers: dict[str, str] | None = None,
        consumer_id: str | None = None,
    ) -> str:
        """
        Quarantine one message. Returns the DLQ topic it was published to.

        Args:
            source_topic: Topic the message came from
            key: Original partition key
            message: Original bytes, or an Event that is encoded first
            reason: Human readable failure reason
            headers: Original headers, kept alongside the annotations
            consumer_id: Who gave up on the message
        """
        if isinstance(message, Event):
            value = encode_event(message)
            original_headers = {**message.headers, **(headers or {})}
        else:
            value = message
            original_headers = dict(headers or {})

        target = dlq_topic(source_topic)
        annotated = {
            **original_headers,
            REASON_HEADER: reason,
            SOURCE_TOPIC_HEADER: source_topic,
            FAILED_AT_HEADER: utcnow().isoformat(),
            CONSUMER_HEADER: consumer_id or "unknown",
        }
        await self.bus.send(target, key, value, annotated)

        self._routed += 1
        DEAD_LETTERED.labels(source_topic=source_topic).inc()
        logger.warning(
            f"Dead-lettered message from {source_topic} to {target}: {reason}",
            extra={"topic": source_topic, "consumer_id": consumer_id},
        )
        return target

    async def route_outbox_record(self, record: OutboxRecord, reason: str, publisher_id: str) -> str:
        """Quarantine an outbox record whose retry budget is exhausted."""
        return await self.route(
            record.event_type,
            record.aggregate_id,
            record.to_event(),
            reason,
            consumer_id=publisher_id,
        )

    @property
    def routed_count(self) -> int:
        return self._routed
