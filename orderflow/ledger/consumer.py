"""
Consumer-side deduplication using the ledger.

Turns at-least-once delivery into at-most-once effects: the claim, the
handler's writes and its outbox records share one transaction.
"""

import time
from collections.abc import Awaitable, Callable

from orderflow.core.logger import get_logger
from orderflow.events.types import Event
from orderflow.ledger.store import ConsumerLedger
from orderflow.ledger.types import HandlerResult
from orderflow.monitoring.metrics import (
    LEDGER_APPLIED,
    LEDGER_DUPLICATES,
    LEDGER_PROCESSING_DURATION,
)
from orderflow.storage.database import Database, Transaction

logger = get_logger(__name__)

Handler = Callable[[Transaction, Event], Awaitable[HandlerResult]]


class IdempotentConsumer:
    """
    Idempotent event processing with ledger deduplication.

    Usage:
        consumer = IdempotentConsumer(database, ledger, "inventory-service")

        async def reserve(tx, event):
            ...
            return HandlerResult.applied("reserved")

        result = await consumer.process(event, reserve)  # None if duplicate
    """

    def __init__(self, database: Database, ledger: ConsumerLedger, consumer_id: str):
        self.database = database
        self.ledger = ledger
        self.consumer_id = consumer_id

    async def process(self, event: Event, handler: Handler) -> HandlerResult | None:
        """
        Claim and process an event in one transaction.

        Returns:
            The handler's result, or None if the event was already processed

        Raises:
            Whatever the handler raises; the claim is rolled back with the
            handler's writes so a redelivery is processed afresh.
        """
        start_time = time.monotonic()

        try:
            async with self.database.transaction() as tx:
                claimed = await self.ledger.try_claim(
                    tx, self.consumer_id, event.event_id, event.order_id
                )
                if not claimed:
                    result = None
                else:
                    result = await handler(tx, event)
                    await self.ledger.record_outcome(
                        tx, self.consumer_id, event.event_id, result.outcome, result.effect
                    )
        except Exception as exc:
            logger.error(
                f"Failed to process {event.event_type} {event.event_id}: {exc}",
                extra={"consumer_id": self.consumer_id, "error_type": type(exc).__name__},
            )
            raise

        if result is None:
            LEDGER_DUPLICATES.labels(
                consumer_id=self.consumer_id, event_type=event.event_type
            ).inc()
            logger.info(
                f"Duplicate event {event.event_id}, skipping",
                extra={"consumer_id": self.consumer_id},
            )
            return None

        duration = time.monotonic() - start_time
        LEDGER_APPLIED.labels(
            consumer_id=self.consumer_id,
            event_type=event.event_type,
            outcome=result.outcome.value,
        ).inc()
        LEDGER_PROCESSING_DURATION.labels(
            consumer_id=self.consumer_id, event_type=event.event_type
        ).observe(duration)
        logger.info(
            f"Processed {event.event_type} {event.event_id}: "
            f"{result.outcome.value} {result.effect} ({duration * 1000:.0f}ms)",
            extra={"consumer_id": self.consumer_id},
        )
        return result
