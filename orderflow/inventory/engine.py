"""
Inventory Reservation Engine - reserves stock for newly created orders.

Consumes `order.created` and answers with `inventory.reserved` or
`inventory.rejected`, written through this service's own outbox.

Reservation is all-or-nothing: every line of an order is checked inside one
transaction, and stock moves only if every line can be satisfied. Nothing is
ever partially reserved.

Usage:
    >>> engine = InventoryReservationEngine(database, outbox, ledger)
    >>> await engine.stock("SKU-A", 5)
    >>> result = await engine.handle(order_created_event)
    >>> result.effect
    'reserved'
"""

import uuid

from orderflow.core.exceptions import StoreConflictError
from orderflow.core.logger import get_logger
from orderflow.events.codec import build_event, parse_payload
from orderflow.events.schemas import (
    InventoryRejectedV1,
    InventoryReservedV1,
    OrderCreatedV1,
    ReservationPayload,
)
from orderflow.events.types import (
    CORRELATION_ID_HEADER,
    INVENTORY_REJECTED,
    INVENTORY_RESERVED,
    Event,
)
from orderflow.inventory.repository import InventoryRepository
from orderflow.inventory.types import InventoryLine
from orderflow.ledger.consumer import IdempotentConsumer
from orderflow.ledger.store import ConsumerLedger
from orderflow.ledger.types import HandlerResult
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxRecord
from orderflow.storage.database import Database, Transaction

logger = get_logger(__name__)

AGGREGATE_TYPE = "inventory"


def requested_quantities(order: OrderCreatedV1) -> dict[str, int]:
    """Total quantity per sku, in first-seen order."""
    totals: dict[str, int] = {}
    for item in order.items:
        totals[item.sku] = totals.get(item.sku, 0) + item.quantity
    return totals


class InventoryReservationEngine:
    """
    Handler for `order.created` on the inventory side.

    Redelivered events are absorbed by the ledger: stock is decremented once
    per event id and at most one decision is emitted.
    """

    def __init__(
        self,
        database: Database,
        outbox: OutboxStore,
        ledger: ConsumerLedger,
        consumer_id: str = "inventory-service",
    ):
        self.database = database
        self.outbox = outbox
        self.repository = InventoryRepository(database)
        self.consumer = IdempotentConsumer(database, ledger, consumer_id)

    async def handle(self, event: Event) -> HandlerResult | None:
        """
        Reserve stock for one `order.created` event.

        Returns:
            The decision, or None if the event was already processed

        Raises:
            StoreConflictError: A concurrent unit changed a line between the
                check and the update; the delivery should be retried
            PoisonEventError: The payload does not match the schema
        """
        return await self.consumer.process(event, self._reserve)

    async def _reserve(self, tx: Transaction, event: Event) -> HandlerResult:
        order = parse_payload(event)
        requested = requested_quantities(order)
        lines = await self.repository.get_many(tx, requested)

        failed = [
            sku
            for sku, quantity in requested.items()
            if sku not in lines or not lines[sku].can_reserve(quantity)
        ]
        if failed:
            await self._emit(
                tx,
                event,
                INVENTORY_REJECTED,
                InventoryRejectedV1(
                    event_id=str(uuid.uuid4()),
                    order_id=order.order_id,
                    failed_skus=failed,
                ),
            )
            logger.info(f"Rejected order {order.order_id}: insufficient stock for {', '.join(failed)}")
            return HandlerResult.applied(f"rejected:{','.join(failed)}")

        for sku, quantity in requested.items():
            if not await self.repository.reserve(tx, sku, quantity):
                msg = f"Stock for {sku} changed while reserving order {order.order_id}"
                raise StoreConflictError(msg)

        await self._emit(
            tx,
            event,
            INVENTORY_RESERVED,
            InventoryReservedV1(
                event_id=str(uuid.uuid4()),
                order_id=order.order_id,
                reservations=[
                    ReservationPayload(sku=sku, quantity=quantity)
                    for sku, quantity in requested.items()
                ],
            ),
        )
        logger.info(f"Reserved {len(requested)} sku(s) for order {order.order_id}")
        return HandlerResult.applied("reserved")

    async def _emit(self, tx: Transaction, cause: Event, topic: str, body) -> None:
        headers = {}
        if cause.correlation_id:
            headers[CORRELATION_ID_HEADER] = cause.correlation_id
        event = build_event(topic, body.order_id, body, headers)
        await self.outbox.append(tx, OutboxRecord.for_event(event, AGGREGATE_TYPE))

    async def stock(self, sku: str, quantity: int) -> InventoryLine:
        """Set the available stock of a sku (seeding and restocking)."""
        line = await self.repository.set_stock(sku, quantity)
        logger.info(f"Stock for {sku} set to {quantity}")
        return line

    async def get_line(self, sku: str) -> InventoryLine | None:
        return await self.repository.get(sku)
