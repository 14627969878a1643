"""
Order Status Reconciler - drives orders to their final status from the
inventory decision.

    inventory.reserved  → PENDING → CONFIRMED, emits order.confirmed
    inventory.rejected  → PENDING → FAILED,    emits order.failed

A decision arriving for an order that is already terminal (a redelivery, or a
late reservation for a canceled order) is recorded in the ledger as REJECTED
with effect `discarded:<status>` and emits nothing. Inventory decisions are
final; nothing here retries or compensates them.
"""

import uuid
from datetime import UTC, datetime

from orderflow.core.exceptions import StoreConflictError
from orderflow.core.logger import get_logger
from orderflow.events.codec import build_event, parse_payload
from orderflow.events.schemas import OrderConfirmedV1, OrderFailedV1
from orderflow.events.types import (
    CORRELATION_ID_HEADER,
    INVENTORY_REJECTED,
    INVENTORY_RESERVED,
    ORDER_CONFIRMED,
    ORDER_FAILED,
    Event,
)
from orderflow.ledger.consumer import IdempotentConsumer
from orderflow.ledger.store import ConsumerLedger
from orderflow.ledger.types import HandlerResult
from orderflow.orders.repository import OrderRepository
from orderflow.orders.state_machine import OrderStateMachine
from orderflow.orders.types import OrderStatus
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxRecord
from orderflow.storage.database import Database, Transaction

logger = get_logger(__name__)

AGGREGATE_TYPE = "order"

_TARGETS = {
    INVENTORY_RESERVED: OrderStatus.CONFIRMED,
    INVENTORY_REJECTED: OrderStatus.FAILED,
}


class OrderStatusReconciler:
    """
    Handler for `inventory.reserved` and `inventory.rejected` on the order side.

    Usage:
        >>> reconciler = OrderStatusReconciler(database, outbox, ledger)
        >>> result = await reconciler.handle(inventory_reserved_event)
        >>> result.effect
        'confirmed'
    """

    def __init__(
        self,
        database: Database,
        outbox: OutboxStore,
        ledger: ConsumerLedger,
        consumer_id: str = "order-service",
    ):
        self.database = database
        self.outbox = outbox
        self.repository = OrderRepository(database)
        self.consumer = IdempotentConsumer(database, ledger, consumer_id)
        self._state_machine = OrderStateMachine()

    async def handle(self, event: Event) -> HandlerResult | None:
        """
        Apply one inventory decision.

        Returns:
            The ledger result, or None if the event was already processed
        """
        if event.topic not in _TARGETS:
            msg = f"Reconciler does not handle {event.topic}"
            raise ValueError(msg)
        return await self.consumer.process(event, self._reconcile)

    async def _reconcile(self, tx: Transaction, event: Event) -> HandlerResult:
        decision = parse_payload(event)
        order_id = decision.order_id
        order = await self.repository.get(order_id, tx)

        if order is None:
            logger.warning(f"Inventory decision for unknown order {order_id} discarded")
            return HandlerResult.rejected("discarded:unknown-order")

        if order.status.is_terminal:
            logger.info(
                f"{event.event_type} for order {order_id} discarded: already {order.status.value}"
            )
            return HandlerResult.rejected(f"discarded:{order.status.value}")

        target = _TARGETS[event.topic]
        self._state_machine.validate(order_id, order.status, target)
        if not await self.repository.transition(tx, order_id, order.status, target):
            msg = f"Order {order_id} changed while applying {event.event_type}"
            raise StoreConflictError(msg)

        headers = {}
        if event.correlation_id:
            headers[CORRELATION_ID_HEADER] = event.correlation_id

        if target is OrderStatus.CONFIRMED:
            outbound = build_event(
                ORDER_CONFIRMED,
                order_id,
                OrderConfirmedV1(
                    event_id=str(uuid.uuid4()),
                    order_id=order_id,
                    confirmed_at=datetime.now(UTC),
                ),
                headers,
            )
        else:
            outbound = build_event(
                ORDER_FAILED,
                order_id,
                OrderFailedV1(
                    event_id=str(uuid.uuid4()),
                    order_id=order_id,
                    reason="insufficient stock",
                    failed_skus=list(decision.failed_skus),
                ),
                headers,
            )
        await self.outbox.append(tx, OutboxRecord.for_event(outbound, AGGREGATE_TYPE))

        logger.info(f"Order {order_id} {order.status.value} → {target.value}")
        return HandlerResult.applied(target.value.lower())
