"""
Order Service - the synchronous entry point of the order pipeline.

create_order() writes the order row and its `order.created` outbox record in
one transaction and returns immediately; nothing waits for the event to be
published or for inventory to answer.

Usage:
    >>> service = OrderService(database, OutboxStore(database))
    >>> order = await service.create_order(
    ...     "ada@example.com",
    ...     [{"sku": "SKU-A", "quantity": 2, "unit_price": "100.00"}],
    ...     idempotency_key="checkout-42",
    ... )
    >>> order.status
    <OrderStatus.PENDING: 'PENDING'>
"""

import hashlib
import uuid
from typing import Any

from orderflow.core.exceptions import OrderNotCancelableError, OrderNotFoundError
from orderflow.core.logger import get_logger
from orderflow.events.codec import build_event
from orderflow.events.schemas import OrderCreatedV1, OrderItemPayload
from orderflow.events.types import CORRELATION_ID_HEADER, ORDER_CREATED
from orderflow.orders.repository import OrderRepository
from orderflow.orders.state_machine import OrderStateMachine
from orderflow.orders.types import LineItem, Order, OrderStatus
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxRecord
from orderflow.storage.database import Database

logger = get_logger(__name__)

AGGREGATE_TYPE = "order"


def hash_idempotency_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class OrderService:
    """Create, cancel and look up orders."""

    def __init__(self, database: Database, outbox: OutboxStore):
        self.database = database
        self.outbox = outbox
        self.repository = OrderRepository(database)
        self._state_machine = OrderStateMachine()

    async def create_order(
        self,
        customer_email: str,
        items: list[LineItem | dict[str, Any]],
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> Order:
        """
        Create a PENDING order and its `order.created` outbox record atomically.

        Repeating a request with the same idempotency key returns the order
        created the first time, without a second outbox record.

        Raises:
            OrderValidationError: On invalid input; nothing is written
        """
        key_hash = hash_idempotency_key(idempotency_key) if idempotency_key else None
        order = Order.create(customer_email, items, idempotency_key_hash=key_hash)

        async with self.database.transaction() as tx:
            if key_hash:
                existing = await self.repository.find_by_idempotency_key(tx, key_hash)
                if existing is not None:
                    logger.info(f"Idempotent replay of order {existing.order_id}")
                    return existing

            await self.repository.insert(tx, order)
            event = build_event(
                ORDER_CREATED,
                order.order_id,
                OrderCreatedV1(
                    event_id=str(uuid.uuid4()),
                    order_id=order.order_id,
                    customer_email=order.customer_email,
                    items=[
                        OrderItemPayload(
                            sku=item.sku, quantity=item.quantity, unit_price=item.unit_price
                        )
                        for item in order.items
                    ],
                    total_amount=order.total_amount,
                    created_at=order.created_at,
                ),
                headers={CORRELATION_ID_HEADER: correlation_id or str(uuid.uuid4())},
            )
            await self.outbox.append(tx, OutboxRecord.for_event(event, AGGREGATE_TYPE))

        logger.info(
            f"Order {order.order_id} created ({len(order.items)} items, total {order.total_amount})",
            extra={"order_id": order.order_id, "correlation_id": event.correlation_id},
        )
        return order

    async def cancel_order(self, order_id: str) -> Order:
        """
        Cancel an order that is still PENDING.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderNotCancelableError: If the order already left PENDING
        """
        async with self.database.transaction() as tx:
            order = await self.repository.get(order_id, tx)
            if order is None:
                raise OrderNotFoundError(order_id)
            if not self._state_machine.can_transition(order.status, OrderStatus.CANCELED):
                raise OrderNotCancelableError(order_id, order.status.value)
            if not await self.repository.transition(
                tx, order_id, OrderStatus.PENDING, OrderStatus.CANCELED
            ):
                raise OrderNotCancelableError(order_id, order.status.value)
            order = self._state_machine.transition(order, OrderStatus.CANCELED)

        logger.info(f"Order {order_id} canceled", extra={"order_id": order_id})
        return order

    async def get_order(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.repository.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order
