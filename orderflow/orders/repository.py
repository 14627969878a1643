"""
Order persistence.
"""

import json
from decimal import Decimal

from orderflow.orders.types import LineItem, Order, OrderStatus
from orderflow.storage.database import Database, Row, Transaction, parse_timestamp, utcnow


class OrderRepository:
    """
    Reads and writes on the `orders` table.

    Status changes are conditional updates on the expected current status, so
    a transition can never be applied on top of a concurrent one.
    """

    def __init__(self, database: Database):
        self.database = database

    async def insert(self, tx: Transaction, order: Order) -> None:
        await tx.execute(
            """
            INSERT INTO orders (
                order_id, customer_email, items, total_amount, status,
                created_at, updated_at, idempotency_key_hash
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            order.order_id,
            order.customer_email,
            json.dumps([item.to_dict() for item in order.items]),
            order.total_amount,
            order.status.value,
            order.created_at,
            order.updated_at,
            order.idempotency_key_hash,
        )

    async def get(self, order_id: str, tx: Transaction | None = None) -> Order | None:
        sql = "SELECT * FROM orders WHERE order_id = $1"
        row = await (tx.fetchrow(sql, order_id) if tx else self.database.fetchrow(sql, order_id))
        return self._row_to_order(row) if row else None

    async def find_by_idempotency_key(self, tx: Transaction, key_hash: str) -> Order | None:
        row = await tx.fetchrow("SELECT * FROM orders WHERE idempotency_key_hash = $1", key_hash)
        return self._row_to_order(row) if row else None

    async def transition(
        self,
        tx: Transaction,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> bool:
        """Move an order from `from_status` to `to_status`. False if it was not in `from_status`."""
        updated = await tx.execute(
            """
            UPDATE orders SET status = $3, updated_at = $4
            WHERE order_id = $1 AND status = $2
            """,
            order_id,
            from_status.value,
            to_status.value,
            utcnow(),
        )
        return updated > 0

    async def list_recent(self, limit: int = 20) -> list[Order]:
        rows = await self.database.fetch(
            "SELECT * FROM orders ORDER BY created_at DESC LIMIT $1", limit
        )
        return [self._row_to_order(row) for row in rows]

    @staticmethod
    def _row_to_order(row: Row) -> Order:
        items = json.loads(row["items"])
        return Order(
            order_id=row["order_id"],
            customer_email=row["customer_email"],
            items=[
                LineItem(
                    sku=item["sku"],
                    quantity=item["quantity"],
                    unit_price=Decimal(item["unitPrice"]),
                )
                for item in items
            ],
            total_amount=Decimal(str(row["total_amount"])),
            status=OrderStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            idempotency_key_hash=row["idempotency_key_hash"],
        )
