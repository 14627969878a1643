"""
Order aggregate types.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from orderflow.core.exceptions import OrderValidationError


class OrderStatus(Enum):
    """
    Order status.

    State transitions:
        PENDING → CONFIRMED   on inventory.reserved
        PENDING → FAILED      on inventory.rejected
        PENDING → CANCELED    on an explicit cancel request
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


@dataclass(frozen=True)
class LineItem:
    sku: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def parse(cls, raw: "LineItem | dict[str, Any]") -> "LineItem":
        """
        Build a validated line item from a LineItem or a mapping
        (`unit_price` or wire-style `unitPrice`).

        Raises:
            OrderValidationError: On a missing sku, a non-positive quantity or
                a negative or non-numeric price
        """
        if isinstance(raw, LineItem):
            sku, quantity, price = raw.sku, raw.quantity, raw.unit_price
        else:
            sku = raw.get("sku")
            quantity = raw.get("quantity")
            price = raw.get("unit_price", raw.get("unitPrice"))

        if not sku or not isinstance(sku, str):
            msg = "Line item needs a sku"
            raise OrderValidationError(msg)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            msg = f"Quantity for {sku} must be a positive integer, got {quantity!r}"
            raise OrderValidationError(msg)
        try:
            unit_price = Decimal(str(price))
        except (InvalidOperation, ValueError) as e:
            msg = f"Unit price for {sku} is not a number: {price!r}"
            raise OrderValidationError(msg) from e
        if not unit_price.is_finite() or unit_price < 0:
            msg = f"Unit price for {sku} must be non-negative, got {price!r}"
            raise OrderValidationError(msg)
        return cls(sku=sku, quantity=quantity, unit_price=unit_price)

    def to_dict(self) -> dict[str, Any]:
        return {"sku": self.sku, "quantity": self.quantity, "unitPrice": str(self.unit_price)}


@dataclass
class Order:
    """
    Order aggregate.

    `total_amount` always equals the sum of the line-item subtotals.
    """

    order_id: str
    customer_email: str
    items: list[LineItem]
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    idempotency_key_hash: str | None = None

    @classmethod
    def create(
        cls,
        customer_email: str,
        items: list[LineItem | dict[str, Any]],
        idempotency_key_hash: str | None = None,
    ) -> "Order":
        """
        New PENDING order with a generated id.

        Raises:
            OrderValidationError: On an empty item list, a missing customer
                email or an invalid line item
        """
        if not customer_email or "@" not in customer_email:
            msg = f"Invalid customer email: {customer_email!r}"
            raise OrderValidationError(msg)
        if not items:
            msg = "An order needs at least one line item"
            raise OrderValidationError(msg)

        line_items = [LineItem.parse(item) for item in items]
        now = datetime.now(UTC)
        return cls(
            order_id=uuid.uuid4().hex,
            customer_email=customer_email,
            items=line_items,
            total_amount=sum((item.subtotal for item in line_items), Decimal("0")),
            created_at=now,
            updated_at=now,
            idempotency_key_hash=idempotency_key_hash,
        )

    def validate_total(self) -> bool:
        return self.total_amount == sum((item.subtotal for item in self.items), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_email": self.customer_email,
            "items": [item.to_dict() for item in self.items],
            "total_amount": str(self.total_amount),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
