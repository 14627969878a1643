"""
Payload schemas, one pydantic model per (eventType, version).

Consumers decode into the fixed shape registered for the pair found in the
envelope. A pair with no registered model is a poison event; there is no
best-effort parsing of unknown versions.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for wire payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class OrderItemPayload(WireModel):
    sku: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class OrderCreatedV1(WireModel):
    event_id: str
    order_id: str
    customer_email: str
    items: list[OrderItemPayload] = Field(min_length=1)
    total_amount: Decimal
    created_at: datetime


class ReservationPayload(WireModel):
    sku: str
    quantity: int = Field(gt=0)


class InventoryReservedV1(WireModel):
    event_id: str
    order_id: str
    reservations: list[ReservationPayload] = Field(min_length=1)


class InventoryRejectedV1(WireModel):
    event_id: str
    order_id: str
    failed_skus: list[str] = Field(min_length=1)


class OrderConfirmedV1(WireModel):
    event_id: str
    order_id: str
    confirmed_at: datetime


class OrderFailedV1(WireModel):
    event_id: str
    order_id: str
    reason: str
    failed_skus: list[str] = Field(default_factory=list)


SCHEMAS: dict[tuple[str, int], type[WireModel]] = {
    ("OrderCreated", 1): OrderCreatedV1,
    ("InventoryReserved", 1): InventoryReservedV1,
    ("InventoryRejected", 1): InventoryRejectedV1,
    ("OrderConfirmed", 1): OrderConfirmedV1,
    ("OrderFailed", 1): OrderFailedV1,
}

# Schema version producers write today
CURRENT_VERSIONS = {
    "OrderCreated": 1,
    "InventoryReserved": 1,
    "InventoryRejected": 1,
    "OrderConfirmed": 1,
    "OrderFailed": 1,
}


def schema_for(event_type: str, version: int) -> type[WireModel] | None:
    return SCHEMAS.get((event_type, version))
