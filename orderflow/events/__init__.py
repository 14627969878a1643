"""
Event envelope, topics, payload schemas and the JSON wire codec.
"""

from orderflow.events.codec import build_event, decode_event, encode_event, parse_payload
from orderflow.events.schemas import (
    InventoryRejectedV1,
    InventoryReservedV1,
    OrderConfirmedV1,
    OrderCreatedV1,
    OrderFailedV1,
    OrderItemPayload,
    ReservationPayload,
)
from orderflow.events.types import (
    CORRELATION_ID_HEADER,
    INVENTORY_REJECTED,
    INVENTORY_RESERVED,
    ORDER_CONFIRMED,
    ORDER_CREATED,
    ORDER_FAILED,
    Event,
    dlq_topic,
)

__all__ = [
    "CORRELATION_ID_HEADER",
    "INVENTORY_REJECTED",
    "INVENTORY_RESERVED",
    "ORDER_CONFIRMED",
    "ORDER_CREATED",
    "ORDER_FAILED",
    "Event",
    "InventoryRejectedV1",
    "InventoryReservedV1",
    "OrderConfirmedV1",
    "OrderCreatedV1",
    "OrderFailedV1",
    "OrderItemPayload",
    "ReservationPayload",
    "build_event",
    "decode_event",
    "dlq_topic",
    "encode_event",
    "parse_payload",
]
