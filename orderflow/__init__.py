# ============================================
# FILE: orderflow/__init__.py
# ============================================

"""
orderflow - Event-driven order placement with transactional outbox and
idempotent consumers.

An order is created synchronously together with its `order.created` outbox
record. From there everything is asynchronous:

    order service        order.created      inventory service
    (orders + outbox) ─────────────────────→ (reservation engine)
          ▲                                        │
          │  inventory.reserved / inventory.rejected
          └────────────────────────────────────────┘
          │
          └── order.confirmed / order.failed ──→ notification sink

Guarantees:
- a state change and the event announcing it commit together (outbox)
- an event redelivered any number of times is applied once (consumer ledger)
- orders only move PENDING → CONFIRMED | FAILED | CANCELED
- stock is reserved for every line of an order or for none
- undecodable events and exhausted retries end up on `<topic>.dlq`

Quick Start:
    >>> from orderflow import (
    ...     InMemoryEventBus, InventoryServiceRuntime, OrderServiceRuntime,
    ...     ServiceConfig, SQLiteDatabase,
    ... )
    >>>
    >>> bus = InMemoryEventBus()
    >>> await bus.connect()
    >>> orders = OrderServiceRuntime(ServiceConfig("order", "sqlite:///:memory:"), bus)
    >>> inventory = InventoryServiceRuntime(ServiceConfig("inventory", "sqlite:///:memory:"), bus)
    >>> await orders.initialize(); await inventory.initialize()
    >>>
    >>> await inventory.engine.stock("SKU-A", 5)
    >>> order = await orders.orders.create_order(
    ...     "ada@example.com", [{"sku": "SKU-A", "quantity": 2, "unit_price": "100"}]
    ... )
"""

__version__ = "0.1.0"

from orderflow.bus import InMemoryEventBus, create_event_bus
from orderflow.consumer import ConsumerWorker
from orderflow.core.config import ConsumerConfig, ServiceConfig
from orderflow.core.exceptions import (
    OrderflowError,
    OrderNotCancelableError,
    OrderNotFoundError,
    OrderValidationError,
    PoisonEventError,
    TransientError,
)
from orderflow.deadletter import DeadLetterRouter
from orderflow.events import Event
from orderflow.inventory import InventoryLine, InventoryReservationEngine
from orderflow.ledger import ConsumerLedger, HandlerResult, IdempotentConsumer, LedgerOutcome
from orderflow.notifications import NotificationLogSink
from orderflow.orders import LineItem, Order, OrderService, OrderStatus, OrderStatusReconciler
from orderflow.outbox import OutboxConfig, OutboxPublisher, OutboxRecord, OutboxStatus, OutboxStore
from orderflow.services import InventoryServiceRuntime, OrderServiceRuntime, run_services
from orderflow.storage import SQLiteDatabase, create_database

__all__ = [
    "ConsumerConfig",
    "ConsumerLedger",
    "ConsumerWorker",
    "DeadLetterRouter",
    "Event",
    "HandlerResult",
    "IdempotentConsumer",
    "InMemoryEventBus",
    "InventoryLine",
    "InventoryReservationEngine",
    "InventoryServiceRuntime",
    "LedgerOutcome",
    "LineItem",
    "NotificationLogSink",
    "Order",
    "OrderNotCancelableError",
    "OrderNotFoundError",
    "OrderService",
    "OrderServiceRuntime",
    "OrderStatus",
    "OrderStatusReconciler",
    "OrderValidationError",
    "OrderflowError",
    "OutboxConfig",
    "OutboxPublisher",
    "OutboxRecord",
    "OutboxStatus",
    "OutboxStore",
    "PoisonEventError",
    "SQLiteDatabase",
    "ServiceConfig",
    "TransientError",
    "__version__",
    "create_database",
    "create_event_bus",
    "run_services",
]
