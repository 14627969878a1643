"""
Order service: the order aggregate, its status saga and the synchronous
create/cancel operations.
"""

from orderflow.orders.reconciler import OrderStatusReconciler
from orderflow.orders.repository import OrderRepository
from orderflow.orders.service import OrderService, hash_idempotency_key
from orderflow.orders.state_machine import ORDER_TRANSITIONS, OrderStateMachine
from orderflow.orders.types import LineItem, Order, OrderStatus

__all__ = [
    "ORDER_TRANSITIONS",
    "LineItem",
    "Order",
    "OrderRepository",
    "OrderService",
    "OrderStateMachine",
    "OrderStatus",
    "OrderStatusReconciler",
    "hash_idempotency_key",
]
