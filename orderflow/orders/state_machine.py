"""
Order State Machine - the order saga's status graph.

State Diagram:

                  inventory.reserved   ┌───────────┐
              ┌──────────────────────→ │ CONFIRMED │
              │                        └───────────┘
    ┌─────────┐  inventory.rejected    ┌────────┐
    │ PENDING │ ─────────────────────→ │ FAILED │
    └─────────┘                        └────────┘
              │   cancel request       ┌──────────┐
              └──────────────────────→ │ CANCELED │
                                       └──────────┘

Every state but PENDING is terminal; nothing ever leaves it.
"""

from orderflow.core.exceptions import InvalidOrderTransitionError
from orderflow.orders.types import Order, OrderStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.FAILED, OrderStatus.CANCELED}
    ),
    OrderStatus.CONFIRMED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


class OrderStateMachine:
    """
    Validates order status transitions.

    Usage:
        >>> sm = OrderStateMachine()
        >>> sm.can_transition(OrderStatus.CONFIRMED, OrderStatus.CANCELED)
        False
        >>> order = sm.transition(order, OrderStatus.CONFIRMED)
    """

    @staticmethod
    def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
        return target in ORDER_TRANSITIONS.get(current, frozenset())

    def validate(self, order_id: str, current: OrderStatus, target: OrderStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidOrderTransitionError(order_id, current.value, target.value)

    def transition(self, order: Order, target: OrderStatus) -> Order:
        """Apply a transition to an in-memory order."""
        self.validate(order.order_id, order.status, target)
        order.status = target
        return order
