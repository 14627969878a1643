"""
Tests for order types and the order state machine.
"""

from decimal import Decimal

import pytest

from orderflow.core.exceptions import InvalidOrderTransitionError, OrderValidationError
from orderflow.orders.state_machine import ORDER_TRANSITIONS, OrderStateMachine
from orderflow.orders.types import LineItem, Order, OrderStatus


class TestLineItem:
    def test_parse_accepts_wire_style_price(self):
        line = LineItem.parse({"sku": "A", "quantity": 3, "unitPrice": "2.50"})

        assert line.unit_price == Decimal("2.50")
        assert line.subtotal == Decimal("7.50")

    def test_bool_is_not_a_quantity(self):
        with pytest.raises(OrderValidationError):
            LineItem.parse({"sku": "A", "quantity": True, "unit_price": "1"})

    def test_nan_price_rejected(self):
        with pytest.raises(OrderValidationError):
            LineItem.parse({"sku": "A", "quantity": 1, "unit_price": "NaN"})

    def test_to_dict_uses_wire_names(self):
        line = LineItem("A", 2, Decimal("1.10"))

        assert line.to_dict() == {"sku": "A", "quantity": 2, "unitPrice": "1.10"}


class TestOrder:
    def test_total_is_sum_of_subtotals(self):
        order = Order.create(
            "ada@example.com",
            [
                {"sku": "A", "quantity": 2, "unit_price": "0.10"},
                {"sku": "B", "quantity": 1, "unit_price": "0.20"},
            ],
        )

        assert order.total_amount == Decimal("0.40")
        assert order.validate_total()
        assert order.status == OrderStatus.PENDING

    def test_ids_are_unique(self):
        items = [{"sku": "A", "quantity": 1, "unit_price": "1"}]

        assert Order.create("a@x.io", items).order_id != Order.create("a@x.io", items).order_id


class TestOrderStateMachine:
    @pytest.mark.parametrize(
        "target", [OrderStatus.CONFIRMED, OrderStatus.FAILED, OrderStatus.CANCELED]
    )
    def test_pending_reaches_every_terminal(self, target):
        assert OrderStateMachine.can_transition(OrderStatus.PENDING, target)

    @pytest.mark.parametrize(
        "current", [OrderStatus.CONFIRMED, OrderStatus.FAILED, OrderStatus.CANCELED]
    )
    def test_terminal_states_never_leave(self, current):
        assert current.is_terminal
        assert ORDER_TRANSITIONS[current] == frozenset()
        for target in OrderStatus:
            assert not OrderStateMachine.can_transition(current, target)

    def test_transition_rejects_invalid_move(self):
        order = Order.create("a@x.io", [{"sku": "A", "quantity": 1, "unit_price": "1"}])
        sm = OrderStateMachine()
        sm.transition(order, OrderStatus.CONFIRMED)

        with pytest.raises(InvalidOrderTransitionError) as exc_info:
            sm.transition(order, OrderStatus.CANCELED)

        assert exc_info.value.from_status == "CONFIRMED"
        assert order.status == OrderStatus.CONFIRMED
