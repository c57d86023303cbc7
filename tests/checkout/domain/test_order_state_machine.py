"""Tests for the Order state machine — valid paths, rejected triggers, versions."""

import pytest
from checkout.errors import InvalidTransition
from checkout.order.events import GatewayTokenAssigned, OrderStatusChanged
from checkout.order.order import Order, OrderStatus, OrderTrigger
from protean.exceptions import ValidationError


def _make_order():
    return Order.create(
        customer_id="cust-001",
        items=[{"product_id": "prod-a", "quantity": 1}],
        unit_prices={"prod-a": 10.0},
        idempotency_key="key-001",
    )


def _order_in(status):
    order = _make_order()
    path = {
        OrderStatus.PENDING: [],
        OrderStatus.AWAITING_GATEWAY: [OrderTrigger.RESERVED],
        OrderStatus.SETTLING: [OrderTrigger.RESERVED, OrderTrigger.PAYMENT_SUCCEEDED],
        OrderStatus.COMPLETED: [OrderTrigger.RESERVED, OrderTrigger.PAYMENT_SUCCEEDED, OrderTrigger.SETTLED],
        OrderStatus.FAILED: [OrderTrigger.RESERVATION_REJECTED],
        OrderStatus.CANCELLED: [OrderTrigger.CANCEL_REQUESTED],
    }[status]
    for trigger in path:
        order.transition(trigger)
    return order


class TestHappyPath:
    def test_full_settlement_path(self):
        order = _make_order()
        order.transition(OrderTrigger.RESERVED)
        assert order.status == OrderStatus.AWAITING_GATEWAY.value
        order.transition(OrderTrigger.PAYMENT_SUCCEEDED)
        assert order.status == OrderStatus.SETTLING.value
        order.transition(OrderTrigger.SETTLED)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.is_terminal

    def test_each_transition_bumps_version(self):
        order = _make_order()
        versions = [order.version]
        for trigger in (OrderTrigger.RESERVED, OrderTrigger.PAYMENT_SUCCEEDED, OrderTrigger.SETTLED):
            order.transition(trigger)
            versions.append(order.version)
        assert versions == [1, 2, 3, 4]

    def test_transition_raises_status_changed_event(self):
        order = _make_order()
        order.transition(OrderTrigger.RESERVED)
        event = next(e for e in order._events if isinstance(e, OrderStatusChanged))
        assert event.from_status == OrderStatus.PENDING.value
        assert event.to_status == OrderStatus.AWAITING_GATEWAY.value
        assert event.trigger == OrderTrigger.RESERVED.value
        assert event.version == 2


class TestFailurePaths:
    def test_reservation_rejected_fails_pending_order(self):
        order = _order_in(OrderStatus.PENDING)
        order.transition(OrderTrigger.RESERVATION_REJECTED, reason="Insufficient stock")
        assert order.status == OrderStatus.FAILED.value
        assert order.failure_reason == "Insufficient stock"

    def test_payment_failed_from_awaiting_gateway(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        order.transition(OrderTrigger.PAYMENT_FAILED, reason="Card declined")
        assert order.status == OrderStatus.FAILED.value

    def test_gateway_timeout_from_awaiting_gateway(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        order.transition(OrderTrigger.GATEWAY_TIMED_OUT)
        assert order.status == OrderStatus.FAILED.value

    @pytest.mark.parametrize(
        "status", [OrderStatus.PENDING, OrderStatus.AWAITING_GATEWAY, OrderStatus.SETTLING]
    )
    def test_retries_exhausted_fails_any_open_order(self, status):
        order = _order_in(status)
        order.transition(OrderTrigger.RETRIES_EXHAUSTED)
        assert order.status == OrderStatus.FAILED.value

    @pytest.mark.parametrize(
        "status", [OrderStatus.PENDING, OrderStatus.AWAITING_GATEWAY, OrderStatus.SETTLING]
    )
    def test_cancel_from_any_open_order(self, status):
        order = _order_in(status)
        order.transition(OrderTrigger.CANCEL_REQUESTED)
        assert order.status == OrderStatus.CANCELLED.value


class TestRejectedTransitions:
    def test_cannot_skip_settling(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        with pytest.raises(InvalidTransition):
            order.transition(OrderTrigger.SETTLED)

    def test_cannot_pay_before_reservation(self):
        order = _order_in(OrderStatus.PENDING)
        with pytest.raises(InvalidTransition):
            order.transition(OrderTrigger.PAYMENT_SUCCEEDED)

    def test_timeout_does_not_apply_while_settling(self):
        order = _order_in(OrderStatus.SETTLING)
        with pytest.raises(InvalidTransition):
            order.transition(OrderTrigger.GATEWAY_TIMED_OUT)

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED])
    @pytest.mark.parametrize("trigger", list(OrderTrigger))
    def test_nothing_leaves_a_terminal_state(self, status, trigger):
        order = _order_in(status)
        with pytest.raises(InvalidTransition):
            order.transition(trigger)

    def test_rejected_transition_leaves_order_untouched(self):
        order = _order_in(OrderStatus.COMPLETED)
        version = order.version
        with pytest.raises(InvalidTransition):
            order.transition(OrderTrigger.CANCEL_REQUESTED)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.version == version

    def test_can_transition_matches_transition(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        assert order.can_transition(OrderTrigger.PAYMENT_SUCCEEDED)
        assert not order.can_transition(OrderTrigger.RESERVED)


class TestGatewayToken:
    def test_assign_token(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        assert order.assign_gateway_token("tok-1", redirect_url="https://pay/tok-1") is True
        assert order.gateway_token == "tok-1"
        assert any(isinstance(e, GatewayTokenAssigned) for e in order._events)

    def test_assigning_same_token_again_is_a_no_op(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        order.assign_gateway_token("tok-1")
        version = order.version
        assert order.assign_gateway_token("tok-1") is False
        assert order.version == version

    def test_token_is_immutable(self):
        order = _order_in(OrderStatus.AWAITING_GATEWAY)
        order.assign_gateway_token("tok-1")
        with pytest.raises(ValidationError) as exc_info:
            order.assign_gateway_token("tok-2")
        assert "gateway_token" in exc_info.value.messages
