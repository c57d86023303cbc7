"""Tests for the AwaitingGateway timeout — liveness and the last-chance status poll."""

from datetime import timedelta

import pytest
from checkout.gateway.port import GatewayOutcome
from checkout.order.order import OrderStatus
from checkout.settlement.gateway_event import EventResolution, GatewayEventRecord
from checkout.utils.clock import utcnow
from protean import current_domain


@pytest.fixture(autouse=True)
def stock(orchestrator):
    orchestrator.ledger.initialize("prod-a", 10)


@pytest.fixture
def placed(orchestrator):
    return orchestrator.submit_checkout(
        customer_id="cust-001",
        items=[{"product_id": "prod-a", "quantity": 3}],
        idempotency_key="key-001",
    )


def _after_timeout(settings, extra=1):
    return utcnow() + timedelta(seconds=settings.awaiting_gateway_timeout_seconds + extra)


class TestTimeout:
    def test_not_expired_before_timeout(self, orchestrator, placed):
        orchestrator.runner.run_due(now=utcnow() + timedelta(seconds=60))
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.AWAITING_GATEWAY.value

    def test_silent_gateway_fails_order_and_releases_stock(self, orchestrator, settings, placed):
        orchestrator.runner.run_due(now=_after_timeout(settings))

        order = orchestrator.get_order(placed.order_id)
        assert order.status == OrderStatus.FAILED.value
        assert "No payment outcome" in order.failure_reason
        levels = orchestrator.ledger.levels("prod-a")
        assert (levels.available, levels.reserved) == (10, 0)

    def test_timeout_after_completion_is_a_no_op(self, orchestrator, gateway, settings, placed):
        body, signature = gateway.signed_callback(placed.gateway_token, GatewayOutcome.SUCCEEDED)
        orchestrator.receive_callback(body, signature)

        summary = orchestrator.runner.run_due(now=_after_timeout(settings))

        assert summary.exhausted == []
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.COMPLETED.value
        assert orchestrator.ledger.levels("prod-a").available == 7


class TestStatusPoll:
    def test_polled_success_completes_instead_of_timing_out(self, orchestrator, gateway, settings, placed):
        gateway.script_status(placed.gateway_token, GatewayOutcome.SUCCEEDED, transaction_id="txn-polled")

        orchestrator.runner.run_due(now=_after_timeout(settings))

        assert orchestrator.get_order(placed.order_id).status == OrderStatus.COMPLETED.value
        assert current_domain.repository_for(GatewayEventRecord).get("txn-polled").is_processed

    def test_polled_failure_fails_with_provider_reason(self, orchestrator, gateway, settings, placed):
        gateway.script_status(placed.gateway_token, GatewayOutcome.FAILED, failure_reason="Card expired")

        orchestrator.runner.run_due(now=_after_timeout(settings))

        order = orchestrator.get_order(placed.order_id)
        assert order.status == OrderStatus.FAILED.value
        assert order.failure_reason == "Card expired"

    def test_polled_pending_still_times_out(self, orchestrator, gateway, settings, placed):
        gateway.script_status(placed.gateway_token, GatewayOutcome.PENDING)
        orchestrator.runner.run_due(now=_after_timeout(settings))
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.FAILED.value

    def test_unreachable_gateway_still_times_out(self, orchestrator, gateway, settings, placed):
        gateway.configure(should_succeed=False)
        orchestrator.runner.run_due(now=_after_timeout(settings))
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.FAILED.value


class TestTimeoutMeetsCallback:
    def test_callback_during_status_poll_wins(self, orchestrator, gateway, notifier, settings, placed, monkeypatch):
        def callback_lands_during_poll(token):
            body, signature = gateway.signed_callback(token, GatewayOutcome.SUCCEEDED, transaction_id="txn-race")
            orchestrator.receive_callback(body, signature)
            return None

        monkeypatch.setattr(gateway, "fetch_status", callback_lands_during_poll)
        summary = orchestrator.runner.run_due(now=_after_timeout(settings))
        orchestrator.runner.run_due(now=_after_timeout(settings))

        assert summary.exhausted == []
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.COMPLETED.value
        levels = orchestrator.ledger.levels("prod-a")
        assert (levels.available, levels.reserved) == (7, 0)
        assert [n["status"] for n in notifier.for_order(placed.order_id)] == [OrderStatus.COMPLETED.value]

    def test_late_and_duplicate_callbacks_after_timeout(self, orchestrator, gateway, notifier, settings, placed):
        orchestrator.runner.run_due(now=_after_timeout(settings))

        body, signature = gateway.signed_callback(
            placed.gateway_token, GatewayOutcome.SUCCEEDED, transaction_id="txn-late"
        )
        first = orchestrator.receive_callback(body, signature)
        second = orchestrator.receive_callback(body, signature)
        orchestrator.runner.run_due(now=_after_timeout(settings))

        assert first.status == "accepted"
        assert second.status == "duplicate"
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.FAILED.value
        levels = orchestrator.ledger.levels("prod-a")
        assert (levels.available, levels.reserved) == (10, 0)
        record = current_domain.repository_for(GatewayEventRecord).get("txn-late")
        assert record.resolution == EventResolution.IGNORED_TERMINAL.value
        assert [n["status"] for n in notifier.for_order(placed.order_id)] == [OrderStatus.FAILED.value]


class TestCancellation:
    def test_cancel_releases_stock(self, orchestrator, notifier, placed):
        order = orchestrator.cancel(placed.order_id, reason="Changed my mind")

        assert order.status == OrderStatus.CANCELLED.value
        assert order.failure_reason == "Changed my mind"
        assert orchestrator.ledger.levels("prod-a").available == 10

        orchestrator.runner.run_due()
        assert notifier.for_order(placed.order_id)[0]["status"] == OrderStatus.CANCELLED.value

    def test_cancel_terminal_order_rejected(self, orchestrator, placed):
        from checkout.errors import InvalidTransition

        orchestrator.cancel(placed.order_id)
        with pytest.raises(InvalidTransition):
            orchestrator.cancel(placed.order_id)
        assert orchestrator.ledger.levels("prod-a").available == 10

    def test_cancelled_order_does_not_time_out(self, orchestrator, settings, placed):
        orchestrator.cancel(placed.order_id)
        summary = orchestrator.runner.run_due(now=_after_timeout(settings))
        assert summary.exhausted == []
        assert orchestrator.get_order(placed.order_id).status == OrderStatus.CANCELLED.value
