"""Tests for the Inventory Ledger — all-or-nothing reservation, commit, release."""

import threading

import pytest
from checkout.domain import checkout
from checkout.errors import InsufficientStock
from checkout.stock.ledger import InventoryLedger
from checkout.stock.reservation import Reservation, ReservationStatus
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


@pytest.fixture
def ledger():
    ledger = InventoryLedger()
    ledger.initialize("prod-a", 5)
    ledger.initialize("prod-b", 2)
    return ledger


class TestReserve:
    def test_reserve_holds_every_line(self, ledger):
        reservation_id = ledger.reserve(
            "order-1", [{"product_id": "prod-a", "quantity": 3}, {"product_id": "prod-b", "quantity": 1}]
        )
        assert ledger.levels("prod-a").available == 2
        assert ledger.levels("prod-a").reserved == 3
        assert ledger.levels("prod-b").available == 1

        reservation = current_domain.repository_for(Reservation).get(reservation_id)
        assert reservation.is_active
        assert str(reservation.order_id) == "order-1"

    def test_duplicate_lines_are_summed(self, ledger):
        ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 2}, {"product_id": "prod-a", "quantity": 2}])
        assert ledger.levels("prod-a").reserved == 4

    def test_shortage_on_one_line_holds_nothing(self, ledger):
        with pytest.raises(InsufficientStock) as exc_info:
            ledger.reserve(
                "order-1", [{"product_id": "prod-a", "quantity": 3}, {"product_id": "prod-b", "quantity": 5}]
            )
        assert exc_info.value.shortages == {"prod-b": {"requested": 5, "available": 2}}
        assert ledger.levels("prod-a").available == 5
        assert ledger.levels("prod-a").reserved == 0
        assert current_domain.repository_for(Reservation).find_for_order("order-1") is None

    def test_unknown_product_is_a_shortage(self, ledger):
        with pytest.raises(InsufficientStock) as exc_info:
            ledger.reserve("order-1", [{"product_id": "prod-missing", "quantity": 1}])
        assert exc_info.value.shortages["prod-missing"]["available"] == 0

    def test_second_reserve_for_same_order_returns_existing(self, ledger):
        first = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 2}])
        second = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 2}])
        assert first == second
        assert ledger.levels("prod-a").reserved == 2


class TestCommitAndRelease:
    def test_commit_consumes_stock(self, ledger):
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        assert ledger.commit(reservation_id) is True
        levels = ledger.levels("prod-a")
        assert levels.available == 2
        assert levels.reserved == 0

    def test_release_restores_exact_levels(self, ledger):
        before = ledger.levels("prod-a")
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        assert ledger.release(reservation_id, reason="Order cancelled") is True
        after = ledger.levels("prod-a")
        assert (after.available, after.reserved) == (before.available, before.reserved)

    def test_commit_is_idempotent(self, ledger):
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        ledger.commit(reservation_id)
        assert ledger.commit(reservation_id) is True
        assert ledger.levels("prod-a").available == 2

    def test_release_is_idempotent(self, ledger):
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        ledger.release(reservation_id, reason="Order failed")
        assert ledger.release(reservation_id, reason="Order failed") is False
        assert ledger.levels("prod-a").available == 5

    def test_release_after_commit_is_a_no_op(self, ledger):
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        ledger.commit(reservation_id)
        assert ledger.release(reservation_id, reason="late") is False
        reservation = current_domain.repository_for(Reservation).get(reservation_id)
        assert reservation.status == ReservationStatus.COMMITTED.value
        assert ledger.levels("prod-a").available == 2

    def test_commit_after_release_reports_false(self, ledger):
        reservation_id = ledger.reserve("order-1", [{"product_id": "prod-a", "quantity": 3}])
        ledger.release(reservation_id, reason="Order failed")
        assert ledger.commit(reservation_id) is False


class TestStockLevels:
    def test_initialize_twice_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.initialize("prod-a", 1)

    def test_restock(self, ledger):
        assert ledger.restock("prod-a", 4) == 9

    def test_restock_unknown_product(self, ledger):
        with pytest.raises(ObjectNotFoundError):
            ledger.restock("prod-missing", 4)


class TestConcurrentReservations:
    def test_only_one_of_two_competing_reservations_wins(self, ledger):
        results = []
        barrier = threading.Barrier(2)

        def reserve(order_id):
            with checkout.domain_context():
                barrier.wait()
                try:
                    ledger.reserve(order_id, [{"product_id": "prod-a", "quantity": 3}])
                    results.append("reserved")
                except InsufficientStock:
                    results.append("rejected")

        threads = [threading.Thread(target=reserve, args=(f"order-{i}",)) for i in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == ["rejected", "reserved"]
        levels = ledger.levels("prod-a")
        assert levels.available == 2
        assert levels.reserved == 3
