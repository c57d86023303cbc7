"""Tests for StockEntry counters and Reservation lifecycle."""

import pytest
from checkout.stock.events import ReservationCommitted, ReservationReleased, StockInitialized, StockReserved
from checkout.stock.reservation import Reservation, ReservationStatus
from checkout.stock.stock import StockEntry
from protean.exceptions import ValidationError


def _make_entry(quantity=10):
    return StockEntry.initialize(product_id="prod-a", quantity=quantity)


class TestStockEntry:
    def test_initialize(self):
        entry = _make_entry()
        assert entry.available == 10
        assert entry.reserved == 0
        assert entry.version == 1
        assert any(isinstance(e, StockInitialized) for e in entry._events)

    def test_negative_initial_quantity_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_entry(quantity=-1)
        assert "quantity" in exc_info.value.messages

    def test_hold_moves_available_to_reserved(self):
        entry = _make_entry()
        entry.hold(3)
        assert entry.available == 7
        assert entry.reserved == 3
        assert entry.version == 2

    def test_hold_more_than_available_rejected(self):
        entry = _make_entry(quantity=2)
        with pytest.raises(ValidationError):
            entry.hold(3)
        assert entry.available == 2
        assert entry.reserved == 0

    def test_hold_exactly_available(self):
        entry = _make_entry(quantity=2)
        entry.hold(2)
        assert entry.available == 0

    def test_consume_removes_reserved_units(self):
        entry = _make_entry()
        entry.hold(4)
        entry.consume(4)
        assert entry.available == 6
        assert entry.reserved == 0

    def test_restore_returns_units(self):
        entry = _make_entry()
        entry.hold(4)
        entry.restore(4)
        assert entry.available == 10
        assert entry.reserved == 0

    def test_cannot_consume_more_than_reserved(self):
        entry = _make_entry()
        entry.hold(1)
        with pytest.raises(ValidationError):
            entry.consume(2)

    def test_restock_adds_available(self):
        entry = _make_entry()
        entry.restock(5)
        assert entry.available == 15

    def test_restock_requires_positive_quantity(self):
        entry = _make_entry()
        with pytest.raises(ValidationError):
            entry.restock(0)


class TestReservation:
    def _make_reservation(self):
        return Reservation.create(order_id="order-1", quantities={"prod-a": 2, "prod-b": 1})

    def test_create_is_active(self):
        reservation = self._make_reservation()
        assert reservation.is_active
        assert sorted(reservation.product_ids) == ["prod-a", "prod-b"]
        assert any(isinstance(e, StockReserved) for e in reservation._events)

    def test_empty_reservation_rejected(self):
        with pytest.raises(ValidationError):
            Reservation.create(order_id="order-1", quantities={})

    def test_commit(self):
        reservation = self._make_reservation()
        reservation.mark_committed()
        assert reservation.status == ReservationStatus.COMMITTED.value
        assert reservation.settled_at is not None
        assert any(isinstance(e, ReservationCommitted) for e in reservation._events)

    def test_release_records_reason(self):
        reservation = self._make_reservation()
        reservation.mark_released("Order failed")
        assert reservation.status == ReservationStatus.RELEASED.value
        assert reservation.release_reason == "Order failed"
        assert any(isinstance(e, ReservationReleased) for e in reservation._events)

    def test_committed_reservation_cannot_be_released(self):
        reservation = self._make_reservation()
        reservation.mark_committed()
        with pytest.raises(ValidationError):
            reservation.mark_released("too late")

    def test_released_reservation_cannot_be_committed(self):
        reservation = self._make_reservation()
        reservation.mark_released("Order cancelled")
        with pytest.raises(ValidationError):
            reservation.mark_committed()
