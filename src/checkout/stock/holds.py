"""Stock holds — reserve, commit and release commands and their handler.

The handler does the all-or-nothing check for a reservation: every line is
checked against current availability before any counter changes. Callers
must hold the per-product locks (see ``checkout.stock.ledger``) while
processing these commands so the check and the write are not interleaved
with another writer.
"""

import json
from collections import defaultdict

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from checkout.domain import checkout
from checkout.errors import InsufficientStock
from checkout.stock.reservation import Reservation, ReservationStatus
from checkout.stock.stock import StockEntry

logger = structlog.get_logger(__name__)


@checkout.command(part_of="Reservation")
class ReserveStock:
    """Hold stock for every line of an order, or nothing at all."""

    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: [{"product_id": ..., "quantity": ...}]


@checkout.command(part_of="Reservation")
class CommitReservation:
    """Consume the stock held by a reservation."""

    reservation_id = Identifier(required=True)


@checkout.command(part_of="Reservation")
class ReleaseReservation:
    """Return the stock held by a reservation to available."""

    reservation_id = Identifier(required=True)
    reason = String(required=True, max_length=255)


def commit_held_stock(reservation: Reservation) -> bool:
    """Consume the stock held by ``reservation`` inside the current unit of work.

    Returns True if the reservation is (now or already) committed.
    """
    if not reservation.is_active:
        logger.info(
            "Commit skipped; reservation already settled",
            reservation_id=str(reservation.id),
            status=reservation.status,
        )
        return reservation.status == ReservationStatus.COMMITTED.value

    stock_repo = current_domain.repository_for(StockEntry)
    for line in reservation.lines:
        entry = stock_repo.get(line.product_id)
        entry.consume(line.quantity)
        stock_repo.add(entry)

    reservation.mark_committed()
    current_domain.repository_for(Reservation).add(reservation)
    return True


def release_held_stock(reservation: Reservation, reason: str) -> bool:
    """Return the stock held by ``reservation`` inside the current unit of work.

    Returns False if the reservation was already committed or released.
    """
    if not reservation.is_active:
        logger.info(
            "Release skipped; reservation already settled",
            reservation_id=str(reservation.id),
            status=reservation.status,
        )
        return False

    stock_repo = current_domain.repository_for(StockEntry)
    for line in reservation.lines:
        entry = stock_repo.get(line.product_id)
        entry.restore(line.quantity)
        stock_repo.add(entry)

    reservation.mark_released(reason)
    current_domain.repository_for(Reservation).add(reservation)
    return True


def requested_quantities(lines):
    """Sum requested quantities per product, preserving first-seen order."""
    totals = defaultdict(int)
    for line in lines:
        totals[str(line["product_id"])] += int(line["quantity"])
    return dict(totals)


@checkout.command_handler(part_of=Reservation)
class StockHoldHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        reservation_repo = current_domain.repository_for(Reservation)

        # A retried checkout must not hold stock twice for the same order
        existing = reservation_repo.find_for_order(command.order_id)
        if existing is not None:
            logger.info(
                "Reservation already exists for order",
                order_id=str(command.order_id),
                reservation_id=str(existing.id),
            )
            return str(existing.id)

        quantities = requested_quantities(json.loads(command.lines))
        stock_repo = current_domain.repository_for(StockEntry)

        entries = {}
        shortages = {}
        for product_id, quantity in quantities.items():
            try:
                entry = stock_repo.get(product_id)
            except ObjectNotFoundError:
                entry = None
            available = entry.available if entry else 0
            if available < quantity:
                shortages[product_id] = {"requested": quantity, "available": available}
            entries[product_id] = entry

        if shortages:
            raise InsufficientStock(shortages)

        for product_id, quantity in quantities.items():
            entry = entries[product_id]
            entry.hold(quantity)
            stock_repo.add(entry)

        reservation = Reservation.create(order_id=command.order_id, quantities=quantities)
        reservation_repo.add(reservation)
        return str(reservation.id)

    @handle(CommitReservation)
    def commit_reservation(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        return commit_held_stock(reservation)

    @handle(ReleaseReservation)
    def release_reservation(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        return release_held_stock(reservation, command.reason)
