"""Inventory Ledger — the only entry point for stock mutations.

Wraps the stock hold commands with per-product mutual exclusion: the locks of
every product a command touches are held until the command's unit of work
has committed, so concurrent reservations against the same product are
serialized while reservations against different products proceed in
parallel.
"""

import json
from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from checkout.stock.holds import CommitReservation, ReleaseReservation, ReserveStock, requested_quantities
from checkout.stock.initialization import InitializeStock, RestockProduct
from checkout.stock.reservation import Reservation
from checkout.stock.stock import StockEntry
from checkout.utils.locks import stock_locks

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockLevels:
    product_id: str
    available: int
    reserved: int
    version: int


class InventoryLedger:
    """Reserve, commit and release stock for orders."""

    def reserve(self, order_id: str, items: list[dict]) -> str:
        """Hold stock for all ``items`` and return the reservation id.

        Raises:
            InsufficientStock: when any line cannot be satisfied. Nothing is
                held in that case.
        """
        product_ids = list(requested_quantities(items))
        with stock_locks.hold(*product_ids):
            reservation_id = current_domain.process(
                ReserveStock(order_id=order_id, lines=json.dumps(items)),
                asynchronous=False,
            )

        logger.info("Stock reserved", order_id=str(order_id), reservation_id=reservation_id)
        return reservation_id

    def commit(self, reservation_id: str) -> bool:
        """Consume a reservation. Returns False when it was already released."""
        product_ids = self._product_ids(reservation_id)
        with stock_locks.hold(*product_ids):
            committed = current_domain.process(
                CommitReservation(reservation_id=reservation_id),
                asynchronous=False,
            )

        logger.info("Reservation committed", reservation_id=str(reservation_id), committed=committed)
        return committed

    def release(self, reservation_id: str, reason: str) -> bool:
        """Return a reservation's stock. Returns False if nothing was released."""
        product_ids = self._product_ids(reservation_id)
        with stock_locks.hold(*product_ids):
            released = current_domain.process(
                ReleaseReservation(reservation_id=reservation_id, reason=reason),
                asynchronous=False,
            )

        logger.info(
            "Reservation released",
            reservation_id=str(reservation_id),
            released=released,
            reason=reason,
        )
        return released

    def initialize(self, product_id: str, quantity: int) -> str:
        with stock_locks.hold(product_id):
            return current_domain.process(
                InitializeStock(product_id=product_id, quantity=quantity),
                asynchronous=False,
            )

    def restock(self, product_id: str, quantity: int) -> int:
        with stock_locks.hold(product_id):
            return current_domain.process(
                RestockProduct(product_id=product_id, quantity=quantity),
                asynchronous=False,
            )

    def levels(self, product_id: str) -> StockLevels:
        entry = current_domain.repository_for(StockEntry).get(product_id)
        return StockLevels(
            product_id=str(entry.product_id),
            available=entry.available,
            reserved=entry.reserved,
            version=entry.version,
        )

    @staticmethod
    def _product_ids(reservation_id):
        reservation = current_domain.repository_for(Reservation).get(reservation_id)
        return reservation.product_ids
