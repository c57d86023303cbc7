"""Repositories for the Inventory Ledger aggregates."""

from checkout.domain import checkout
from checkout.stock.reservation import Reservation


@checkout.repository(part_of=Reservation)
class ReservationRepository:
    def find_for_order(self, order_id) -> Reservation | None:
        """Return the reservation held for ``order_id``, whatever its status."""
        results = self._dao.query.filter(order_id=str(order_id)).all().items
        return results[0] if results else None
