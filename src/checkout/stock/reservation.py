"""Reservation aggregate — the stock held for one order.

Lifecycle:
    ACTIVE → COMMITTED  (payment settled, stock consumed)
    ACTIVE → RELEASED   (order failed or was cancelled, stock returned)

Committed and released reservations are final. Repeating either operation
is a no-op, which is what makes ledger retries safe.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from checkout.domain import checkout
from checkout.stock.events import ReservationCommitted, ReservationReleased, StockReserved


class ReservationStatus(Enum):
    ACTIVE = "Active"
    COMMITTED = "Committed"
    RELEASED = "Released"


@checkout.entity(part_of="Reservation")
class ReservationLine:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@checkout.aggregate
class Reservation:
    order_id = Identifier(required=True)
    lines = HasMany(ReservationLine)
    status = String(choices=ReservationStatus, default=ReservationStatus.ACTIVE.value)
    release_reason = String(max_length=255)
    reserved_at = DateTime()
    settled_at = DateTime()

    @classmethod
    def create(cls, order_id, quantities):
        """Create an active reservation.

        Args:
            quantities: mapping of product_id to the total quantity held.
        """
        if not quantities:
            raise ValidationError({"lines": ["A reservation needs at least one line"]})

        now = datetime.now(UTC)
        reservation = cls(
            order_id=order_id,
            status=ReservationStatus.ACTIVE.value,
            reserved_at=now,
        )
        for product_id, quantity in quantities.items():
            reservation.add_lines(ReservationLine(product_id=product_id, quantity=quantity))

        reservation.raise_(
            StockReserved(
                reservation_id=str(reservation.id),
                order_id=str(order_id),
                lines=json.dumps(
                    [{"product_id": str(pid), "quantity": qty} for pid, qty in quantities.items()]
                ),
                reserved_at=now,
            )
        )
        return reservation

    @property
    def is_active(self):
        return ReservationStatus(self.status) == ReservationStatus.ACTIVE

    @property
    def product_ids(self):
        return [str(line.product_id) for line in self.lines]

    def mark_committed(self):
        if not self.is_active:
            raise ValidationError({"status": [f"Cannot commit a {self.status} reservation"]})

        now = datetime.now(UTC)
        self.status = ReservationStatus.COMMITTED.value
        self.settled_at = now
        self.raise_(
            ReservationCommitted(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                committed_at=now,
            )
        )

    def mark_released(self, reason):
        if not self.is_active:
            raise ValidationError({"status": [f"Cannot release a {self.status} reservation"]})

        now = datetime.now(UTC)
        self.status = ReservationStatus.RELEASED.value
        self.release_reason = reason
        self.settled_at = now
        self.raise_(
            ReservationReleased(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                released_at=now,
            )
        )
