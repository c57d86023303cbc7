"""StockEntry aggregate — the reservable stock counter of one product.

Stock Level Model:
    available: units that can still be reserved
    reserved:  units held for orders that have not settled yet

A reservation moves units from available to reserved; a commit removes them
from reserved for good; a release moves them back to available. Every
mutation bumps ``version`` so writers can detect stale reads.
"""

from datetime import UTC, datetime

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer

from checkout.domain import checkout
from checkout.stock.events import StockInitialized, StockRestocked


@checkout.aggregate
class StockEntry:
    product_id = Identifier(identifier=True, required=True)
    available = Integer(default=0)
    reserved = Integer(default=0)
    version = Integer(default=0)
    updated_at = DateTime()

    @invariant.post
    def counts_cannot_be_negative(self):
        if self.available is not None and self.available < 0:
            raise ValidationError({"available": ["Available stock cannot be negative"]})
        if self.reserved is not None and self.reserved < 0:
            raise ValidationError({"reserved": ["Reserved stock cannot be negative"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def initialize(cls, product_id, quantity):
        if quantity < 0:
            raise ValidationError({"quantity": ["Initial quantity cannot be negative"]})

        now = datetime.now(UTC)
        entry = cls(
            product_id=product_id,
            available=quantity,
            reserved=0,
            version=1,
            updated_at=now,
        )
        entry.raise_(
            StockInitialized(
                product_id=str(product_id),
                quantity=quantity,
                initialized_at=now,
            )
        )
        return entry

    # -------------------------------------------------------------------
    # Ledger movements
    # -------------------------------------------------------------------
    def can_hold(self, quantity):
        return self.available >= quantity

    def hold(self, quantity):
        """Move ``quantity`` units from available to reserved."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if not self.can_hold(quantity):
            raise ValidationError(
                {"quantity": [f"Insufficient stock: {self.available} available, {quantity} requested"]}
            )

        with atomic_change(self):
            self.available -= quantity
            self.reserved += quantity
            self._touch()

    def consume(self, quantity):
        """Remove ``quantity`` held units permanently (the sale happened)."""
        if quantity > self.reserved:
            raise ValidationError({"quantity": [f"Cannot consume {quantity}: only {self.reserved} reserved"]})

        with atomic_change(self):
            self.reserved -= quantity
            self._touch()

    def restore(self, quantity):
        """Return ``quantity`` held units to available."""
        if quantity > self.reserved:
            raise ValidationError({"quantity": [f"Cannot restore {quantity}: only {self.reserved} reserved"]})

        with atomic_change(self):
            self.reserved -= quantity
            self.available += quantity
            self._touch()

    def restock(self, quantity):
        """Add newly confirmed units to available."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        with atomic_change(self):
            self.available += quantity
            self._touch()

        self.raise_(
            StockRestocked(
                product_id=str(self.product_id),
                quantity=quantity,
                new_available=self.available,
                restocked_at=self.updated_at,
            )
        )

    def _touch(self):
        self.version = (self.version or 0) + 1
        self.updated_at = datetime.now(UTC)
