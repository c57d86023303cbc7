"""Domain events for the Inventory Ledger (StockEntry and Reservation)."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from checkout.domain import checkout


@checkout.event(part_of="StockEntry")
class StockInitialized:
    """A stock entry was created with its first confirmed stock level."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    initialized_at = DateTime(required=True)


@checkout.event(part_of="StockEntry")
class StockRestocked:
    """Confirmed stock was added to a product."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    new_available = Integer(required=True)
    restocked_at = DateTime(required=True)


@checkout.event(part_of="Reservation")
class StockReserved:
    """Stock was held for an order across one or more products."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: [{"product_id": ..., "quantity": ...}]
    reserved_at = DateTime(required=True)


@checkout.event(part_of="Reservation")
class ReservationCommitted:
    """Held stock was consumed permanently."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    committed_at = DateTime(required=True)


@checkout.event(part_of="Reservation")
class ReservationReleased:
    """Held stock was returned to available."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(max_length=255)
    released_at = DateTime(required=True)
