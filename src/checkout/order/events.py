"""Domain events for the Order aggregate.

Downstream collaborators (reporting, notifications) read these facts; the
settlement pipeline itself never reacts to them.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from checkout.domain import checkout


@checkout.event(part_of="Order")
class OrderPlaced:
    """An order was created from a cart in Pending status."""

    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON snapshot of lines with unit prices
    total_amount = Float(required=True)
    currency = String(required=True)
    idempotency_key = String(required=True)
    placed_at = DateTime(required=True)


@checkout.event(part_of="Order")
class OrderStatusChanged:
    """An order moved from one status to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    trigger = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    version = Integer(required=True)
    reason = String(max_length=500)
    changed_at = DateTime(required=True)


@checkout.event(part_of="Order")
class GatewayTokenAssigned:
    """The payment gateway session token was recorded on the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    gateway_token = String(required=True)
    assigned_at = DateTime(required=True)
