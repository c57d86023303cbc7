"""Order aggregate — the durable record of one checkout attempt.

Pure data plus transition validation; the aggregate performs no I/O. Writes
are owned by the settlement orchestrator, which persists every transition
through a version-checked command.

State Machine:
    PENDING → AWAITING_GATEWAY → SETTLING → COMPLETED
    PENDING/AWAITING_GATEWAY/SETTLING → FAILED     (reservation released)
    PENDING/AWAITING_GATEWAY/SETTLING → CANCELLED  (reservation released)

COMPLETED, FAILED and CANCELLED are terminal.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from checkout.domain import checkout
from checkout.errors import InvalidCart, InvalidTransition
from checkout.order.events import GatewayTokenAssigned, OrderPlaced, OrderStatusChanged


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    AWAITING_GATEWAY = "AwaitingGateway"
    SETTLING = "Settling"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class OrderTrigger(Enum):
    RESERVED = "reserved"
    RESERVATION_REJECTED = "reservation_rejected"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    SETTLED = "settled"
    PAYMENT_FAILED = "payment_failed"
    GATEWAY_TIMED_OUT = "gateway_timed_out"
    RETRIES_EXHAUSTED = "retries_exhausted"
    CANCEL_REQUESTED = "cancel_requested"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED})

_NON_TERMINAL = (OrderStatus.PENDING, OrderStatus.AWAITING_GATEWAY, OrderStatus.SETTLING)

# (current status, trigger) → next status
_TRANSITIONS = {
    (OrderStatus.PENDING, OrderTrigger.RESERVED): OrderStatus.AWAITING_GATEWAY,
    (OrderStatus.PENDING, OrderTrigger.RESERVATION_REJECTED): OrderStatus.FAILED,
    (OrderStatus.AWAITING_GATEWAY, OrderTrigger.PAYMENT_SUCCEEDED): OrderStatus.SETTLING,
    (OrderStatus.SETTLING, OrderTrigger.SETTLED): OrderStatus.COMPLETED,
    (OrderStatus.AWAITING_GATEWAY, OrderTrigger.PAYMENT_FAILED): OrderStatus.FAILED,
    (OrderStatus.AWAITING_GATEWAY, OrderTrigger.GATEWAY_TIMED_OUT): OrderStatus.FAILED,
    **{(status, OrderTrigger.RETRIES_EXHAUSTED): OrderStatus.FAILED for status in _NON_TERMINAL},
    **{(status, OrderTrigger.CANCEL_REQUESTED): OrderStatus.CANCELLED for status in _NON_TERMINAL},
}


def line_amount(quantity, unit_price):
    """Price of one order line, rounded to cents."""
    return round(quantity * unit_price, 2)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@checkout.entity(part_of="Order")
class OrderLine:
    """A line item with the unit price captured when the order was placed."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)

    @property
    def subtotal(self):
        return line_amount(self.quantity, self.unit_price)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@checkout.aggregate
class Order:
    customer_id = Identifier(required=True)
    items = HasMany(OrderLine)
    total_amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    gateway_token = String(max_length=255)
    redirect_url = String(max_length=1000)
    reservation_id = Identifier()
    idempotency_key = String(required=True, max_length=255)
    failure_reason = String(max_length=500)
    version = Integer(default=0)
    created_at = DateTime()
    transitioned_at = DateTime()

    @invariant.post
    def total_matches_price_snapshot(self):
        if self.items and self.total_amount is not None:
            expected = round(sum(line.subtotal for line in self.items), 2)
            if abs(expected - self.total_amount) > 0.005:
                raise ValidationError({"total_amount": ["Total must equal the sum of the captured line prices"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id, items, unit_prices, idempotency_key, currency="USD"):
        """Create a Pending order from cart items and a price snapshot.

        Args:
            items: list of dicts with product_id and quantity.
            unit_prices: mapping of product_id to the catalog price at
                cart-build time. It is never consulted again.
        """
        if not customer_id:
            raise InvalidCart({"customer_id": ["An authenticated customer is required"]})
        if not items:
            raise InvalidCart({"items": ["Cart is empty"]})

        lines = []
        errors = []
        for item in items:
            product_id = str(item.get("product_id") or "")
            quantity = item.get("quantity")
            if not product_id:
                errors.append("Every line needs a product_id")
                continue
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                errors.append(f"Quantity for {product_id} must be a positive integer")
                continue
            price = unit_prices.get(product_id)
            if price is None:
                errors.append(f"Product {product_id} is not in the catalog")
                continue
            if price < 0:
                errors.append(f"Product {product_id} has a negative price")
                continue
            lines.append({"product_id": product_id, "quantity": quantity, "unit_price": float(price)})

        if errors:
            raise InvalidCart({"items": errors})

        now = datetime.now(UTC)
        total = round(sum(line_amount(line["quantity"], line["unit_price"]) for line in lines), 2)
        order = cls(
            customer_id=customer_id,
            total_amount=total,
            currency=currency,
            status=OrderStatus.PENDING.value,
            idempotency_key=idempotency_key,
            version=1,
            created_at=now,
            transitioned_at=now,
            items=[OrderLine(**line) for line in lines],
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                customer_id=str(customer_id),
                items=json.dumps(lines),
                total_amount=total,
                currency=currency,
                idempotency_key=idempotency_key,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    @property
    def is_terminal(self):
        return OrderStatus(self.status) in TERMINAL_STATUSES

    def can_transition(self, trigger: OrderTrigger) -> bool:
        return (OrderStatus(self.status), trigger) in _TRANSITIONS

    def transition(self, trigger: OrderTrigger, reason=None):
        """Apply ``trigger`` and return the order.

        Raises:
            InvalidTransition: if the trigger is not valid from the current
                status. The order is left untouched.
        """
        current = OrderStatus(self.status)
        target = _TRANSITIONS.get((current, trigger))
        if target is None:
            raise InvalidTransition(
                {"status": [f"Cannot apply '{trigger.value}' to an order in {current.value} status"]}
            )

        now = datetime.now(UTC)
        self.status = target.value
        self.version = (self.version or 0) + 1
        self.transitioned_at = now
        if target in (OrderStatus.FAILED, OrderStatus.CANCELLED) and reason:
            self.failure_reason = reason[:500]

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                trigger=trigger.value,
                from_status=current.value,
                to_status=target.value,
                version=self.version,
                reason=reason[:500] if reason else None,
                changed_at=now,
            )
        )
        return self

    # -------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------
    def attach_reservation(self, reservation_id):
        if self.reservation_id and str(self.reservation_id) != str(reservation_id):
            raise ValidationError({"reservation_id": ["Order already holds a different reservation"]})
        self.reservation_id = reservation_id

    def assign_gateway_token(self, token, redirect_url=None):
        """Record the gateway correlation token. Returns False if it was already set."""
        if self.gateway_token:
            if self.gateway_token != token:
                raise ValidationError({"gateway_token": ["Gateway token is immutable once assigned"]})
            return False

        now = datetime.now(UTC)
        self.gateway_token = token
        self.redirect_url = redirect_url
        self.version = (self.version or 0) + 1
        self.raise_(
            GatewayTokenAssigned(
                order_id=str(self.id),
                gateway_token=token,
                assigned_at=now,
            )
        )
        return True

    def to_dict(self):
        return {
            "order_id": str(self.id),
            "customer_id": str(self.customer_id),
            "status": self.status,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "gateway_token": self.gateway_token,
            "redirect_url": self.redirect_url,
            "reservation_id": str(self.reservation_id) if self.reservation_id else None,
            "failure_reason": self.failure_reason,
            "version": self.version,
            "items": [
                {"product_id": str(line.product_id), "quantity": line.quantity, "unit_price": line.unit_price}
                for line in self.items
            ],
        }
