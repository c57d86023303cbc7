"""Order placement — command and handler.

Creates the Pending order and its checkout idempotency record in one unit of
work, so a crash can never leave an order that its idempotency key does not
point to.
"""

import json

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from checkout.domain import checkout
from checkout.order.order import Order
from checkout.settlement.idempotency import IdempotencyRecord, IdempotencyScope


@checkout.command(part_of="Order")
class PlaceOrder:
    """Create a Pending order from a cart and its price snapshot."""

    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: [{"product_id": ..., "quantity": ...}]
    unit_prices = Text(required=True)  # JSON: {"product_id": price}
    idempotency_key = String(required=True, max_length=255)
    currency = String(max_length=3, default="USD")


@checkout.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        record_key = IdempotencyRecord.key_for(IdempotencyScope.CHECKOUT, command.idempotency_key)
        idempotency_repo = current_domain.repository_for(IdempotencyRecord)
        try:
            existing = idempotency_repo.get(record_key)
        except ObjectNotFoundError:
            existing = None
        if existing is not None:
            return str(existing.order_id)

        order = Order.create(
            customer_id=command.customer_id,
            items=json.loads(command.items),
            unit_prices=json.loads(command.unit_prices),
            idempotency_key=command.idempotency_key,
            currency=command.currency or "USD",
        )
        current_domain.repository_for(Order).add(order)
        idempotency_repo.add(
            IdempotencyRecord.start(
                scope=IdempotencyScope.CHECKOUT,
                key=command.idempotency_key,
                order_id=str(order.id),
            )
        )
        return str(order.id)
