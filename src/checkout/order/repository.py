"""Repository for the Order aggregate."""

from checkout.domain import checkout
from checkout.order.order import Order, OrderStatus


@checkout.repository(part_of=Order)
class OrderRepository:
    def find_by_gateway_token(self, token: str) -> Order | None:
        """Find the order correlated with a gateway session token."""
        results = self._dao.query.filter(gateway_token=token).all().items
        return results[0] if results else None

    def find_by_status(self, status: OrderStatus) -> list[Order]:
        return self._dao.query.filter(status=status.value).all().items
