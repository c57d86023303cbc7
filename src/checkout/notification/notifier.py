"""Order notifier port and a recording fake."""

from abc import ABC, abstractmethod

import structlog

from checkout.errors import TransientError

logger = structlog.get_logger(__name__)


class NotificationFailed(TransientError):
    """The notification channel could not deliver the message."""


class OrderNotifier(ABC):
    @abstractmethod
    def notify(self, customer_id: str, order_id: str, status: str, reason: str | None = None) -> None:
        """Tell the customer that their order reached ``status``.

        Raises:
            NotificationFailed: delivery failed and may be retried.
        """
        ...


class FakeNotifier(OrderNotifier):
    """Records notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.should_succeed = True

    def configure(self, should_succeed: bool) -> None:
        self.should_succeed = should_succeed

    def notify(self, customer_id: str, order_id: str, status: str, reason: str | None = None) -> None:
        if not self.should_succeed:
            raise NotificationFailed(f"Could not notify customer {customer_id}")

        self.sent.append({"customer_id": customer_id, "order_id": order_id, "status": status, "reason": reason})
        logger.info("Customer notified", customer_id=customer_id, order_id=order_id, status=status)

    def for_order(self, order_id: str) -> list[dict]:
        return [n for n in self.sent if n["order_id"] == str(order_id)]
