"""Customer notification collaborator.

Order status notifications are delivered by the ``notify_order_status`` job,
never inline, so a slow or failing notifier cannot hold up settlement.
"""

from checkout.notification.notifier import FakeNotifier, OrderNotifier

_current_notifier: OrderNotifier | None = None


def get_notifier() -> OrderNotifier:
    """Return the current notifier. Defaults to FakeNotifier."""
    global _current_notifier
    if _current_notifier is None:
        _current_notifier = FakeNotifier()
    return _current_notifier


def set_notifier(notifier: OrderNotifier) -> None:
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None
