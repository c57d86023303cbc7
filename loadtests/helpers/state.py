"""Per-user state tracking for Locust load test scenarios.

Each Locust user instance maintains its own state — no cross-user sharing.
"""

from dataclasses import dataclass


@dataclass
class CheckoutState:
    """Tracks state for a single simulated checkout lifecycle."""

    customer_id: str | None = None
    idempotency_key: str | None = None
    order_id: str | None = None
    gateway_token: str | None = None
    transaction_id: str | None = None
    current_status: str | None = None
