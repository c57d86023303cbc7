"""Faker-based data generators for Locust load test scenarios.

Each generator produces payloads that pass the checkout API's validation
rules and match the exact field names expected by its Pydantic request
schemas. Gateway callbacks are signed with the same shared secret the
server verifies them with.
"""

import json
import os
import random
import uuid

from checkout.gateway.signing import SIGNATURE_HEADER, sign_payload
from faker import Faker

fake = Faker()

WEBHOOK_SECRET = os.environ.get("CHECKOUT_WEBHOOK_SECRET", "dev-webhook-secret")

# Products seeded by every scenario's on_start. "prod-lt-hot" has little
# stock so concurrent checkouts compete for it.
CATALOG = {
    "prod-lt-001": 19.99,
    "prod-lt-002": 5.49,
    "prod-lt-003": 120.00,
    "prod-lt-004": 2.25,
}
HOT_PRODUCT = "prod-lt-hot"
HOT_PRICE = 49.00


def customer_id() -> str:
    """Generate customer ids like 'cust-lt-jsmith-a1b2'."""
    return f"cust-lt-{fake.user_name()[:12]}-{uuid.uuid4().hex[:4]}"


def idempotency_key() -> str:
    return f"lt-{uuid.uuid4().hex}"


def cart_items(max_lines: int = 3) -> list[dict]:
    """Generate 1..max_lines distinct cart lines from the seeded catalog."""
    products = random.sample(list(CATALOG), k=random.randint(1, min(max_lines, len(CATALOG))))
    return [{"product_id": product_id, "quantity": random.randint(1, 3)} for product_id in products]


def hot_cart(quantity: int = 1) -> list[dict]:
    return [{"product_id": HOT_PRODUCT, "quantity": quantity}]


def checkout_data(items: list[dict] | None = None, key: str | None = None) -> dict:
    """Generate a CheckoutRequest payload."""
    return {"items": items or cart_items(), "idempotency_key": key or idempotency_key()}


def callback(token: str, status: str, transaction_id: str | None = None) -> tuple[bytes, dict]:
    """Build a signed gateway callback: (raw body, headers)."""
    body = {
        "transaction_id": transaction_id or f"lt_txn_{uuid.uuid4().hex[:12]}",
        "order_token": token,
        "status": status,
    }
    if status == "failed":
        body["failure_reason"] = random.choice(["Card declined", "Insufficient funds", "Expired card"])
    raw = json.dumps(body).encode("utf-8")
    return raw, {SIGNATURE_HEADER: sign_payload(raw, WEBHOOK_SECRET), "Content-Type": "application/json"}
