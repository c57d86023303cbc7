"""Checkout load test scenarios.

Stateful SequentialTaskSet journeys covering a paid checkout, a declined
payment, an abandoned checkout that is cancelled, and a client that retries
its submission with the same idempotency key.
"""

import random

from locust import SequentialTaskSet, task

from loadtests.data_generators import CATALOG, HOT_PRICE, HOT_PRODUCT, callback, checkout_data, customer_id
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import CheckoutState


def seed_catalog(client, hot_stock: int = 50):
    """Price every load test product and give it stock. Safe to repeat."""
    for product_id, price in [*CATALOG.items(), (HOT_PRODUCT, HOT_PRICE)]:
        client.put(f"/catalog/prices/{product_id}", json={"unit_price": price}, name="PUT /catalog/prices/{id}")
        quantity = hot_stock if product_id == HOT_PRODUCT else 1_000_000
        with client.post(
            "/stock",
            json={"product_id": product_id, "quantity": quantity},
            catch_response=True,
            name="POST /stock",
        ) as resp:
            # 400 means another user already initialized it
            if resp.status_code in (201, 400):
                resp.success()


class _CheckoutJourney(SequentialTaskSet):
    def on_start(self):
        self.state = CheckoutState(customer_id=customer_id())

    def submit(self, payload=None, name="POST /checkout"):
        payload = payload or checkout_data()
        self.state.idempotency_key = payload["idempotency_key"]
        with self.client.post(
            "/checkout",
            json=payload,
            headers={"X-Customer-Id": self.state.customer_id},
            catch_response=True,
            name=name,
        ) as resp:
            if resp.status_code == 201:
                data = resp.json()
                self.state.order_id = data["order_id"]
                self.state.gateway_token = data["gateway_token"]
                self.state.current_status = data["status"]
            elif resp.status_code == 409:
                # Out of stock is a business outcome, not a load test failure
                resp.success()
                self.interrupt()
            else:
                resp.failure(f"Checkout failed: {resp.status_code} — {extract_error_detail(resp)}")
                self.interrupt()

    def deliver(self, status, name):
        if not self.state.gateway_token:
            self.interrupt()
        body, headers = callback(self.state.gateway_token, status)
        with self.client.post(
            "/payments/callback",
            data=body,
            headers=headers,
            catch_response=True,
            name=name,
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Callback failed: {resp.status_code} — {extract_error_detail(resp)}")
        return body, headers

    def check_status(self, expected):
        with self.client.get(
            f"/orders/{self.state.order_id}",
            catch_response=True,
            name="GET /orders/{id}",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Get order failed: {resp.status_code} — {extract_error_detail(resp)}")
            elif resp.json()["status"] != expected:
                resp.failure(f"Expected {expected}, got {resp.json()['status']}")


class PaidCheckoutJourney(_CheckoutJourney):
    """Checkout -> Callback(succeeded) -> duplicate Callback -> Completed."""

    @task
    def checkout(self):
        self.submit()

    @task
    def pay(self):
        self.body, self.headers = self.deliver("succeeded", "POST /payments/callback (succeeded)")

    @task
    def redeliver(self):
        with self.client.post(
            "/payments/callback",
            data=self.body,
            headers=self.headers,
            catch_response=True,
            name="POST /payments/callback (duplicate)",
        ) as resp:
            if resp.status_code != 200 or resp.json().get("status") != "duplicate":
                resp.failure(f"Duplicate not acknowledged: {resp.status_code} — {extract_error_detail(resp)}")

    @task
    def verify(self):
        self.check_status("Completed")
        self.interrupt()


class DeclinedCheckoutJourney(_CheckoutJourney):
    """Checkout -> Callback(failed) -> Failed."""

    @task
    def checkout(self):
        self.submit()

    @task
    def decline(self):
        self.deliver("failed", "POST /payments/callback (failed)")

    @task
    def verify(self):
        self.check_status("Failed")
        self.interrupt()


class AbandonedCheckoutJourney(_CheckoutJourney):
    """Checkout -> Cancel -> Cancelled."""

    @task
    def checkout(self):
        self.submit()

    @task
    def cancel(self):
        with self.client.post(
            f"/orders/{self.state.order_id}/cancel",
            json={"reason": random.choice(["Changed my mind", "Found it cheaper", "Ordered by mistake"])},
            catch_response=True,
            name="POST /orders/{id}/cancel",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Cancel failed: {resp.status_code} — {extract_error_detail(resp)}")
        self.interrupt()


class RetriedSubmissionJourney(_CheckoutJourney):
    """Checkout -> same Checkout again -> same order."""

    @task
    def checkout(self):
        self.payload = checkout_data()
        self.submit(self.payload)

    @task
    def resubmit(self):
        first_order = self.state.order_id
        with self.client.post(
            "/checkout",
            json=self.payload,
            headers={"X-Customer-Id": self.state.customer_id},
            catch_response=True,
            name="POST /checkout (replay)",
        ) as resp:
            if resp.status_code != 201 or resp.json()["order_id"] != first_order:
                resp.failure(f"Replay created a new order: {resp.status_code} — {extract_error_detail(resp)}")
        self.interrupt()
