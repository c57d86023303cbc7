"""Hot-product contention scenario.

Many users race to buy a product with little stock. The run passes when
stock never goes negative and every unit is either reserved or still
available; locustfile.py prints the final levels when the test stops.
"""

import random

from locust import HttpUser, constant_pacing, task

from loadtests.data_generators import checkout_data, customer_id, hot_cart
from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.checkout import seed_catalog


class HotProductUser(HttpUser):
    """Stress test: concurrent checkouts of the same scarce product."""

    wait_time = constant_pacing(0.2)

    def on_start(self):
        seed_catalog(self.client)

    @task
    def buy_hot_product(self):
        with self.client.post(
            "/checkout",
            json=checkout_data(items=hot_cart(random.randint(1, 3))),
            headers={"X-Customer-Id": customer_id()},
            catch_response=True,
            name="[HOT] POST /checkout",
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            else:
                resp.failure(f"Checkout failed: {resp.status_code} — {extract_error_detail(resp)}")
