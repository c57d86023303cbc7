"""Checkout Load Testing — Locust entry point.

Discovers all user classes from the scenarios package.
Run specific scenarios with Locust's class selection.

Usage:
    # All scenarios (web UI):
    locust -f loadtests/locustfile.py

    # Mixed workload only:
    locust -f loadtests/locustfile.py MixedWorkloadUser

    # Hot-product contention:
    locust -f loadtests/locustfile.py HotProductUser

    # Headless (CI mode):
    locust -f loadtests/locustfile.py MixedWorkloadUser --headless \
           -u 50 -r 5 -t 300s --csv=results/loadtest
"""

import logging
import time

import requests
from locust import events

# Import all user classes so Locust discovers them
from loadtests.data_generators import HOT_PRODUCT
from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.contention import HotProductUser  # noqa: F401
from loadtests.scenarios.mixed import MixedWorkloadUser  # noqa: F401

logger = logging.getLogger("loadtest")


@events.request.add_listener
def on_request(request_type, name, response, exception, **_kw):
    """Log error details for every failed request."""
    if exception:
        logger.error("[EXCEPTION] %s %s: %s", request_type, name, exception)
    elif response is not None and response.status_code >= 400 and response.status_code != 409:
        detail = extract_error_detail(response)
        logger.error("[%s] %s %s: %s", response.status_code, request_type, name, detail)


@events.test_start.add_listener
def on_test_start(environment, **_kwargs):
    """Log a marker when load test begins."""
    print(f"\n[LOADTEST] Started at {time.strftime('%H:%M:%S')}")
    print(f"[LOADTEST] Target host: {environment.host}")
    print()


@events.test_stop.add_listener
def on_test_stop(environment, **_kwargs):
    """Print the hot product's final stock levels when the test ends."""
    print(f"\n[LOADTEST] Stopped at {time.strftime('%H:%M:%S')}")
    try:
        resp = requests.get(f"{environment.host}/stock/{HOT_PRODUCT}", timeout=5)
        resp.raise_for_status()
        levels = resp.json()
        print(f"[LOADTEST] {HOT_PRODUCT}: available={levels['available']} reserved={levels['reserved']}")
        if levels["available"] < 0 or levels["reserved"] < 0:
            print("[LOADTEST] OVERSOLD: stock went negative")
        print()
    except requests.RequestException as e:
        print(f"[LOADTEST] Could not fetch stock levels: {e}\n")
