import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def checkout_bed():
    from checkout.domain import checkout

    bed = DomainFixture(checkout)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(checkout_bed):
    with checkout_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def settings():
    """Fast, deterministic settlement settings for every test."""
    from checkout.config import SettlementSettings, reset_settings, set_settings

    test_settings = SettlementSettings(
        awaiting_gateway_timeout_seconds=900,
        job_max_attempts=3,
        backoff_base_seconds=0,
        backoff_cap_seconds=0,
        job_lease_seconds=30,
        webhook_secret="test-webhook-secret",
    )
    set_settings(test_settings)
    yield test_settings
    reset_settings()


@pytest.fixture(autouse=True)
def gateway():
    from checkout.gateway import reset_gateway, set_gateway
    from checkout.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def notifier():
    from checkout.notification import reset_notifier, set_notifier
    from checkout.notification.notifier import FakeNotifier

    fake = FakeNotifier()
    set_notifier(fake)
    yield fake
    reset_notifier()


@pytest.fixture(autouse=True)
def catalog():
    from checkout.catalog import reset_catalog, set_catalog
    from checkout.catalog.reader import InMemoryCatalog

    prices = InMemoryCatalog({"prod-hot": 25.0, "prod-a": 10.0, "prod-b": 4.5})
    set_catalog(prices)
    yield prices
    reset_catalog()


@pytest.fixture(autouse=True)
def orchestrator():
    from checkout.settlement.orchestrator import (
        SettlementOrchestrator,
        reset_orchestrator,
        set_orchestrator,
    )

    instance = SettlementOrchestrator()
    set_orchestrator(instance)
    yield instance
    reset_orchestrator()
