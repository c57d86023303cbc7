"""Tests for the HTTP gateway adapter against a mocked provider."""

import json

import httpx
import pytest
from checkout.errors import GatewayTimeout, GatewayUnavailable, MalformedEvent
from checkout.gateway.http_adapter import HttpGateway
from checkout.gateway.port import GatewayOutcome
from checkout.gateway.signing import sign_payload


class _StubOrder:
    id = "order-1"
    total_amount = 24.5
    currency = "USD"


def _gateway(handler):
    return HttpGateway(
        base_url="https://gateway.example",
        api_key="sk_test",
        webhook_secret="whsec",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestInitiate:
    def test_opens_session(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["idempotency_key"] = request.headers["Idempotency-Key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"token": "sess_1", "redirect_url": "https://pay/sess_1"})

        session = _gateway(handler).initiate(_StubOrder())

        assert session.token == "sess_1"
        assert session.redirect_url == "https://pay/sess_1"
        assert seen["auth"] == "Bearer sk_test"
        assert seen["idempotency_key"] == "order-order-1"
        assert seen["body"] == {"reference": "order-1", "amount": 24.5, "currency": "USD"}

    def test_server_error_is_unavailable(self):
        gateway = _gateway(lambda request: httpx.Response(503))
        with pytest.raises(GatewayUnavailable):
            gateway.initiate(_StubOrder())

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GatewayTimeout):
            _gateway(handler).initiate(_StubOrder())

    def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayUnavailable):
            _gateway(handler).initiate(_StubOrder())

    def test_missing_token_is_unavailable(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}))
        with pytest.raises(GatewayUnavailable):
            gateway.initiate(_StubOrder())


class TestFetchStatus:
    def test_reports_outcome(self):
        gateway = _gateway(
            lambda request: httpx.Response(
                200, json={"transaction_id": "txn-9", "status": "failed", "failure_reason": "Declined"}
            )
        )
        event = gateway.fetch_status("sess_1")
        assert event.transaction_id == "txn-9"
        assert event.outcome == GatewayOutcome.FAILED
        assert event.failure_reason == "Declined"

    def test_unknown_session_returns_none(self):
        gateway = _gateway(lambda request: httpx.Response(404))
        assert gateway.fetch_status("sess_missing") is None

    def test_unrecognized_status_treated_as_pending(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={"status": "processing"}))
        assert gateway.fetch_status("sess_1").outcome == GatewayOutcome.PENDING


class TestNormalizeCallback:
    def test_verifies_with_webhook_secret(self):
        body = json.dumps({"transaction_id": "t", "order_token": "sess_1", "status": "succeeded"}).encode()
        gateway = _gateway(lambda request: httpx.Response(500))
        assert gateway.normalize_callback(body, sign_payload(body, "whsec")).order_token == "sess_1"
        with pytest.raises(MalformedEvent):
            gateway.normalize_callback(body, sign_payload(body, "other"))


class TestGatewayRegistry:
    def test_production_uses_http_gateway(self, monkeypatch):
        from checkout.gateway import get_gateway, reset_gateway

        monkeypatch.setenv("PROTEAN_ENV", "production")
        reset_gateway()
        try:
            assert isinstance(get_gateway(), HttpGateway)
        finally:
            reset_gateway()

    def test_other_environments_use_fake_gateway(self, monkeypatch):
        from checkout.gateway import get_gateway, reset_gateway
        from checkout.gateway.fake_adapter import FakeGateway

        monkeypatch.setenv("PROTEAN_ENV", "test")
        reset_gateway()
        try:
            assert isinstance(get_gateway(), FakeGateway)
        finally:
            reset_gateway()
