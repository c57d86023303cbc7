"""Configurable fake payment gateway for development and testing.

Simulates the provider without any network calls. It can be told to succeed,
to refuse requests, or to time out, either permanently or for the next few
calls, and it can be scripted with the answer ``fetch_status`` gives for a
session. ``signed_callback`` builds a correctly signed provider callback for
a session so tests and local demos can drive the webhook endpoint.
"""

import json
from uuid import uuid4

from checkout.config import get_settings
from checkout.errors import GatewayTimeout, GatewayUnavailable
from checkout.gateway.port import GatewayEvent, GatewayOutcome, GatewaySession, PaymentGateway
from checkout.gateway.signing import parse_event, sign_payload, verified_event
from checkout.utils.clock import utcnow

FAILURE_MODES = ("unavailable", "timeout")


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, webhook_secret: str | None = None) -> None:
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.failure_mode: str = "unavailable"
        self.pending_failures: int = 0
        self.calls: list[dict] = []
        self.sessions: dict[str, str] = {}
        self.statuses: dict[str, GatewayEvent] = {}

    @property
    def secret(self) -> str:
        return self.webhook_secret or get_settings().webhook_secret

    def configure(self, should_succeed: bool, failure_mode: str = "unavailable") -> None:
        """Configure gateway behavior at runtime."""
        if failure_mode not in FAILURE_MODES:
            raise ValueError(f"failure_mode must be one of {FAILURE_MODES}")
        self.should_succeed = should_succeed
        self.failure_mode = failure_mode

    def fail_next(self, count: int, failure_mode: str = "unavailable") -> None:
        """Fail the next ``count`` initiate calls, then behave as configured."""
        if failure_mode not in FAILURE_MODES:
            raise ValueError(f"failure_mode must be one of {FAILURE_MODES}")
        self.pending_failures = count
        self.failure_mode = failure_mode

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    # -------------------------------------------------------------------
    # Port
    # -------------------------------------------------------------------
    def initiate(self, order) -> GatewaySession:
        self.calls.append(
            {
                "method": "initiate",
                "order_id": str(order.id),
                "amount": order.total_amount,
                "currency": order.currency,
            }
        )

        if self.pending_failures > 0:
            self.pending_failures -= 1
            self._raise_failure()
        if not self.should_succeed:
            self._raise_failure()

        token = f"fake_sess_{uuid4().hex[:16]}"
        self.sessions[token] = str(order.id)
        return GatewaySession(token=token, redirect_url=f"https://gateway.test/pay/{token}")

    def normalize_callback(self, raw_payload: bytes, signature: str | None) -> GatewayEvent:
        self.calls.append({"method": "normalize_callback", "signature": signature})
        return verified_event(raw_payload, signature, self.secret)

    def fetch_status(self, token: str) -> GatewayEvent | None:
        self.calls.append({"method": "fetch_status", "token": token})
        if not self.should_succeed:
            self._raise_failure()
        return self.statuses.get(token)

    # -------------------------------------------------------------------
    # Scripting helpers
    # -------------------------------------------------------------------
    def script_status(
        self,
        token: str,
        outcome: GatewayOutcome,
        transaction_id: str | None = None,
        failure_reason: str | None = None,
    ) -> GatewayEvent:
        """Set what ``fetch_status(token)`` reports."""
        body, _ = self.callback_body(token, outcome, transaction_id, failure_reason)
        event = parse_event(body)
        self.statuses[token] = event
        return event

    def callback_body(
        self,
        token: str,
        outcome: GatewayOutcome,
        transaction_id: str | None = None,
        failure_reason: str | None = None,
    ) -> tuple[bytes, str]:
        transaction_id = transaction_id or f"fake_txn_{uuid4().hex[:12]}"
        body = {
            "transaction_id": transaction_id,
            "order_token": token,
            "status": outcome.value,
            "sent_at": utcnow().isoformat(),
        }
        if failure_reason:
            body["failure_reason"] = failure_reason
        return json.dumps(body).encode("utf-8"), transaction_id

    def signed_callback(
        self,
        token: str,
        outcome: GatewayOutcome,
        transaction_id: str | None = None,
        failure_reason: str | None = None,
    ) -> tuple[bytes, str]:
        """Return ``(body, signature)`` of a callback the provider would send."""
        body, _ = self.callback_body(token, outcome, transaction_id, failure_reason)
        return body, sign_payload(body, self.secret)

    def _raise_failure(self):
        if self.failure_mode == "timeout":
            raise GatewayTimeout("Fake gateway timed out")
        raise GatewayUnavailable("Fake gateway unavailable")
