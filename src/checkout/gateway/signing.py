"""Webhook signing and parsing shared by all gateway adapters.

Callbacks are signed with HMAC-SHA256 over the raw request body using the
shared webhook secret; the hex digest travels in the ``X-Gateway-Signature``
header. Verification fails closed: a missing secret, a missing signature or
a mismatch all reject the callback.
"""

import hashlib
import hmac
import json
from datetime import datetime

from checkout.errors import MalformedEvent
from checkout.gateway.port import GatewayEvent, GatewayOutcome
from checkout.utils.clock import utcnow

SIGNATURE_HEADER = "X-Gateway-Signature"


def _as_bytes(payload: bytes | str) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def sign_payload(payload: bytes | str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(payload: bytes | str, signature: str | None, secret: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected, signature.strip())


def parse_event(payload: bytes | str, received_at: datetime | None = None) -> GatewayEvent:
    """Turn a verified callback body into a ``GatewayEvent``.

    Expected body::

        {"transaction_id": "...", "order_token": "...",
         "status": "succeeded" | "failed" | "pending",
         "failure_reason": "..."}
    """
    raw = _as_bytes(payload)
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEvent(f"Callback body is not valid JSON: {exc}") from exc

    if not isinstance(body, dict):
        raise MalformedEvent("Callback body must be a JSON object")

    missing = [name for name in ("transaction_id", "order_token", "status") if not body.get(name)]
    if missing:
        raise MalformedEvent(f"Callback is missing {', '.join(missing)}")

    try:
        outcome = GatewayOutcome(str(body["status"]).lower())
    except ValueError as exc:
        raise MalformedEvent(f"Unknown callback status '{body['status']}'") from exc

    return GatewayEvent(
        transaction_id=str(body["transaction_id"]),
        order_token=str(body["order_token"]),
        outcome=outcome,
        raw_payload=raw.decode("utf-8"),
        received_at=received_at or utcnow(),
        failure_reason=body.get("failure_reason"),
    )


def verified_event(payload: bytes | str, signature: str | None, secret: str | None) -> GatewayEvent:
    if not verify_signature(payload, signature, secret):
        raise MalformedEvent("Callback signature does not verify")
    return parse_event(payload)
