"""HTTP payment gateway adapter.

Talks to the provider's REST API with ``httpx``. Every request is bounded by
``gateway_timeout_seconds``; a timeout becomes ``GatewayTimeout`` and any
other transport or HTTP error becomes ``GatewayUnavailable``, so the job
runner retries both.

Provider API:
    POST /sessions              → {"token": ..., "redirect_url": ...}
    GET  /sessions/{token}      → {"transaction_id": ..., "status": ..., "failure_reason": ...}
"""

import json

import httpx
import structlog

from checkout.errors import GatewayTimeout, GatewayUnavailable
from checkout.gateway.port import GatewayEvent, GatewayOutcome, GatewaySession, PaymentGateway
from checkout.gateway.signing import verified_event
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class HttpGateway(PaymentGateway):
    """Production gateway adapter."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        webhook_secret: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings):
        return cls(
            base_url=settings.gateway_base_url,
            api_key=settings.gateway_api_key,
            webhook_secret=settings.webhook_secret,
            timeout=settings.gateway_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def initiate(self, order) -> GatewaySession:
        response = self._request(
            "POST",
            "/sessions",
            json={
                "reference": str(order.id),
                "amount": order.total_amount,
                "currency": order.currency,
            },
            # The provider dedupes session creation on this header
            headers={"Idempotency-Key": f"order-{order.id}"},
        )
        data = response.json()
        if not data.get("token"):
            raise GatewayUnavailable("Gateway response did not include a session token")
        return GatewaySession(token=data["token"], redirect_url=data.get("redirect_url"))

    def normalize_callback(self, raw_payload: bytes, signature: str | None) -> GatewayEvent:
        return verified_event(raw_payload, signature, self.webhook_secret)

    def fetch_status(self, token: str) -> GatewayEvent | None:
        try:
            response = self._request("GET", f"/sessions/{token}")
        except GatewayUnavailable as exc:
            if isinstance(exc.__cause__, httpx.HTTPStatusError) and exc.__cause__.response.status_code == 404:
                return None
            raise

        data = response.json()
        try:
            outcome = GatewayOutcome(str(data.get("status", "pending")).lower())
        except ValueError:
            outcome = GatewayOutcome.PENDING
        return GatewayEvent(
            transaction_id=str(data.get("transaction_id") or f"poll-{token}"),
            order_token=token,
            outcome=outcome,
            raw_payload=json.dumps(data),
            received_at=utcnow(),
            failure_reason=data.get("failure_reason"),
        )

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Gateway request timed out", method=method, url=url)
            raise GatewayTimeout(f"{method} {url} timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Gateway request failed", method=method, url=url, status_code=exc.response.status_code
            )
            raise GatewayUnavailable(f"{method} {url} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Gateway request errored", method=method, url=url, error=str(exc))
            raise GatewayUnavailable(f"{method} {url} failed: {exc}") from exc
        return response
