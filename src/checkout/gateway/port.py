"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements, so the orchestrator
never knows whether it talks to the fake gateway or the real provider.
Adapters translate provider failures into the settlement error taxonomy:
``GatewayUnavailable`` and ``GatewayTimeout`` are transient and retried;
an unverifiable callback is a ``MalformedEvent`` and is not.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class GatewayOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class GatewaySession:
    """A payment session opened at the provider for one order."""

    token: str
    redirect_url: str | None = None


@dataclass(frozen=True)
class GatewayEvent:
    """A provider notification normalized into our vocabulary."""

    transaction_id: str
    order_token: str
    outcome: GatewayOutcome
    raw_payload: str
    received_at: datetime
    failure_reason: str | None = None

    @property
    def is_final(self) -> bool:
        return self.outcome != GatewayOutcome.PENDING


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def initiate(self, order) -> GatewaySession:
        """Open a payment session for ``order``.

        Raises:
            GatewayUnavailable: the provider refused or failed the request.
            GatewayTimeout: the provider did not answer in time.
        """
        ...

    @abstractmethod
    def normalize_callback(self, raw_payload: bytes, signature: str | None) -> GatewayEvent:
        """Verify and parse a provider callback.

        Raises:
            MalformedEvent: the signature does not verify or the body cannot
                be parsed.
        """
        ...

    @abstractmethod
    def fetch_status(self, token: str) -> GatewayEvent | None:
        """Ask the provider for the current state of a session.

        Returns None when the provider knows nothing about ``token``.
        """
        ...
