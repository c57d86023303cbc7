"""Error taxonomy for the checkout and settlement pipeline.

Validation-style failures reuse Protean's ``ValidationError`` so they travel
through the same API error handlers as every other domain rule violation.
Everything the job runner is allowed to retry derives from ``TransientError``.
"""

from protean.exceptions import ValidationError


class SettlementError(Exception):
    """Base class for settlement failures that are not validation errors."""


class TransientError(SettlementError):
    """A failure that may succeed on a later attempt."""


# ---------------------------------------------------------------------------
# Validation / protocol errors (never retried)
# ---------------------------------------------------------------------------
class InvalidCart(ValidationError):
    """The submitted cart cannot be turned into an order."""


class InvalidTransition(ValidationError):
    """The requested transition is not allowed from the order's current status."""


class MalformedEvent(SettlementError):
    """A gateway callback could not be parsed or its signature did not verify."""


# ---------------------------------------------------------------------------
# Business rejections
# ---------------------------------------------------------------------------
class InsufficientStock(SettlementError):
    """At least one line item asks for more than is available."""

    def __init__(self, shortages: dict[str, dict[str, int]]):
        self.shortages = shortages
        details = ", ".join(
            f"{product_id}: {s['requested']} requested, {s['available']} available"
            for product_id, s in sorted(shortages.items())
        )
        super().__init__(f"Insufficient stock ({details})")


# ---------------------------------------------------------------------------
# Transient errors (retried with backoff)
# ---------------------------------------------------------------------------
class GatewayUnavailable(TransientError):
    """The payment gateway refused or failed the request."""


class GatewayTimeout(GatewayUnavailable):
    """The payment gateway did not answer within the configured timeout."""


class ConcurrencyConflict(TransientError):
    """A write was attempted against a stale version of a record."""

    def __init__(self, record: str, expected_version: int, actual_version: int):
        self.record = record
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(f"Stale write on {record}: expected version {expected_version}, found {actual_version}")


class OrderNotCorrelated(TransientError):
    """A gateway event references a token not yet assigned to any order."""
