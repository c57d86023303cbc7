"""Settlement tunables loaded from the environment.

Protean infrastructure (databases, brokers, event store) is configured in
``domain.toml``. The values here control the settlement pipeline itself:
timeouts, retry limits, and gateway credentials. Every field can be set with a
``CHECKOUT_`` prefixed environment variable, e.g.
``CHECKOUT_AWAITING_GATEWAY_TIMEOUT_SECONDS=600``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettlementSettings(BaseSettings):
    """Settlement configuration."""

    model_config = SettingsConfigDict(env_prefix="CHECKOUT_", extra="ignore")

    # Order lifecycle
    awaiting_gateway_timeout_seconds: int = Field(default=900, gt=0, description="AwaitingGateway window")
    currency: str = Field(default="USD", max_length=3)

    # Job runner
    job_max_attempts: int = Field(default=3, ge=1, description="Attempts before a job is exhausted")
    backoff_base_seconds: float = Field(default=2.0, ge=0)
    backoff_cap_seconds: float = Field(default=300.0, ge=0)
    job_lease_seconds: int = Field(default=30, gt=0)
    job_batch_size: int = Field(default=50, gt=0)

    # Optimistic concurrency
    conflict_retry_limit: int = Field(default=5, ge=1, description="Immediate retries on a stale order version")

    # Gateway
    gateway_base_url: str = Field(default="http://localhost:9100")
    gateway_api_key: str = Field(default="")
    gateway_timeout_seconds: float = Field(default=10.0, gt=0)
    webhook_secret: str = Field(default="dev-webhook-secret")


_current_settings: SettlementSettings | None = None


def get_settings() -> SettlementSettings:
    """Return the active settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = SettlementSettings()
    return _current_settings


def set_settings(settings: SettlementSettings) -> None:
    """Override the active settings (useful for tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    """Drop the active settings so the next access reloads the environment."""
    global _current_settings
    _current_settings = None
