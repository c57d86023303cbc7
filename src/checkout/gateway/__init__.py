"""Payment gateway registry.

``get_gateway()`` builds the adapter for the running environment on first
use: ``HttpGateway`` against the configured provider when
``PROTEAN_ENV=production``, ``FakeGateway`` everywhere else. ``set_gateway()``
installs a specific adapter, which is how tests script gateway behavior.
"""

import os

from checkout.config import get_settings
from checkout.gateway.fake_adapter import FakeGateway
from checkout.gateway.http_adapter import HttpGateway
from checkout.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def _default_gateway() -> PaymentGateway:
    if os.environ.get("PROTEAN_ENV") == "production":
        return HttpGateway.from_settings(get_settings())
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _default_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Drop the active adapter, closing its HTTP client if it has one."""
    global _current_gateway
    if isinstance(_current_gateway, HttpGateway):
        _current_gateway.close()
    _current_gateway = None
