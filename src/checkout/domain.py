"""Checkout bounded context — Order Checkout and Payment Settlement.

Converts carts into durable orders, reserves stock, initiates payment with
the external gateway, and reconciles the gateway's asynchronous results so
that stock commits, status transitions and customer notifications happen
exactly once.
"""

import structlog
from protean.domain import Domain

checkout = Domain(name="checkout")

logger = structlog.get_logger(__name__)
