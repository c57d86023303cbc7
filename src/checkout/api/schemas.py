"""Pydantic request/response schemas for the Checkout API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CartItemSchema(BaseModel):
    product_id: str
    quantity: int


class CheckoutRequest(BaseModel):
    items: list[CartItemSchema]
    idempotency_key: str = Field(min_length=1, max_length=255)


class CheckoutResponse(BaseModel):
    order_id: str
    status: str
    gateway_token: str | None = None
    redirect_url: str | None = None
    payment_pending: bool = False
    replayed: bool = False


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderLineSchema(BaseModel):
    product_id: str
    quantity: int
    unit_price: float


class OrderResponse(BaseModel):
    order_id: str
    customer_id: str
    status: str
    total_amount: float
    currency: str
    gateway_token: str | None = None
    redirect_url: str | None = None
    reservation_id: str | None = None
    failure_reason: str | None = None
    version: int
    items: list[OrderLineSchema]


class CancelOrderRequest(BaseModel):
    reason: str = Field(default="Cancelled by customer", max_length=500)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class CallbackResponse(BaseModel):
    status: str
    transaction_id: str


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool
    failure_mode: str = "unavailable"


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_mode: str


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class SetPriceRequest(BaseModel):
    unit_price: float = Field(ge=0)


class PriceResponse(BaseModel):
    product_id: str
    unit_price: float


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------
class InitializeStockRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=0)


class RestockRequest(BaseModel):
    quantity: int = Field(ge=1)


class StockLevelsResponse(BaseModel):
    product_id: str
    available: int
    reserved: int
    version: int


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
class RunDueJobsRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1)


class RunDueJobsResponse(BaseModel):
    processed: int
    succeeded: int
    retried: int
    exhausted: int
    skipped: int
