"""FastAPI routes for the Checkout domain — checkout, payments, orders, stock."""

import os
from dataclasses import asdict

import structlog
from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError

from checkout.api.schemas import (
    CallbackResponse,
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    InitializeStockRequest,
    OrderResponse,
    PriceResponse,
    RestockRequest,
    RunDueJobsRequest,
    RunDueJobsResponse,
    SetPriceRequest,
    StockLevelsResponse,
)
from checkout.catalog import get_catalog
from checkout.catalog.reader import InMemoryCatalog
from checkout.errors import InsufficientStock, InvalidTransition, MalformedEvent
from checkout.gateway import get_gateway
from checkout.gateway.fake_adapter import FakeGateway
from checkout.gateway.signing import SIGNATURE_HEADER
from checkout.settlement.orchestrator import get_orchestrator

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
def submit_checkout(
    body: CheckoutRequest,
    x_customer_id: str = Header(default=""),
):
    """Turn the cart into an order and open its payment session.

    Declared without ``async`` so the blocking gateway call runs in the
    threadpool instead of on the event loop.
    """
    try:
        result = get_orchestrator().submit_checkout(
            customer_id=x_customer_id,
            items=[item.model_dump() for item in body.items],
            idempotency_key=body.idempotency_key,
        )
    except InsufficientStock as exc:
        return JSONResponse(
            status_code=409,
            content={"error": "InsufficientStock", "message": str(exc), "shortages": exc.shortages},
        )
    return CheckoutResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/callback", response_model=CallbackResponse)
async def payment_callback(request: Request):
    """Receive a signed payment gateway callback.

    Duplicates are acknowledged like first deliveries so the provider stops
    retrying; unverifiable payloads get a 400 so it tries again.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = get_orchestrator().receive_callback(raw_body, signature)
    except MalformedEvent as exc:
        logger.warning("Rejected gateway callback", error=str(exc))
        return JSONResponse(status_code=400, content={"error": "MalformedEvent", "message": str(exc)})
    return CallbackResponse(status=result.status, transaction_id=result.transaction_id)


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    try:
        gateway.configure(should_succeed=body.should_succeed, failure_mode=body.failure_mode)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_mode=gateway.failure_mode,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    try:
        order = get_orchestrator().get_order(order_id)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found") from exc
    return OrderResponse(**order.to_dict())


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, body: CancelOrderRequest | None = None):
    reason = body.reason if body else CancelOrderRequest().reason
    try:
        order = get_orchestrator().cancel(order_id, reason=reason)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found") from exc
    except InvalidTransition as exc:
        return JSONResponse(status_code=409, content={"error": "InvalidTransition", "messages": exc.messages})
    return OrderResponse(**order.to_dict())


# ---------------------------------------------------------------------------
# Stock Router
# ---------------------------------------------------------------------------
stock_router = APIRouter(prefix="/stock", tags=["stock"])


@stock_router.post("", status_code=201, response_model=StockLevelsResponse)
async def initialize_stock(body: InitializeStockRequest) -> StockLevelsResponse:
    ledger = get_orchestrator().ledger
    ledger.initialize(body.product_id, body.quantity)
    return StockLevelsResponse(**asdict(ledger.levels(body.product_id)))


@stock_router.post("/{product_id}/restock", response_model=StockLevelsResponse)
async def restock(product_id: str, body: RestockRequest) -> StockLevelsResponse:
    ledger = get_orchestrator().ledger
    try:
        ledger.restock(product_id, body.quantity)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"No stock entry for {product_id}") from exc
    return StockLevelsResponse(**asdict(ledger.levels(product_id)))


@stock_router.get("/{product_id}", response_model=StockLevelsResponse)
async def stock_levels(product_id: str) -> StockLevelsResponse:
    try:
        levels = get_orchestrator().ledger.levels(product_id)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"No stock entry for {product_id}") from exc
    return StockLevelsResponse(**asdict(levels))


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/jobs", tags=["maintenance"])


@maintenance_router.post("/run-due", response_model=RunDueJobsResponse)
def run_due_jobs(body: RunDueJobsRequest | None = None) -> RunDueJobsResponse:
    """Run every due job once. Intended to be triggered by cron.

    Jobs may call the gateway, so this also runs in the threadpool.
    """
    summary = get_orchestrator().runner.run_due(limit=body.limit if body else None)
    return RunDueJobsResponse(**summary.to_dict())


# ---------------------------------------------------------------------------
# Catalog Router
# ---------------------------------------------------------------------------
catalog_router = APIRouter(prefix="/catalog", tags=["catalog"])


@catalog_router.put("/prices/{product_id}", response_model=PriceResponse)
async def set_price(product_id: str, body: SetPriceRequest) -> PriceResponse:
    """Seed the in-memory price list (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Price seeding not available in production")

    catalog = get_catalog()
    if not isinstance(catalog, InMemoryCatalog):
        raise HTTPException(status_code=400, detail="Price seeding only available for InMemoryCatalog")

    catalog.set_price(product_id, body.unit_price)
    return PriceResponse(product_id=product_id, unit_price=body.unit_price)
