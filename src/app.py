"""Checkout FastAPI application.

Handles checkout submissions, gateway callbacks, order queries and stock
administration synchronously over HTTP. Every request is wrapped in the
checkout domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied ("test", "production").
from checkout.domain import checkout  # noqa: E402
from checkout.utils.logging import configure_logging  # noqa: E402
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

configure_logging()
checkout.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Checkout API",
    description="Order checkout and payment settlement",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the checkout domain context for each request."""
    if request.url.path == "/health":
        return await call_next(request)
    with checkout.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from checkout.api import (  # noqa: E402
    catalog_router,
    checkout_router,
    maintenance_router,
    order_router,
    payment_router,
    stock_router,
)

app.include_router(checkout_router)
app.include_router(payment_router)
app.include_router(order_router)
app.include_router(stock_router)
app.include_router(catalog_router)
app.include_router(maintenance_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {"checkout": {"name": checkout.name}},
        }
    )
