from checkout.api.routes import (
    catalog_router,
    checkout_router,
    maintenance_router,
    order_router,
    payment_router,
    stock_router,
)

__all__ = [
    "checkout_router",
    "order_router",
    "payment_router",
    "stock_router",
    "catalog_router",
    "maintenance_router",
]
