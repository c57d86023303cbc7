"""Product catalog collaborator.

Checkout needs exactly one thing from the catalog: the current unit price of
each product in the cart, captured once when the order is created. The
reader is swappable through get_catalog() / set_catalog().
"""

from checkout.catalog.reader import InMemoryCatalog, ProductCatalogReader

_current_catalog: ProductCatalogReader | None = None


def get_catalog() -> ProductCatalogReader:
    """Return the current catalog reader. Defaults to an empty InMemoryCatalog."""
    global _current_catalog
    if _current_catalog is None:
        _current_catalog = InMemoryCatalog()
    return _current_catalog


def set_catalog(catalog: ProductCatalogReader) -> None:
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    global _current_catalog
    _current_catalog = None
