"""Catalog price reader port and its in-memory implementation."""

import threading
from abc import ABC, abstractmethod


class ProductCatalogReader(ABC):
    @abstractmethod
    def unit_prices(self, product_ids: list[str]) -> dict[str, float]:
        """Return the current price of each known product.

        Unknown products are left out of the result.
        """
        ...


class InMemoryCatalog(ProductCatalogReader):
    """Price list held in memory, seeded at startup or by tests."""

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self._lock = threading.Lock()
        self._prices: dict[str, float] = dict(prices or {})

    def set_price(self, product_id: str, price: float) -> None:
        with self._lock:
            self._prices[str(product_id)] = float(price)

    def unit_prices(self, product_ids: list[str]) -> dict[str, float]:
        with self._lock:
            return {str(pid): self._prices[str(pid)] for pid in product_ids if str(pid) in self._prices}
