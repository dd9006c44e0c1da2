"""
In-memory stand-ins for the Shopify catalog and the clock.

FakeShopifyCatalog has the same async surface as ShopifyCatalogAPI and
counts every call, so tests can assert how many remote calls a code path
made.
"""

from collections import Counter
from typing import Optional

from exceptions import ShopifyRecordNotFoundError
from models.remote import RemoteLocation, RemoteProduct, RemoteVariant


class FakeClock:
    """Callable monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeShopifyCatalog:
    """
    Usage:
        catalog = FakeShopifyCatalog()
        catalog.add_product(RemoteProductFactory.create(barcodes=["111"]))
        catalog.add_location("loc-1", "Main")
        catalog.fail("set_available", ShopifyRequestError(422, "invalid"), key="inv-3")
    """

    def __init__(self):
        self.products: dict[str, RemoteProduct] = {}
        self.locations: list[RemoteLocation] = []
        self.levels: dict[tuple[str, str], int] = {}
        self.calls: Counter = Counter()
        self.writes: list[tuple[str, str, int]] = []
        self.search_queries: list[list[str]] = []
        self._failures: dict[tuple[str, Optional[str]], Exception] = {}

    # ===================
    # SETUP
    # ===================

    def add_product(self, product: RemoteProduct) -> RemoteProduct:
        self.products[product.id] = product
        return product

    def add_location(self, location_id: str, name: str, active: bool = True) -> RemoteLocation:
        location = RemoteLocation(id=location_id, name=name, active=active)
        self.locations.append(location)
        return location

    def set_level(self, inventory_item_id: str, location_id: str, available: int) -> None:
        self.levels[(inventory_item_id, location_id)] = available

    def fail(self, method: str, error: Exception, key: Optional[str] = None) -> None:
        """Raise `error` from `method`, for every call or only for one id."""
        self._failures[(method, key)] = error

    @property
    def remote_calls(self) -> int:
        return sum(self.calls.values())

    def _call(self, method: str, key: Optional[str] = None) -> None:
        self.calls[method] += 1
        error = self._failures.get((method, key)) or self._failures.get((method, None))
        if error is not None:
            raise error

    def _variants(self) -> list[RemoteVariant]:
        return [v for p in self.products.values() for v in p.variants]

    # ===================
    # CATALOG API
    # ===================

    async def list_locations(self) -> list[RemoteLocation]:
        self._call("list_locations")
        return list(self.locations)

    async def get_product(self, product_id: str) -> RemoteProduct:
        self._call("get_product", product_id)
        if product_id not in self.products:
            raise ShopifyRecordNotFoundError(f"/products/{product_id}.json")
        return self.products[product_id]

    async def get_variant(self, variant_id: str) -> RemoteVariant:
        self._call("get_variant", variant_id)
        for variant in self._variants():
            if variant.id == variant_id:
                return variant
        raise ShopifyRecordNotFoundError(f"/variants/{variant_id}.json")

    async def search_variants_by_barcodes(self, barcodes: list[str]) -> list[RemoteVariant]:
        self._call("search_variants_by_barcodes")
        self.search_queries.append(list(barcodes))
        wanted = set(barcodes)
        return [v for v in self._variants() if v.barcode in wanted]

    async def list_products_page(self, since_id: Optional[str], limit: int) -> list[RemoteProduct]:
        self._call("list_products_page")
        ordered = sorted(self.products.values(), key=lambda p: int(p.id))
        if since_id is not None:
            ordered = [p for p in ordered if int(p.id) > int(since_id)]
        return ordered[:limit]

    async def get_available(self, inventory_item_id: str, location_id: str) -> Optional[int]:
        self._call("get_available", inventory_item_id)
        return self.levels.get((inventory_item_id, location_id))

    async def set_available(self, inventory_item_id: str, location_id: str, quantity: int) -> int:
        self._call("set_available", inventory_item_id)
        self.levels[(inventory_item_id, location_id)] = quantity
        self.writes.append((inventory_item_id, location_id, quantity))
        return quantity
