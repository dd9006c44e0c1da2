"""
Shared test fixtures.
"""

import os
import sys
from pathlib import Path

# Add project root to Python path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

# Settings are loaded at import time; give them what they require
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SHOPIFY_SHOP_DOMAIN", "test-shop.myshopify.com")
os.environ.setdefault("SHOPIFY_ACCESS_TOKEN", "shpat_test")

import pytest
from unittest.mock import patch
from datetime import datetime
from typing import Any, Callable, Generator, Optional

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """
    Chainable query over an in-memory table.

    Filters, ordering and paging apply at execute() time, like the real
    PostgREST builder.
    """

    def __init__(self, table: "MockSupabaseTable", action: str, payload: Any = None, on_conflict: str = None):
        self._table = table
        self._action = action
        self._payload = payload
        self._on_conflict = on_conflict
        self._filters: list[Callable[[dict], bool]] = []
        self._order: Optional[tuple[str, bool]] = None
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None
        self._count = False

    def select(self, *args, count: str = None, **kwargs):
        self._count = count is not None
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        allowed = set(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        table = self._table
        table.calls.append(self._action)
        if table.error is not None:
            raise table.error

        if self._action == "select":
            rows = [dict(r) for r in table.rows if self._matches(r)]
            total = len(rows)
            if self._order:
                column, desc = self._order
                rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
            if self._range:
                start, end = self._range
                rows = rows[start:end + 1]
            if self._limit is not None:
                rows = rows[:self._limit]
            return MockSupabaseResponse(rows, count=total if self._count else None)

        if self._action == "update":
            updated = []
            for row in table.rows:
                if self._matches(row):
                    row.update(self._payload)
                    updated.append(dict(row))
            return MockSupabaseResponse(updated)

        if self._action == "delete":
            removed = [r for r in table.rows if self._matches(r)]
            table.rows = [r for r in table.rows if not self._matches(r)]
            return MockSupabaseResponse(removed)

        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        written = []
        for item in payload:
            item = dict(item)
            item.setdefault("created_at", datetime.utcnow().isoformat() + "Z")
            existing = None
            if self._action == "upsert" and self._on_conflict:
                keys = [k.strip() for k in self._on_conflict.split(",")]
                existing = next(
                    (r for r in table.rows if all(r.get(k) == item.get(k) for k in keys)),
                    None
                )
            if existing is not None:
                existing.update(item)
                written.append(dict(existing))
            else:
                table.rows.append(item)
                written.append(dict(item))
        return MockSupabaseResponse(written)


class MockSupabaseTable:
    """In-memory table. Set `error` to make every query on it fail."""

    def __init__(self, data: list = None):
        self.rows: list[dict] = [dict(r) for r in (data or [])]
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self, "select").select(*args, **kwargs)

    def insert(self, data):
        return MockSupabaseQuery(self, "insert", payload=data)

    def upsert(self, data, on_conflict: str = None, **kwargs):
        return MockSupabaseQuery(self, "upsert", payload=data, on_conflict=on_conflict)

    def update(self, data):
        return MockSupabaseQuery(self, "update", payload=data)

    def delete(self):
        return MockSupabaseQuery(self, "delete")


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, MockSupabaseTable] = {}

    def set_table_data(self, table_name: str, data: list):
        """Configure mock data for a table."""
        self._tables[table_name] = MockSupabaseTable(data)

    def table(self, name: str) -> MockSupabaseTable:
        """Get mock table (created empty on first use)."""
        if name not in self._tables:
            self._tables[name] = MockSupabaseTable()
        return self._tables[name]

    def rows(self, name: str) -> list[dict]:
        return self.table(name).rows

    def fail(self, name: str, error: Exception = None):
        """Make every query on a table raise."""
        self.table(name).error = error or RuntimeError("connection refused")


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("shopify_product_mappings", [
                {"barcode": "111", "shopify_product_id": "1", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            # Any code using get_supabase_client() gets the mock
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.mapping_store.get_supabase_client", return_value=mock_supabase):
            with patch("services.sync_stats_service.get_supabase_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def mapping_table() -> str:
    from config import settings
    return settings.mapping_table


@pytest.fixture
def stats_table() -> str:
    from config import settings
    return settings.sync_stats_table


@pytest.fixture
def fake_clock():
    """Monotonic clock the test moves by hand."""
    from tests.fakes import FakeClock
    return FakeClock()


@pytest.fixture
def catalog():
    """Empty in-memory Shopify catalog."""
    from tests.fakes import FakeShopifyCatalog
    return FakeShopifyCatalog()


@pytest.fixture
def mapping_store(mock_supabase, mapping_table):
    from services.mapping_store import MappingStore
    return MappingStore(db=mock_supabase, table=mapping_table)


@pytest.fixture
def mapping_cache(fake_clock):
    from services.mapping_cache import MappingCache
    return MappingCache(ttl_seconds=300, clock=fake_clock)


@pytest.fixture
def resolver(catalog, mapping_store, mapping_cache):
    """Resolver over the fake catalog with all tiers enabled."""
    from services.resolver_service import ProductResolver
    return ProductResolver(
        api=catalog,
        store=mapping_store,
        cache=mapping_cache,
        batch_size=25,
        max_query_length=2000,
        page_size=2,
        max_records=100,
        allow_blank_barcode_hints=False,
    )


@pytest.fixture
def test_client():
    """
    Create FastAPI test client.

    Lifespan hooks do not run; patch the route getters for service access.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/health")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


# ===================
# SINGLETON RESET
# ===================

@pytest.fixture(autouse=True)
def reset_singletons():
    """Module-level service singletons must not leak between tests."""
    yield
    import services.mapping_store as store_module
    import services.mapping_cache as cache_module
    import services.resolver_service as resolver_module
    import services.bulk_resolver_service as bulk_module
    import services.location_service as location_module
    import services.sync_service as sync_module
    import services.sync_stats_service as stats_module
    import integrations.shopify as shopify_module

    store_module._mapping_store = None
    cache_module._mapping_cache = None
    resolver_module._resolver = None
    bulk_module._bulk_resolver = None
    location_module._location_resolver = None
    sync_module._sync_service = None
    stats_module._sync_stats_service = None
    shopify_module._shopify_api = None
