"""
Unit tests for BulkResolver.
"""

import pytest

from exceptions import ShopifyRetriesExhaustedError, ShopifySearchIncompleteError
from models.mapping import DiscoveryMethod
from services.bulk_resolver_service import BulkResolver
from services.resolver_service import ProductResolver
from tests.factories import ProductMappingFactory, RemoteProductFactory, make_hint


@pytest.fixture
def bulk(resolver):
    return BulkResolver(resolver, concurrency=3)


class TestPartitioning:

    @pytest.mark.asyncio
    async def test_each_partition_answers(self, bulk, catalog, mapping_cache, mock_supabase, mapping_table):
        mapping_cache.put(ProductMappingFactory.create(barcode="c1"))
        mock_supabase.set_table_data(mapping_table, [ProductMappingFactory.create_row(barcode="p1")])
        hinted = catalog.add_product(RemoteProductFactory.create(id="6001", barcodes=["h1"]))
        catalog.add_product(RemoteProductFactory.create(id="6002", barcodes=["b1"]))

        resolution = await bulk.resolve_all([
            ("c1", None),
            ("p1", None),
            ("h1", make_hint("h1", variant_id=hinted.variants[0].id)),
            ("b1", None),
            ("zz", None),
        ])

        methods = {b: r.method for b, r in resolution.results.items()}
        assert methods == {
            "c1": DiscoveryMethod.CACHE,
            "p1": DiscoveryMethod.PERSISTED,
            "h1": DiscoveryMethod.IMPORT_HINT,
            "b1": DiscoveryMethod.BATCH_SEARCH,
            "zz": None,
        }
        assert resolution.tier_counts == {"cache": 1, "persisted": 1, "import_hint": 1, "batch_search": 1}
        assert resolution.not_found == ["zz"]
        assert resolution.new_mappings == 2

    @pytest.mark.asyncio
    async def test_known_barcodes_make_no_remote_call(self, bulk, catalog, mock_supabase, mapping_table):
        mock_supabase.set_table_data(mapping_table, [
            ProductMappingFactory.create_row(barcode="111"),
            ProductMappingFactory.create_row(barcode="222"),
        ])

        resolution = await bulk.resolve_all([("111", None), ("222", make_hint("222", variant_id="9"))])

        assert resolution.tier_counts == {"persisted": 2}
        assert catalog.remote_calls == 0

    @pytest.mark.asyncio
    async def test_duplicates_collapse_and_first_hint_wins(self, bulk, catalog):
        product = catalog.add_product(RemoteProductFactory.create(id="6003", barcodes=["111"]))

        resolution = await bulk.resolve_all([
            (" 111", None),
            ("111", make_hint("111", variant_id=product.variants[0].id)),
            ("111", make_hint("111", variant_id="404")),
            ("", None),
        ])

        assert list(resolution.results) == ["111"]
        assert resolution.results["111"].method == DiscoveryMethod.IMPORT_HINT
        assert catalog.calls["get_variant"] == 1

    @pytest.mark.asyncio
    async def test_rejected_hint_falls_through_to_batch(self, bulk, catalog):
        decoy = catalog.add_product(RemoteProductFactory.create(id="6004", barcodes=["999"]))
        real = catalog.add_product(RemoteProductFactory.create(id="6005", barcodes=["111"]))

        resolution = await bulk.resolve_all([("111", make_hint("111", variant_id=decoy.variants[0].id))])

        result = resolution.results["111"]
        assert result.method == DiscoveryMethod.BATCH_SEARCH
        assert result.mapping.remote_product_id == real.id

    @pytest.mark.asyncio
    async def test_hint_failure_cleared_by_batch_hit(self, bulk, catalog):
        catalog.add_product(RemoteProductFactory.create(id="6006", barcodes=["111"]))
        catalog.fail("get_variant", ShopifyRetriesExhaustedError("network", 4, "timeout"))

        resolution = await bulk.resolve_all([("111", make_hint("111", variant_id="600601"))])

        result = resolution.results["111"]
        assert result.method == DiscoveryMethod.BATCH_SEARCH
        assert result.error is None

    @pytest.mark.asyncio
    async def test_never_falls_back_to_exhaustive(self, bulk, catalog):
        catalog.add_product(RemoteProductFactory.create(id="6007", barcodes=["00123"]))

        resolution = await bulk.resolve_all([("123", None)])

        assert resolution.not_found == ["123"]
        assert catalog.calls["list_products_page"] == 0


class TestBatching:

    @pytest.mark.asyncio
    async def test_one_search_per_batch(self, catalog, mapping_store, mapping_cache):
        resolver = ProductResolver(
            api=catalog, store=mapping_store, cache=mapping_cache,
            batch_size=2, max_query_length=2000,
        )
        bulk = BulkResolver(resolver)

        await bulk.resolve_all([(str(n), None) for n in range(5)])

        assert catalog.search_queries == [["0", "1"], ["2", "3"], ["4"]]

    @pytest.mark.asyncio
    async def test_failed_batch_only_affects_its_barcodes(self, catalog, mapping_store, mapping_cache):
        resolver = ProductResolver(
            api=catalog, store=mapping_store, cache=mapping_cache,
            batch_size=2, max_query_length=2000,
        )
        catalog.add_product(RemoteProductFactory.create(id="6101", barcodes=["a"]))
        catalog.add_product(RemoteProductFactory.create(id="6102", barcodes=["c"]))
        original = resolver.search_batch

        async def flaky_search(batch):
            if "c" in batch:
                raise ShopifyRetriesExhaustedError("throttled", 6, "HTTP 429")
            return await original(batch)

        resolver.search_batch = flaky_search
        resolution = await BulkResolver(resolver).resolve_all([("a", None), ("b", None), ("c", None)])

        assert resolution.results["a"].found
        assert resolution.results["b"].error is None
        assert not resolution.results["c"].found
        assert "6 attempts" in resolution.results["c"].error
        assert resolution.not_found == ["b", "c"]

    @pytest.mark.asyncio
    async def test_incomplete_search_reports_errors(self, bulk, catalog):
        catalog.add_product(RemoteProductFactory.create(id="6151", barcodes=["111"]))
        catalog.fail("search_variants_by_barcodes", ShopifySearchIncompleteError(2, 20))

        resolution = await bulk.resolve_all([("111", None), ("222", None)])

        assert all(not r.found for r in resolution.results.values())
        assert "after 20 pages" in resolution.results["111"].error
        assert "after 20 pages" in resolution.results["222"].error

    @pytest.mark.asyncio
    async def test_store_outage_still_searches(self, bulk, catalog, mock_supabase, mapping_table):
        catalog.add_product(RemoteProductFactory.create(id="6201", barcodes=["111"]))
        mock_supabase.fail(mapping_table)

        resolution = await bulk.resolve_all([("111", None)])

        assert resolution.results["111"].method == DiscoveryMethod.BATCH_SEARCH

    @pytest.mark.asyncio
    async def test_batch_tier_disabled(self, catalog, mapping_store, mapping_cache):
        resolver = ProductResolver(
            api=catalog, store=mapping_store, cache=mapping_cache,
            tiers=["cache", "persisted", "import_hint"],
        )
        catalog.add_product(RemoteProductFactory.create(id="6301", barcodes=["111"]))

        resolution = await BulkResolver(resolver).resolve_all([("111", None)])

        assert resolution.not_found == ["111"]
        assert catalog.remote_calls == 0
