"""
Unit tests for MappingStore.

Runs against the in-memory Supabase double from conftest.
"""

import pytest

from exceptions import DatabaseError, MappingNotFoundError
from models.mapping import DiscoveryMethod
from services.mapping_store import MappingStore, get_mapping_store
from tests.factories import ProductMappingFactory


# ===================
# READ TESTS
# ===================

class TestGet:

    def test_found(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.set_table_data(mapping_table, [
            ProductMappingFactory.create_row(barcode="111", remote_product_id="500"),
        ])

        mapping = mapping_store.get("111")

        assert mapping.remote_product_id == "500"
        assert mapping.discovery_method == DiscoveryMethod.BATCH_SEARCH

    def test_not_found(self, mapping_store):
        assert mapping_store.get("999") is None

    def test_database_error(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.fail(mapping_table)

        with pytest.raises(DatabaseError):
            mapping_store.get("111")

    def test_reads_numeric_ids(self, mapping_store, mock_supabase, mapping_table):
        """bigint columns come back as ints."""
        row = ProductMappingFactory.create_row(barcode="111")
        row["shopify_product_id"] = 10700461048139
        mock_supabase.set_table_data(mapping_table, [row])

        assert mapping_store.get("111").remote_product_id == "10700461048139"


class TestGetMany:

    def test_returns_only_known(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.set_table_data(mapping_table, [
            ProductMappingFactory.create_row(barcode="111"),
            ProductMappingFactory.create_row(barcode="222"),
        ])

        mappings = mapping_store.get_many(["111", "333", "222", "111"])

        assert set(mappings) == {"111", "222"}

    def test_one_query_per_chunk(self, mapping_store, mock_supabase, mapping_table):
        mapping_store.get_many([str(i) for i in range(250)])

        assert mock_supabase.table(mapping_table).calls == ["select"] * 3


class TestStats:

    def test_counts_by_method(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.set_table_data(mapping_table, [
            ProductMappingFactory.create_row(barcode="1", discovery_method=DiscoveryMethod.BATCH_SEARCH),
            ProductMappingFactory.create_row(barcode="2", discovery_method=DiscoveryMethod.BATCH_SEARCH),
            ProductMappingFactory.create_row(barcode="3", discovery_method=DiscoveryMethod.IMPORT_HINT),
        ])

        stats = mapping_store.stats()

        assert stats.total == 3
        assert stats.by_method == {"batch_search": 2, "import_hint": 1}


# ===================
# WRITE TESTS
# ===================

class TestPut:

    def test_inserts(self, mapping_store, mock_supabase, mapping_table):
        saved = mapping_store.put(ProductMappingFactory.create(barcode="111"))

        rows = mock_supabase.rows(mapping_table)
        assert len(rows) == 1
        assert rows[0]["shopify_product_id"] == "500"
        assert saved.last_verified_at is not None

    def test_idempotent_for_same_barcode(self, mapping_store, mock_supabase, mapping_table):
        mapping = ProductMappingFactory.create(barcode="111")

        mapping_store.put(mapping)
        mapping_store.put(mapping)

        assert len(mock_supabase.rows(mapping_table)) == 1

    def test_last_write_wins(self, mapping_store, mock_supabase, mapping_table):
        mapping_store.put(ProductMappingFactory.create(barcode="111", discovery_method=DiscoveryMethod.BATCH_SEARCH))
        mapping_store.put(ProductMappingFactory.create(barcode="111", discovery_method=DiscoveryMethod.IMPORT_HINT))

        assert mapping_store.get("111").discovery_method == DiscoveryMethod.IMPORT_HINT

    def test_database_error(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.fail(mapping_table)

        with pytest.raises(DatabaseError):
            mapping_store.put(ProductMappingFactory.create())


class TestConfirm:

    def test_retimestamps(self, mapping_store, mock_supabase, mapping_table):
        row = ProductMappingFactory.create_row(barcode="111")
        row["last_verified_at"] = "2025-01-01T00:00:00+00:00"
        mock_supabase.set_table_data(mapping_table, [row])

        assert mapping_store.confirm(["111", "111"]) == 1
        assert mock_supabase.rows(mapping_table)[0]["last_verified_at"] != "2025-01-01T00:00:00+00:00"

    def test_nothing_to_confirm(self, mapping_store, mock_supabase, mapping_table):
        assert mapping_store.confirm([]) == 0
        assert mock_supabase.table(mapping_table).calls == []


class TestInvalidate:

    def test_deletes(self, mapping_store, mock_supabase, mapping_table):
        mock_supabase.set_table_data(mapping_table, [
            ProductMappingFactory.create_row(barcode="111"),
            ProductMappingFactory.create_row(barcode="222"),
        ])

        mapping_store.invalidate("111")

        assert [r["barcode"] for r in mock_supabase.rows(mapping_table)] == ["222"]

    def test_missing_raises(self, mapping_store):
        with pytest.raises(MappingNotFoundError):
            mapping_store.invalidate("999")


class TestSingleton:

    def test_uses_shared_client(self, mock_db):
        store = get_mapping_store()

        assert isinstance(store, MappingStore)
        assert store.db is mock_db
        assert get_mapping_store() is store
