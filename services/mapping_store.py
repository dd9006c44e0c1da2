"""
Mapping Store: durable barcode -> Shopify identifiers table.

Single source of truth for mappings. Backed by the Supabase table
`shopify_product_mappings` (unique on barcode).
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional
import structlog

from config import get_supabase_client, settings
from models.mapping import MappingStats, ProductMapping
from exceptions import DatabaseError, MappingNotFoundError

logger = structlog.get_logger(__name__)

# Rows per `in` filter / page; keeps request URLs short
QUERY_CHUNK_SIZE = 100
STATS_PAGE_SIZE = 1000


class MappingStore:
    """
    Mapping persistence.

    put() is an upsert keyed by barcode, so concurrent writes for different
    barcodes never conflict and repeated writes for the same barcode are
    idempotent (last verified write wins).
    """

    def __init__(self, db=None, table: Optional[str] = None):
        self.db = db if db is not None else get_supabase_client()
        self.table = table or settings.mapping_table

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, barcode: str) -> Optional[ProductMapping]:
        """
        Get the mapping for one barcode.

        Returns:
            ProductMapping or None if not found
        """
        logger.debug("getting_mapping", barcode=barcode)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("barcode", barcode)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_mapping_failed", barcode=barcode, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        return ProductMapping.from_row(result.data[0])

    def get_many(self, barcodes: Iterable[str]) -> dict[str, ProductMapping]:
        """
        Get mappings for many barcodes with one query per chunk.

        Returns:
            Dict of barcode -> mapping for the barcodes that have one
        """
        unique = list(dict.fromkeys(barcodes))
        mappings: dict[str, ProductMapping] = {}

        for start in range(0, len(unique), QUERY_CHUNK_SIZE):
            chunk = unique[start:start + QUERY_CHUNK_SIZE]
            try:
                result = (
                    self.db.table(self.table)
                    .select("*")
                    .in_("barcode", chunk)
                    .execute()
                )
            except Exception as e:
                logger.error("get_mappings_failed", count=len(chunk), error=str(e))
                raise DatabaseError("select", str(e))

            for row in result.data or []:
                mapping = ProductMapping.from_row(row)
                mappings[mapping.barcode] = mapping

        logger.debug("mappings_loaded", requested=len(unique), found=len(mappings))
        return mappings

    def stats(self) -> MappingStats:
        """Count persisted mappings by discovery method."""
        counts: Counter = Counter()
        offset = 0

        try:
            while True:
                result = (
                    self.db.table(self.table)
                    .select("discovery_method")
                    .range(offset, offset + STATS_PAGE_SIZE - 1)
                    .execute()
                )
                rows = result.data or []
                counts.update(row.get("discovery_method") or "unknown" for row in rows)
                if len(rows) < STATS_PAGE_SIZE:
                    break
                offset += STATS_PAGE_SIZE
        except Exception as e:
            logger.error("mapping_stats_failed", error=str(e))
            raise DatabaseError("select", str(e))

        return MappingStats(total=sum(counts.values()), by_method=dict(counts))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def put(self, mapping: ProductMapping) -> ProductMapping:
        """
        Upsert a verified mapping.

        Re-timestamps last_verified_at.

        Raises:
            DatabaseError: If the upsert fails
        """
        mapping = mapping.model_copy(update={"last_verified_at": datetime.now(timezone.utc)})

        try:
            (
                self.db.table(self.table)
                .upsert(mapping.to_row(), on_conflict="barcode")
                .execute()
            )
        except Exception as e:
            logger.error(
                "put_mapping_failed",
                barcode=mapping.barcode,
                error=str(e)
            )
            raise DatabaseError("upsert", str(e))

        logger.info(
            "mapping_saved",
            barcode=mapping.barcode,
            product_id=mapping.remote_product_id,
            variant_id=mapping.remote_variant_id,
            method=mapping.discovery_method.value
        )
        return mapping

    def confirm(self, barcodes: Iterable[str]) -> int:
        """
        Re-timestamp mappings that were just proven valid by a successful
        inventory write.

        Returns:
            Number of barcodes confirmed
        """
        unique = list(dict.fromkeys(barcodes))
        if not unique:
            return 0

        now = datetime.now(timezone.utc).isoformat()
        try:
            for start in range(0, len(unique), QUERY_CHUNK_SIZE):
                chunk = unique[start:start + QUERY_CHUNK_SIZE]
                (
                    self.db.table(self.table)
                    .update({"last_verified_at": now})
                    .in_("barcode", chunk)
                    .execute()
                )
        except Exception as e:
            logger.error("confirm_mappings_failed", count=len(unique), error=str(e))
            raise DatabaseError("update", str(e))

        logger.debug("mappings_confirmed", count=len(unique))
        return len(unique)

    def invalidate(self, barcode: str) -> None:
        """
        Explicitly remove a stale mapping so it is re-discovered.

        Raises:
            MappingNotFoundError: If no mapping exists for the barcode
        """
        if self.get(barcode) is None:
            raise MappingNotFoundError(barcode)

        try:
            self.db.table(self.table).delete().eq("barcode", barcode).execute()
        except Exception as e:
            logger.error("invalidate_mapping_failed", barcode=barcode, error=str(e))
            raise DatabaseError("delete", str(e))

        logger.warning("mapping_invalidated", barcode=barcode)


# Singleton instance for convenience
_mapping_store: Optional[MappingStore] = None

def get_mapping_store() -> MappingStore:
    """Get or create MappingStore instance."""
    global _mapping_store
    if _mapping_store is None:
        _mapping_store = MappingStore()
    return _mapping_store
