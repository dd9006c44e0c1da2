"""
Sync orchestrator: push one store's local stock to its Shopify location.

State machine:
    INIT -> LOCATING -> RESOLVING -> UPDATING -> DONE
    LOCATING -> FAILED when no location matches; INIT -> FAILED on an empty snapshot

Per-item failures never abort the run; they are recorded on the item's
outcome. Retrying is the client's job, not the orchestrator's.
"""

import asyncio
import time
from typing import Callable, Iterable, Optional
import structlog

from exceptions import (
    AppError,
    DatabaseError,
    EmptyInventoryError,
    LocationNotFoundError,
    ShopifyRecordNotFoundError,
)
from integrations.shopify import ShopifyCatalogAPI, get_shopify_api
from models.inventory import LocalInventoryItem
from models.mapping import (
    DISCOVERY_TIERS,
    BulkResolution,
    ImportHint,
    ProductMapping,
    utc_now,
)
from models.sync import SyncOutcome, SyncState, SyncStatus, SyncSummary
from services.bulk_resolver_service import BulkResolver, get_bulk_resolver
from services.location_service import LocationResolver, get_location_resolver
from services.resolver_service import ProductResolver, get_resolver
from utils.barcode_utils import normalize_barcode

logger = structlog.get_logger(__name__)

MISSING_BARCODE = "missing barcode"
NOT_FOUND = "not found in Shopify"
CANCELLED = "sync cancelled"


class SyncService:
    """
    Runs store syncs.

    Concurrent runs for different stores may share one instance (and must
    share the client). Runs for the same store should be serialized by the
    caller.
    """

    def __init__(
        self,
        api: ShopifyCatalogAPI,
        resolver: ProductResolver,
        bulk_resolver: Optional[BulkResolver] = None,
        locations: Optional[LocationResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.resolver = resolver
        self.bulk_resolver = bulk_resolver or BulkResolver(resolver)
        self.locations = locations or LocationResolver(api)
        self._clock = clock

    async def sync_store(
        self,
        store_id: str,
        store_name: str,
        items: list[LocalInventoryItem],
        hints: Optional[Iterable[ImportHint]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncSummary:
        """
        Sync one store's inventory snapshot.

        Args:
            store_id: Local store id (reporting only)
            store_name: Matched against Shopify location names
            items: Snapshot, processed in order
            hints: Optional import hints keyed by barcode
            cancel_event: Checked between items; once set, no new item starts

        Returns:
            SyncSummary. Precondition failures (no items, no location) come
            back as a FAILED summary with `error` set, not as exceptions.
        """
        start = self._clock()
        log = logger.bind(store_id=store_id, store_name=store_name)
        summary = SyncSummary(
            store_id=store_id,
            store_name=store_name,
            total=len(items),
            started_at=utc_now(),
        )
        log.info("sync_started", items=len(items))

        if not items:
            summary.error = EmptyInventoryError(store_id).message
            return self._finish(summary, SyncState.FAILED, start, log)

        # LOCATING
        summary.state = SyncState.LOCATING
        try:
            location = await self.locations.find_location_by_name(store_name)
        except AppError as e:
            log.error("location_lookup_failed", error=e.message)
            return self._fail_all(summary, items, e.message, start, log)

        if location is None:
            return self._fail_all(summary, items, LocationNotFoundError(store_name).message, start, log)

        summary.location_id = location.id
        log = log.bind(location_id=location.id)

        if _cancelled(cancel_event):
            return self._cancel_rest(summary, items, start, log)

        # RESOLVING
        summary.state = SyncState.RESOLVING
        hint_map: dict[str, ImportHint] = {}
        for hint in hints or []:
            barcode = normalize_barcode(hint.barcode)
            if barcode and barcode not in hint_map:
                hint_map[barcode] = hint

        resolution = await self.bulk_resolver.resolve_all(
            (item.barcode, hint_map.get(item.barcode))
            for item in items
            if item.barcode
        )
        summary.tier_counts = resolution.tier_counts
        summary.new_mappings = resolution.new_mappings
        summary.avg_search_time_ms = _avg_discovery_time(resolution)

        # UPDATING
        summary.state = SyncState.UPDATING
        synced: list[str] = []

        for index, item in enumerate(items):
            if _cancelled(cancel_event):
                log.warning("sync_cancelled", processed=index, remaining=len(items) - index)
                summary.cancelled = True
                for rest in items[index:]:
                    summary.add(_outcome(rest, SyncStatus.SKIPPED, CANCELLED))
                break

            outcome = await self._sync_item(item, resolution, location.id, log)
            summary.add(outcome)
            if outcome.status == SyncStatus.SUCCESS:
                synced.append(item.barcode)

        await self._confirm(synced, log)
        return self._finish(summary, SyncState.DONE, start, log)

    # ===================
    # PER ITEM
    # ===================

    async def _sync_item(
        self,
        item: LocalInventoryItem,
        resolution: BulkResolution,
        location_id: str,
        log,
    ) -> SyncOutcome:
        if not item.barcode:
            return _outcome(item, SyncStatus.SKIPPED, MISSING_BARCODE)

        result = resolution.get(item.barcode)
        if result is None or not result.found:
            if result is not None and result.error:
                return _outcome(item, SyncStatus.ERROR, f"discovery failed: {result.error}")
            return _outcome(item, SyncStatus.SKIPPED, NOT_FOUND)

        mapping = result.mapping
        quantity = item.sync_quantity
        method = result.method.value if result.method else None

        try:
            mapping = await self.resolver.complete_mapping(mapping)
            if not mapping.remote_inventory_item_id:
                return _outcome(
                    item,
                    SyncStatus.ERROR,
                    "mapping has no inventory item",
                    mapping=mapping,
                    discovery_method=method,
                )

            before = await self._read_before(mapping, location_id, log)
            after = await self.api.set_available(mapping.remote_inventory_item_id, location_id, quantity)

        except ShopifyRecordNotFoundError as e:
            log.warning("stale_mapping", barcode=item.barcode, error=e.message)
            await self._invalidate(item.barcode, log)
            return _outcome(
                item,
                SyncStatus.ERROR,
                f"stale mapping removed: {e.message}",
                mapping=mapping,
                discovery_method=method,
            )

        except AppError as e:
            log.error("sync_item_failed", barcode=item.barcode, error=e.message)
            return _outcome(item, SyncStatus.ERROR, e.message, mapping=mapping, discovery_method=method)

        except Exception as e:
            # Per-item failures never abort the run
            log.error(
                "sync_item_unexpected_error",
                barcode=item.barcode,
                error=str(e),
                error_type=type(e).__name__
            )
            return _outcome(
                item,
                SyncStatus.ERROR,
                f"unexpected error: {e}",
                mapping=mapping,
                discovery_method=method,
            )

        log.info(
            "sync_item_updated",
            barcode=item.barcode,
            quantity_before=before,
            quantity_after=after
        )
        return _outcome(
            item,
            SyncStatus.SUCCESS,
            "updated",
            mapping=mapping,
            discovery_method=method,
            quantity_before=before,
            quantity_after=after,
        )

    async def _read_before(self, mapping: ProductMapping, location_id: str, log) -> int:
        """Best-effort read of the current level; 0 when it cannot be read."""
        try:
            available = await self.api.get_available(mapping.remote_inventory_item_id, location_id)
        except ShopifyRecordNotFoundError:
            raise
        except AppError as e:
            log.warning("inventory_read_failed", barcode=mapping.barcode, error=e.message)
            return 0
        return available if available is not None else 0

    async def _invalidate(self, barcode: str, log) -> None:
        try:
            await self.resolver.invalidate(barcode)
        except DatabaseError as e:
            log.error("stale_mapping_invalidation_failed", barcode=barcode, error=e.message)

    async def _confirm(self, barcodes: list[str], log) -> None:
        if not barcodes:
            return
        try:
            await asyncio.to_thread(self.resolver.store.confirm, barcodes)
        except DatabaseError as e:
            log.error("mapping_confirm_failed", count=len(barcodes), error=e.message)

    # ===================
    # RUN ENDINGS
    # ===================

    def _fail_all(
        self,
        summary: SyncSummary,
        items: list[LocalInventoryItem],
        error: str,
        start: float,
        log,
    ) -> SyncSummary:
        """Location missing: nothing can be written, every item is skipped."""
        summary.error = error
        for item in items:
            summary.add(_outcome(item, SyncStatus.SKIPPED, error))
        return self._finish(summary, SyncState.FAILED, start, log)

    def _cancel_rest(
        self,
        summary: SyncSummary,
        items: list[LocalInventoryItem],
        start: float,
        log,
    ) -> SyncSummary:
        log.warning("sync_cancelled", processed=0, remaining=len(items))
        summary.cancelled = True
        for item in items:
            summary.add(_outcome(item, SyncStatus.SKIPPED, CANCELLED))
        return self._finish(summary, SyncState.DONE, start, log)

    def _finish(self, summary: SyncSummary, state: SyncState, start: float, log) -> SyncSummary:
        summary.state = state
        summary.finished_at = utc_now()
        summary.duration_ms = int((self._clock() - start) * 1000)

        if state == SyncState.FAILED:
            log.error("sync_failed", error=summary.error, duration_ms=summary.duration_ms)
        else:
            log.info(
                "sync_complete",
                total=summary.total,
                successful=summary.successful,
                failed=summary.failed,
                skipped=summary.skipped,
                cancelled=summary.cancelled,
                new_mappings=summary.new_mappings,
                duration_ms=summary.duration_ms
            )
        return summary


def _cancelled(event: Optional[asyncio.Event]) -> bool:
    return event is not None and event.is_set()


def _avg_discovery_time(resolution: BulkResolution) -> Optional[int]:
    """Mean search time of mappings discovered by remote tiers in this run."""
    times = [
        r.search_time_ms
        for r in resolution.results.values()
        if r.found and r.method in DISCOVERY_TIERS
    ]
    if not times:
        return None
    return int(sum(times) / len(times))


def _outcome(
    item: LocalInventoryItem,
    status: SyncStatus,
    message: str,
    mapping: Optional[ProductMapping] = None,
    discovery_method: Optional[str] = None,
    quantity_before: Optional[int] = None,
    quantity_after: Optional[int] = None,
) -> SyncOutcome:
    return SyncOutcome(
        barcode=item.barcode,
        status=status,
        message=message,
        product_id=item.product_id,
        remote_variant_id=mapping.remote_variant_id if mapping else None,
        remote_inventory_item_id=mapping.remote_inventory_item_id if mapping else None,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        discovery_method=discovery_method,
    )


# Singleton instance for convenience
_sync_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    """Get or create SyncService wired to the shared client, cache and store."""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService(
            api=get_shopify_api(),
            resolver=get_resolver(),
            bulk_resolver=get_bulk_resolver(),
            locations=get_location_resolver(),
        )
    return _sync_service
