"""
Bulk Resolver: resolve a whole inventory snapshot with as few remote calls
as possible.

Partitions the barcodes into:
    - known: answered by cache / Mapping Store, no remote call
    - hinted: verified through their import hint, concurrently
    - remaining: grouped into batched disjunctive searches

Anything left after batch search is "not found". Bulk runs never fall back
to exhaustive search; that tier is reserved for single lookups.
"""

import asyncio
import time
from collections import Counter
from typing import Callable, Iterable, Optional
import structlog

from config import settings
from exceptions import AppError, DatabaseError
from models.mapping import (
    BulkResolution,
    DiscoveryMethod,
    ImportHint,
    ProductMapping,
    ResolutionResult,
)
from services.resolver_service import ProductResolver, get_resolver
from utils.barcode_utils import normalize_barcode

logger = structlog.get_logger(__name__)


class BulkResolver:
    """Snapshot-level discovery on top of a ProductResolver."""

    def __init__(
        self,
        resolver: ProductResolver,
        concurrency: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resolver = resolver
        self.concurrency = concurrency or settings.import_hint_concurrency
        self._clock = clock

    async def resolve_all(
        self,
        requests: Iterable[tuple[str, Optional[ImportHint]]],
    ) -> BulkResolution:
        """
        Resolve many barcodes.

        Args:
            requests: (barcode, optional hint) pairs. Duplicates collapse to
                one lookup; the first non-empty hint for a barcode is used.

        Returns:
            BulkResolution with one result per distinct barcode
        """
        start = self._clock()
        hints: dict[str, Optional[ImportHint]] = {}
        for raw_barcode, hint in requests:
            barcode = normalize_barcode(raw_barcode)
            if not barcode:
                continue
            if hints.get(barcode) is None:
                hints[barcode] = hint

        found: dict[str, tuple[ProductMapping, DiscoveryMethod]] = {}
        errors: dict[str, str] = {}

        # Tiers 1-2
        await self._resolve_known(list(hints), found)

        # Tier 3
        if self.resolver.enabled(DiscoveryMethod.IMPORT_HINT):
            hinted = [
                (b, h) for b, h in hints.items()
                if b not in found and h is not None and h.has_target
            ]
            if hinted:
                await self._resolve_hinted(hinted, found, errors)

        # Tier 4
        remaining = [b for b in hints if b not in found]
        if remaining and self.resolver.enabled(DiscoveryMethod.BATCH_SEARCH):
            await self._resolve_batches(remaining, found, errors)

        results: dict[str, ResolutionResult] = {}
        tier_counts: Counter = Counter()
        not_found: list[str] = []
        for barcode in hints:
            if barcode in found:
                mapping, method = found[barcode]
                tier_counts[method.value] += 1
                results[barcode] = ResolutionResult(
                    barcode=barcode,
                    mapping=mapping,
                    method=method,
                    search_time_ms=mapping.search_time_ms or 0,
                )
            else:
                not_found.append(barcode)
                results[barcode] = ResolutionResult(barcode=barcode, error=errors.get(barcode))

        resolution = BulkResolution(
            results=results,
            tier_counts=dict(tier_counts),
            not_found=not_found,
            duration_ms=int((self._clock() - start) * 1000),
        )

        logger.info(
            "bulk_resolution_complete",
            barcodes=len(hints),
            resolved=len(found),
            not_found=len(not_found),
            errors=len([b for b in not_found if b in errors]),
            tier_counts=resolution.tier_counts,
            duration_ms=resolution.duration_ms
        )
        return resolution

    # ===================
    # PARTITIONS
    # ===================

    async def _resolve_known(
        self,
        barcodes: list[str],
        found: dict[str, tuple[ProductMapping, DiscoveryMethod]],
    ) -> None:
        resolver = self.resolver

        if resolver.enabled(DiscoveryMethod.CACHE):
            for barcode in barcodes:
                cached = resolver.cache.get(barcode)
                if cached is not None:
                    found[barcode] = (cached, DiscoveryMethod.CACHE)

        if not resolver.enabled(DiscoveryMethod.PERSISTED):
            return

        missing = [b for b in barcodes if b not in found]
        if not missing:
            return

        try:
            stored = await asyncio.to_thread(resolver.store.get_many, missing)
        except DatabaseError as e:
            logger.error("bulk_store_lookup_failed", barcodes=len(missing), error=e.message)
            return

        for barcode, mapping in stored.items():
            resolver.remember(mapping)
            found[barcode] = (mapping, DiscoveryMethod.PERSISTED)

    async def _resolve_hinted(
        self,
        hinted: list[tuple[str, ImportHint]],
        found: dict[str, tuple[ProductMapping, DiscoveryMethod]],
        errors: dict[str, str],
    ) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def verify(barcode: str, hint: ImportHint) -> None:
            async with semaphore:
                try:
                    mapping = await self.resolver.verify_hint(barcode, hint)
                except AppError as e:
                    logger.warning("import_hint_failed", barcode=barcode, error=e.message)
                    errors[barcode] = e.message
                    return
            if mapping is not None:
                found[barcode] = (mapping, DiscoveryMethod.IMPORT_HINT)

        await asyncio.gather(*(verify(b, h) for b, h in hinted))

    async def _resolve_batches(
        self,
        barcodes: list[str],
        found: dict[str, tuple[ProductMapping, DiscoveryMethod]],
        errors: dict[str, str],
    ) -> None:
        for batch in self.resolver.batches(barcodes):
            try:
                hits = await self.resolver.search_batch(batch)
            except AppError as e:
                # One failed batch leaves only its own barcodes unresolved
                logger.error("batch_search_failed", barcodes=len(batch), error=e.message)
                for barcode in batch:
                    errors[barcode] = e.message
                continue

            for barcode in batch:
                errors.pop(barcode, None)
            for barcode, mapping in hits.items():
                found[barcode] = (mapping, DiscoveryMethod.BATCH_SEARCH)


# Singleton instance for convenience
_bulk_resolver: Optional[BulkResolver] = None


def get_bulk_resolver() -> BulkResolver:
    """Get or create BulkResolver."""
    global _bulk_resolver
    if _bulk_resolver is None:
        _bulk_resolver = BulkResolver(get_resolver())
    return _bulk_resolver
