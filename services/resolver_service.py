"""
Barcode -> Shopify product resolver.

One pipeline for every discovery path. Tiers, cheapest first, short-circuit
on the first hit:

    1. cache              in-memory TTL map, no I/O
    2. persisted          Mapping Store lookup
    3. import_hint        fetch the hinted record, verify its barcode
    4. batch_search       one disjunctive search for up to K barcodes
    5. exhaustive_search  page through the catalog (single lookups only)

Which tiers run is configuration (`discovery_tiers`). Not finding a
barcode is an expected outcome, not an error.
"""

import asyncio
import time
from typing import Callable, Iterable, Optional
import structlog

from config import settings
from exceptions import (
    AppError,
    DatabaseError,
    InvalidDiscoveryTierError,
    MappingNotFoundError,
    ShopifyRecordNotFoundError,
)
from integrations.shopify import ShopifyCatalogAPI, get_shopify_api
from models.mapping import (
    DiscoveryMethod,
    ImportHint,
    ProductMapping,
    ResolutionResult,
)
from models.remote import RemoteProduct, RemoteVariant
from services.mapping_cache import MappingCache, get_mapping_cache
from services.mapping_store import MappingStore, get_mapping_store
from utils.barcode_utils import chunk_barcode_query, match_barcode, normalize_barcode

logger = structlog.get_logger(__name__)


def parse_tiers(names: Iterable[str]) -> list[DiscoveryMethod]:
    """
    Turn configured tier names into DiscoveryMethods, keeping pipeline order.

    Raises:
        InvalidDiscoveryTierError: On an unknown name
    """
    valid = [m.value for m in DiscoveryMethod]
    enabled = set()
    for name in names:
        try:
            enabled.add(DiscoveryMethod(str(name).strip().lower()))
        except ValueError:
            raise InvalidDiscoveryTierError(str(name), valid)
    return [m for m in DiscoveryMethod if m in enabled]


def _pick_variant(product: RemoteProduct, barcode: str, allow_blank: bool) -> Optional[RemoteVariant]:
    """Variant of a product carrying the barcode, or its only blank-barcode variant."""
    exact = [v for v in product.variants if v.barcode == barcode]
    if exact:
        return exact[0]
    if allow_blank and len(product.variants) == 1 and product.variants[0].barcode is None:
        return product.variants[0]
    return None


class ProductResolver:
    """
    Resolves barcodes to verified ProductMappings.

    Every mapping it returns from a remote tier has been checked against the
    remote catalog and written to the store and cache.
    """

    def __init__(
        self,
        api: ShopifyCatalogAPI,
        store: MappingStore,
        cache: MappingCache,
        tiers: Optional[Iterable[str]] = None,
        batch_size: Optional[int] = None,
        max_query_length: Optional[int] = None,
        page_size: Optional[int] = None,
        max_records: Optional[int] = None,
        allow_blank_barcode_hints: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.store = store
        self.cache = cache
        self.tiers = parse_tiers(tiers if tiers is not None else settings.discovery_tiers)
        self.batch_size = batch_size or settings.batch_search_size
        self.max_query_length = max_query_length or settings.batch_search_max_query_length
        self.page_size = page_size or settings.exhaustive_page_size
        self.max_records = max_records or settings.exhaustive_max_records
        self.allow_blank_barcode_hints = (
            settings.allow_blank_barcode_hints
            if allow_blank_barcode_hints is None
            else allow_blank_barcode_hints
        )
        self._clock = clock

    def enabled(self, tier: DiscoveryMethod) -> bool:
        return tier in self.tiers

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    # ===================
    # SINGLE BARCODE
    # ===================

    async def resolve(self, barcode: str, hint: Optional[ImportHint] = None) -> ResolutionResult:
        """
        Resolve one barcode through every enabled tier except batch search.

        Args:
            barcode: Local barcode
            hint: Optional remote ids from an import file

        Returns:
            ResolutionResult; `found` is False when no tier matched.
            `error` is set when a remote tier failed and nothing matched.
        """
        start = self._clock()
        barcode = normalize_barcode(barcode)
        if not barcode:
            return ResolutionResult.not_found("")

        known = await self.lookup_known(barcode)
        if known is not None:
            return known

        errors: list[str] = []

        if hint is not None and hint.has_target and self.enabled(DiscoveryMethod.IMPORT_HINT):
            try:
                mapping = await self.verify_hint(barcode, hint)
            except AppError as e:
                logger.warning("import_hint_failed", barcode=barcode, error=e.message)
                errors.append(e.message)
            else:
                if mapping is not None:
                    return self._found(mapping, DiscoveryMethod.IMPORT_HINT, start)

        if self.enabled(DiscoveryMethod.EXHAUSTIVE_SEARCH):
            try:
                mapping = await self.exhaustive_search(barcode)
            except AppError as e:
                logger.warning("exhaustive_search_failed", barcode=barcode, error=e.message)
                errors.append(e.message)
            else:
                if mapping is not None:
                    return self._found(mapping, DiscoveryMethod.EXHAUSTIVE_SEARCH, start)

        logger.info("barcode_not_found", barcode=barcode, search_time_ms=self._elapsed_ms(start))
        result = ResolutionResult.not_found(barcode, self._elapsed_ms(start))
        if errors:
            result.error = "; ".join(errors)
        return result

    async def lookup_known(self, barcode: str) -> Optional[ResolutionResult]:
        """Tiers 1 and 2: cache, then Mapping Store. No remote calls."""
        start = self._clock()

        if self.enabled(DiscoveryMethod.CACHE):
            cached = self.cache.get(barcode)
            if cached is not None:
                logger.debug("mapping_cache_hit", barcode=barcode)
                return self._found(cached, DiscoveryMethod.CACHE, start)

        if self.enabled(DiscoveryMethod.PERSISTED):
            try:
                stored = await asyncio.to_thread(self.store.get, barcode)
            except DatabaseError as e:
                logger.error("mapping_store_lookup_failed", barcode=barcode, error=e.message)
                stored = None
            if stored is not None:
                self.remember(stored)
                logger.debug("mapping_store_hit", barcode=barcode)
                return self._found(stored, DiscoveryMethod.PERSISTED, start)

        return None

    def _found(self, mapping: ProductMapping, method: DiscoveryMethod, start: float) -> ResolutionResult:
        return ResolutionResult(
            barcode=mapping.barcode,
            mapping=mapping,
            method=method,
            search_time_ms=self._elapsed_ms(start),
        )

    # ===================
    # TIER 3: IMPORT HINT
    # ===================

    async def verify_hint(self, barcode: str, hint: ImportHint) -> Optional[ProductMapping]:
        """
        Fetch the hinted record and accept it only if its barcode agrees.

        A variant matches when its barcode equals the lookup barcode. A
        variant with no barcode is accepted only if blank barcodes are
        allowed (per hint or by setting) and the pick is unambiguous: a
        variant-id hint, or a product with exactly one variant.

        Returns:
            Persisted mapping, or None on mismatch / missing record
        """
        start = self._clock()
        allow_blank = hint.allow_blank_barcode or self.allow_blank_barcode_hints
        variant: Optional[RemoteVariant] = None
        product_name: Optional[str] = None

        if hint.remote_variant_id:
            try:
                candidate = await self.api.get_variant(hint.remote_variant_id)
            except ShopifyRecordNotFoundError:
                logger.info("import_hint_variant_missing", barcode=barcode, variant_id=hint.remote_variant_id)
            else:
                if self._hint_matches(candidate, barcode, allow_blank):
                    variant = candidate
                    product_name = candidate.title

        if variant is None and hint.remote_product_id:
            try:
                product = await self.api.get_product(hint.remote_product_id)
            except ShopifyRecordNotFoundError:
                logger.info("import_hint_product_missing", barcode=barcode, product_id=hint.remote_product_id)
            else:
                variant = _pick_variant(product, barcode, allow_blank)
                if variant is None:
                    logger.warning(
                        "import_hint_barcode_mismatch",
                        barcode=barcode,
                        product_id=product.id,
                        remote_barcodes=[v.barcode for v in product.variants]
                    )
                product_name = product.title

        if variant is None or not variant.product_id:
            logger.info(
                "import_hint_rejected",
                barcode=barcode,
                product_id=hint.remote_product_id,
                variant_id=hint.remote_variant_id
            )
            return None

        mapping = ProductMapping(
            barcode=barcode,
            remote_product_id=variant.product_id,
            remote_variant_id=variant.id,
            remote_inventory_item_id=variant.inventory_item_id,
            discovery_method=DiscoveryMethod.IMPORT_HINT,
            search_time_ms=self._elapsed_ms(start),
            product_name=product_name,
            hint_product_id=hint.remote_product_id,
            hint_variant_id=hint.remote_variant_id,
        )
        return await self._persist(mapping)

    def _hint_matches(self, variant: RemoteVariant, barcode: str, allow_blank: bool) -> bool:
        if variant.barcode == barcode:
            return True
        if variant.barcode is None:
            return allow_blank
        logger.warning(
            "import_hint_barcode_mismatch",
            barcode=barcode,
            remote_barcode=variant.barcode,
            variant_id=variant.id
        )
        return False

    # ===================
    # TIER 4: BATCH SEARCH
    # ===================

    def batches(self, barcodes: Iterable[str]) -> list[list[str]]:
        """Split barcodes into search batches under the query limits."""
        return chunk_barcode_query(barcodes, self.batch_size, self.max_query_length)

    async def search_batch(self, barcodes: list[str]) -> dict[str, ProductMapping]:
        """
        One disjunctive search request for a batch of barcodes.

        Only exact barcode matches are accepted; "00123" will not match a
        search for "123" here even though exhaustive search would.

        Returns:
            barcode -> persisted mapping for every barcode found
        """
        if not barcodes:
            return {}

        start = self._clock()
        wanted = set(barcodes)
        variants = await self.api.search_variants_by_barcodes(barcodes)
        elapsed = self._elapsed_ms(start)

        found: dict[str, ProductMapping] = {}
        for variant in variants:
            if variant.barcode not in wanted or not variant.product_id:
                continue
            if variant.barcode in found:
                logger.warning(
                    "duplicate_remote_barcode",
                    barcode=variant.barcode,
                    kept_variant=found[variant.barcode].remote_variant_id,
                    ignored_variant=variant.id
                )
                continue
            mapping = ProductMapping(
                barcode=variant.barcode,
                remote_product_id=variant.product_id,
                remote_variant_id=variant.id,
                remote_inventory_item_id=variant.inventory_item_id,
                discovery_method=DiscoveryMethod.BATCH_SEARCH,
                search_time_ms=elapsed,
                product_name=variant.title,
            )
            found[variant.barcode] = await self._persist(mapping)

        logger.info("batch_search_complete", requested=len(barcodes), found=len(found), search_time_ms=elapsed)
        return found

    # ===================
    # TIER 5: EXHAUSTIVE SEARCH
    # ===================

    async def exhaustive_search(self, barcode: str) -> Optional[ProductMapping]:
        """
        Page through the catalog comparing barcodes with match_barcode().

        Bounded by max_records products scanned.
        """
        start = self._clock()
        since_id: Optional[str] = None
        scanned = 0

        while scanned < self.max_records:
            limit = min(self.page_size, self.max_records - scanned)
            products = await self.api.list_products_page(since_id, limit)
            if not products:
                break

            for position, product in enumerate(products, start=1):
                for variant in product.variants:
                    strategy = match_barcode(variant.barcode, barcode)
                    if strategy is None:
                        continue
                    logger.info(
                        "exhaustive_search_match",
                        barcode=barcode,
                        remote_barcode=variant.barcode,
                        strategy=strategy.value,
                        scanned=scanned + position
                    )
                    mapping = ProductMapping(
                        barcode=barcode,
                        remote_product_id=variant.product_id or product.id,
                        remote_variant_id=variant.id,
                        remote_inventory_item_id=variant.inventory_item_id,
                        discovery_method=DiscoveryMethod.EXHAUSTIVE_SEARCH,
                        search_time_ms=self._elapsed_ms(start),
                        product_name=product.title,
                    )
                    return await self._persist(mapping)

            scanned += len(products)
            since_id = products[-1].id
            if len(products) < limit:
                break

        logger.info("exhaustive_search_exhausted", barcode=barcode, scanned=scanned)
        return None

    # ===================
    # MAINTENANCE
    # ===================

    async def complete_mapping(self, mapping: ProductMapping) -> ProductMapping:
        """
        Fill in a missing inventory item id by fetching the variant (or the
        product, when only the product id is known). Re-persists the mapping
        with its original provenance.

        Raises:
            ShopifyRecordNotFoundError: If the mapped record is gone
        """
        if mapping.remote_inventory_item_id:
            return mapping

        variant: Optional[RemoteVariant] = None
        if mapping.remote_variant_id:
            variant = await self.api.get_variant(mapping.remote_variant_id)
        else:
            product = await self.api.get_product(mapping.remote_product_id)
            variant = _pick_variant(product, mapping.barcode, allow_blank=True)
            if variant is None:
                logger.warning(
                    "mapping_completion_ambiguous",
                    barcode=mapping.barcode,
                    product_id=product.id,
                    variants=len(product.variants)
                )

        if variant is None or not variant.inventory_item_id:
            return mapping

        completed = mapping.model_copy(update={
            "remote_variant_id": variant.id,
            "remote_inventory_item_id": variant.inventory_item_id,
        })
        logger.info("mapping_completed", barcode=mapping.barcode, variant_id=variant.id)
        return await self._persist(completed)

    async def invalidate(self, barcode: str) -> bool:
        """
        Drop a mapping from cache and store so the next lookup rediscovers it.

        Returns:
            True if a persisted mapping was removed
        """
        self.cache.invalidate(barcode)
        try:
            await asyncio.to_thread(self.store.invalidate, barcode)
        except MappingNotFoundError:
            return False
        return True

    # ===================
    # HELPERS
    # ===================

    def remember(self, mapping: ProductMapping) -> None:
        if self.enabled(DiscoveryMethod.CACHE):
            self.cache.put(mapping)

    async def _persist(self, mapping: ProductMapping) -> ProductMapping:
        """Write a verified mapping to the store, then the cache."""
        try:
            mapping = await asyncio.to_thread(self.store.put, mapping)
        except DatabaseError as e:
            # Still verified; serve it from cache this run and rediscover later
            logger.error("mapping_persist_failed", barcode=mapping.barcode, error=e.message)
        self.remember(mapping)
        return mapping


# Singleton instance for convenience
_resolver: Optional[ProductResolver] = None


def get_resolver() -> ProductResolver:
    """Get or create ProductResolver wired to the shared client and cache."""
    global _resolver
    if _resolver is None:
        _resolver = ProductResolver(
            api=get_shopify_api(),
            store=get_mapping_store(),
            cache=get_mapping_cache(),
        )
    return _resolver
