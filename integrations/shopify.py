"""
Shopify Admin API integration.

ShopifyClient owns the HTTP connection pool, the shared rate limiter and
the retry loop. ShopifyCatalogAPI turns raw payloads into the engine's
remote models.
"""

import asyncio
import random
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from config.settings import Settings
from exceptions import (
    ShopifyNotConfiguredError,
    ShopifyRequestError,
    ShopifyRecordNotFoundError,
    ShopifyRetriesExhaustedError,
    ShopifySearchIncompleteError,
)
from integrations.rate_limit import (
    FailureKind,
    RetryPolicy,
    SlidingWindowRateLimiter,
    TransientShopifyError,
    wait_for_policy,
)
from integrations import shopify_queries as q
from models.remote import RemoteLocation, RemoteProduct, RemoteVariant
from utils.barcode_utils import build_barcode_query

logger = structlog.get_logger(__name__)


def parse_gid(value: Any) -> Optional[str]:
    """gid://shopify/ProductVariant/123 → "123"; plain ids pass through."""
    if value is None:
        return None
    text = str(value)
    return text.rsplit("/", 1)[-1] if text.startswith("gid://") else text


def rest_id(value: str) -> Any:
    """REST payloads expect numeric ids where the id is numeric."""
    return int(value) if str(value).isdigit() else value


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors is None:
        return response.reason_phrase
    return str(errors)[:500]


def _graphql_throttled(payload: dict) -> bool:
    for error in payload.get("errors") or []:
        if isinstance(error, dict) and (error.get("extensions") or {}).get("code") == "THROTTLED":
            return True
    return False


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ShopifyClient:
    """
    Rate-limited, retrying Shopify HTTP client.

    Every attempt first takes a slot from the shared limiter. Failures are
    classified:
        - 429 / GraphQL THROTTLED: slot released, exponential backoff, retry
        - timeouts, connection errors, 5xx, non-JSON 2xx bodies: fixed
          backoff, retry
        - 404: ShopifyRecordNotFoundError, no retry
        - other 4xx (400, 422, ...): ShopifyRequestError, no retry
    The loop runs on tenacity; retries stop after policy.max_retries with
    ShopifyRetriesExhaustedError.

    Usage:
        client = ShopifyClient.from_settings(settings)
        locations = await client.get("/locations.json")
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        limiter: SlidingWindowRateLimiter,
        policy: RetryPolicy,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.limiter = limiter
        self.policy = policy
        self._sleep = sleep
        self._rng = rng
        self.attempts = 0
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> "ShopifyClient":
        """
        Build a client from settings.

        Raises:
            ShopifyNotConfiguredError: If domain or token is missing
        """
        if not settings.shopify_configured:
            raise ShopifyNotConfiguredError()
        return cls(
            base_url=settings.shopify_base_url,
            access_token=settings.shopify_access_token,
            limiter=limiter or SlidingWindowRateLimiter.from_settings(settings),
            policy=RetryPolicy.from_settings(settings),
            timeout=settings.request_timeout_seconds,
        )

    # ===================
    # REQUESTS
    # ===================

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        """
        Issue one logical call, retrying per the policy.

        Returns:
            Decoded JSON body ({} for empty bodies)

        Raises:
            ShopifyRecordNotFoundError: 404
            ShopifyRequestError: Terminal 4xx or GraphQL error
            ShopifyRetriesExhaustedError: Throttling/network budget spent
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_for_policy(self.policy, self._rng),
            retry=retry_if_exception_type(TransientShopifyError),
            before_sleep=partial(self._log_retry, method, path),
            sleep=self._sleep,
        )
        try:
            return await retrying(self._attempt, method, path, params, json)
        except RetryError as e:
            failure = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error(
                "shopify_retries_exhausted",
                method=method,
                path=path,
                kind=failure.kind.value,
                attempts=attempts,
                error=failure.error
            )
            raise ShopifyRetriesExhaustedError(failure.kind.value, attempts, failure.error)

    async def _attempt(
        self,
        method: str,
        path: str,
        params: Optional[dict],
        json: Optional[dict],
    ) -> dict:
        """
        One rate-limited attempt.

        Raises TransientShopifyError for anything worth repeating; terminal
        failures raise the AppError the caller will see.
        """
        slot = await self.limiter.acquire()
        self.attempts += 1

        try:
            response = await self._http.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            # Timeouts, connection resets, protocol and content-decoding errors
            raise TransientShopifyError(FailureKind.NETWORK, f"{type(e).__name__}: {e}")

        status = response.status_code

        if status == 429:
            self.limiter.release(slot)
            raise TransientShopifyError(FailureKind.THROTTLED, "HTTP 429", _retry_after(response))
        if status == 404:
            logger.info("shopify_record_not_found", method=method, path=path)
            raise ShopifyRecordNotFoundError(path)
        if 400 <= status < 500:
            # Malformed/invalid request: a caller bug, retrying cannot help
            message = _error_message(response)
            logger.error(
                "shopify_request_rejected",
                method=method,
                path=path,
                status=status,
                error=message
            )
            raise ShopifyRequestError(status, message, details={"path": path})
        if status >= 500:
            raise TransientShopifyError(FailureKind.NETWORK, f"HTTP {status}")

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            # Proxies and maintenance pages answer 2xx with HTML
            raise TransientShopifyError(
                FailureKind.NETWORK,
                f"HTTP {status} with unreadable body: {response.text[:100]}"
            )
        if not isinstance(payload, dict):
            raise ShopifyRequestError(status, "Unexpected response shape", details={"path": path})

        if _graphql_throttled(payload):
            self.limiter.release(slot)
            raise TransientShopifyError(FailureKind.THROTTLED, "GraphQL THROTTLED")

        logger.debug("shopify_request_ok", method=method, path=path)
        return payload

    def _log_retry(self, method: str, path: str, retry_state: RetryCallState) -> None:
        failure = retry_state.outcome.exception()
        logger.warning(
            "shopify_request_retry",
            method=method,
            path=path,
            kind=failure.kind.value,
            attempt=retry_state.attempt_number,
            max_retries=self.policy.max_retries,
            delay_seconds=round(retry_state.next_action.sleep, 3),
            error=failure.error
        )

    async def get(self, path: str, params: Optional[dict] = None) -> dict:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: dict) -> dict:
        return await self.request("POST", path, json=json)

    async def graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        """
        Run a GraphQL query and return its `data`.

        Raises:
            ShopifyRequestError: If the response carries non-throttle errors
        """
        payload = await self.post(q.GRAPHQL_PATH, {"query": query, "variables": variables or {}})
        if payload.get("errors"):
            raise ShopifyRequestError(200, str(payload["errors"])[:500], details={"path": q.GRAPHQL_PATH})
        return payload.get("data") or {}

    async def aclose(self) -> None:
        await self._http.aclose()


class ShopifyCatalogAPI:
    """
    Typed Shopify operations used by the resolver and the sync orchestrator.
    """

    def __init__(self, client: ShopifyClient):
        self.client = client

    # ===================
    # LOCATIONS
    # ===================

    async def list_locations(self) -> list[RemoteLocation]:
        payload = await self.client.get(q.LOCATIONS_PATH)
        return [RemoteLocation(**loc) for loc in payload.get("locations") or []]

    # ===================
    # CATALOG
    # ===================

    async def get_product(self, product_id: str) -> RemoteProduct:
        path = q.PRODUCT_PATH.format(product_id=product_id)
        payload = await self.client.get(path)
        if not payload.get("product"):
            raise ShopifyRecordNotFoundError(path)
        return _product_from_rest(payload["product"])

    async def get_variant(self, variant_id: str) -> RemoteVariant:
        path = q.VARIANT_PATH.format(variant_id=variant_id)
        payload = await self.client.get(path)
        if not payload.get("variant"):
            raise ShopifyRecordNotFoundError(path)
        return RemoteVariant(**payload["variant"])

    async def search_variants_by_barcodes(self, barcodes: list[str]) -> list[RemoteVariant]:
        """
        One disjunctive search for several barcodes, following result pages.

        Returns every variant the search matched; callers must still check
        barcodes for exact equality.

        Raises:
            ShopifySearchIncompleteError: More than SEARCH_MAX_PAGES pages
        """
        if not barcodes:
            return []

        variables: dict[str, Any] = {
            "query": build_barcode_query(barcodes),
            "first": q.SEARCH_PAGE_SIZE,
        }
        variants = []

        for page in range(1, q.SEARCH_MAX_PAGES + 1):
            data = await self.client.graphql(q.VARIANTS_BY_BARCODE, variables)
            connection = data.get("productVariants") or {}
            for edge in connection.get("edges") or []:
                variants.append(_variant_from_node(edge.get("node") or {}))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return variants
            if not page_info.get("endCursor"):
                break
            logger.debug("batch_search_next_page", barcodes=len(barcodes), page=page + 1)
            variables = {**variables, "after": page_info["endCursor"]}

        logger.warning(
            "batch_search_incomplete",
            barcodes=len(barcodes),
            pages=page,
            variants=len(variants)
        )
        raise ShopifySearchIncompleteError(len(barcodes), page)

    async def list_products_page(self, since_id: Optional[str], limit: int) -> list[RemoteProduct]:
        """One page of products ordered by id, starting after since_id."""
        params: dict[str, Any] = {"fields": q.PRODUCT_LIST_FIELDS, "limit": limit}
        if since_id:
            params["since_id"] = since_id
        payload = await self.client.get(q.PRODUCTS_PATH, params=params)
        return [_product_from_rest(p) for p in payload.get("products") or []]

    # ===================
    # INVENTORY
    # ===================

    async def get_available(self, inventory_item_id: str, location_id: str) -> Optional[int]:
        """Current available quantity at a location, None if not stocked there."""
        payload = await self.client.get(
            q.INVENTORY_LEVELS_PATH,
            params={"inventory_item_ids": inventory_item_id, "location_ids": location_id},
        )
        for level in payload.get("inventory_levels") or []:
            if str(level.get("location_id")) == str(location_id):
                available = level.get("available")
                return int(available) if available is not None else None
        return None

    async def set_available(self, inventory_item_id: str, location_id: str, quantity: int) -> int:
        """
        Absolute set of the available quantity (not a delta), so replays
        leave the remote in the same state.

        Returns:
            Quantity Shopify reports after the write
        """
        payload = await self.client.post(
            q.INVENTORY_SET_PATH,
            {
                "location_id": rest_id(location_id),
                "inventory_item_id": rest_id(inventory_item_id),
                "available": quantity,
            },
        )
        level = payload.get("inventory_level") or {}
        available = level.get("available")
        return int(available) if available is not None else quantity


def _variant_from_node(node: dict) -> RemoteVariant:
    product = node.get("product") or {}
    return RemoteVariant(
        id=parse_gid(node.get("id")),
        product_id=parse_gid(product.get("id")),
        barcode=node.get("barcode"),
        inventory_item_id=parse_gid((node.get("inventoryItem") or {}).get("id")),
        title=product.get("title") or node.get("title"),
    )


def _product_from_rest(raw: dict) -> RemoteProduct:
    product_id = raw.get("id")
    variants = [
        RemoteVariant(**{**v, "product_id": v.get("product_id") or product_id, "title": raw.get("title")})
        for v in raw.get("variants") or []
    ]
    return RemoteProduct(id=product_id, title=raw.get("title"), variants=variants)


# Shared client: the limiter window is process-wide, so every sync run and
# every lookup goes through this one instance.
_shopify_api: Optional[ShopifyCatalogAPI] = None


def get_shopify_api() -> ShopifyCatalogAPI:
    """
    Get or create the shared ShopifyCatalogAPI.

    Raises:
        ShopifyNotConfiguredError: If credentials are missing
    """
    global _shopify_api
    if _shopify_api is None:
        from config import settings
        _shopify_api = ShopifyCatalogAPI(ShopifyClient.from_settings(settings))
    return _shopify_api


async def close_shopify_api() -> None:
    """Close the shared HTTP pool (app shutdown / end of a script)."""
    global _shopify_api
    if _shopify_api is not None:
        await _shopify_api.client.aclose()
        _shopify_api = None
