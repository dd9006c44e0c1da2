"""
Location resolver: map a store name to a Shopify location.
"""

from typing import Optional
import structlog

from integrations.shopify import ShopifyCatalogAPI, get_shopify_api
from models.remote import RemoteLocation

logger = structlog.get_logger(__name__)


def _location_key(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


class LocationResolver:
    """
    Fetch-and-filter over the shop's locations.

    Shops have a handful of locations, so there is no pagination and no
    caching; each sync run looks its location up once.
    """

    def __init__(self, api: ShopifyCatalogAPI):
        self.api = api

    async def list_locations(self) -> list[RemoteLocation]:
        locations = await self.api.list_locations()
        logger.debug("locations_listed", count=len(locations))
        return locations

    async def find_location_by_name(self, name: str) -> Optional[RemoteLocation]:
        """
        Case-insensitive exact match on the location name.

        When several locations share the name, an active one wins.

        Returns:
            RemoteLocation or None if no location matches
        """
        key = _location_key(name)
        if not key:
            return None

        matches = [loc for loc in await self.list_locations() if _location_key(loc.name) == key]

        if not matches:
            logger.warning("location_not_found", store_name=name)
            return None

        if len(matches) > 1:
            logger.warning(
                "duplicate_location_name",
                store_name=name,
                location_ids=[loc.id for loc in matches]
            )
            matches.sort(key=lambda loc: not loc.active)

        location = matches[0]
        logger.info("location_resolved", store_name=name, location_id=location.id)
        return location


# Singleton instance for convenience
_location_resolver: Optional[LocationResolver] = None


def get_location_resolver() -> LocationResolver:
    """Get or create LocationResolver."""
    global _location_resolver
    if _location_resolver is None:
        _location_resolver = LocationResolver(get_shopify_api())
    return _location_resolver
