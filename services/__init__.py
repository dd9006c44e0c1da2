"""
Business logic services.

Each service handles one stage of the sync: persistence, discovery,
location lookup, orchestration, statistics.
"""

from services.mapping_cache import MappingCache, get_mapping_cache
from services.mapping_store import MappingStore, get_mapping_store
from services.resolver_service import ProductResolver, get_resolver, parse_tiers
from services.bulk_resolver_service import BulkResolver, get_bulk_resolver
from services.location_service import LocationResolver, get_location_resolver
from services.sync_service import SyncService, get_sync_service
from services.sync_stats_service import SyncStatsService, get_sync_stats_service

__all__ = [
    "MappingCache",
    "get_mapping_cache",
    "MappingStore",
    "get_mapping_store",
    "ProductResolver",
    "get_resolver",
    "parse_tiers",
    "BulkResolver",
    "get_bulk_resolver",
    "LocationResolver",
    "get_location_resolver",
    "SyncService",
    "get_sync_service",
    "SyncStatsService",
    "get_sync_stats_service",
]
