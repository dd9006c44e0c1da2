"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, coerce_remote_id
from models.inventory import LocalInventoryItem
from models.remote import RemoteLocation, RemoteVariant, RemoteProduct
from models.mapping import (
    DiscoveryMethod,
    DISCOVERY_TIERS,
    ImportHint,
    ProductMapping,
    ResolutionResult,
    BulkResolution,
    MappingStats,
    CacheStats,
)
from models.sync import (
    SyncStatus,
    SyncState,
    SyncOutcome,
    SyncSummary,
    SyncRequest,
)

__all__ = [
    # Base
    "BaseSchema",
    "coerce_remote_id",

    # Inventory
    "LocalInventoryItem",

    # Remote catalog
    "RemoteLocation",
    "RemoteVariant",
    "RemoteProduct",

    # Mappings
    "DiscoveryMethod",
    "DISCOVERY_TIERS",
    "ImportHint",
    "ProductMapping",
    "ResolutionResult",
    "BulkResolution",
    "MappingStats",
    "CacheStats",

    # Sync
    "SyncStatus",
    "SyncState",
    "SyncOutcome",
    "SyncSummary",
    "SyncRequest",
]
