"""
Barcode -> Shopify identifier mappings and discovery results.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Optional
from enum import Enum
from datetime import datetime, timezone

from models.base import BaseSchema, coerce_remote_id


class DiscoveryMethod(str, Enum):
    """Discovery tiers, in the order the resolver tries them."""
    CACHE = "cache"
    PERSISTED = "persisted"
    IMPORT_HINT = "import_hint"
    BATCH_SEARCH = "batch_search"
    EXHAUSTIVE_SEARCH = "exhaustive_search"


# Tiers that find a mapping the store did not already have
DISCOVERY_TIERS = (
    DiscoveryMethod.IMPORT_HINT,
    DiscoveryMethod.BATCH_SEARCH,
    DiscoveryMethod.EXHAUSTIVE_SEARCH,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ImportHint(BaseSchema):
    """
    Remote ids supplied next to a barcode by an external export file.

    Only trusted after the hinted record is fetched and its barcode checked.
    """

    barcode: str = Field(..., min_length=1)
    remote_product_id: Optional[str] = None
    remote_variant_id: Optional[str] = None
    allow_blank_barcode: bool = Field(
        False,
        description="Accept a hinted variant whose remote barcode is empty"
    )

    @field_validator("remote_product_id", "remote_variant_id", mode="before")
    @classmethod
    def ids_as_str(cls, v):
        return coerce_remote_id(v)

    @property
    def has_target(self) -> bool:
        return bool(self.remote_product_id or self.remote_variant_id)


class ProductMapping(BaseSchema):
    """
    Verified association between a local barcode and Shopify records.

    Written only after verification against the remote catalog.
    """

    barcode: str = Field(..., min_length=1)
    remote_product_id: str
    remote_variant_id: Optional[str] = None
    remote_inventory_item_id: Optional[str] = None
    discovery_method: DiscoveryMethod
    discovered_at: datetime = Field(default_factory=utc_now)
    search_time_ms: Optional[int] = None
    product_name: Optional[str] = None
    hint_product_id: Optional[str] = None
    hint_variant_id: Optional[str] = None
    last_verified_at: Optional[datetime] = None

    @field_validator(
        "remote_product_id",
        "remote_variant_id",
        "remote_inventory_item_id",
        "hint_product_id",
        "hint_variant_id",
        mode="before",
    )
    @classmethod
    def ids_as_str(cls, v):
        return coerce_remote_id(v)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProductMapping":
        """Build from a shopify_product_mappings row."""
        return cls(
            barcode=row["barcode"],
            remote_product_id=row["shopify_product_id"],
            remote_variant_id=row.get("shopify_variant_id"),
            remote_inventory_item_id=row.get("shopify_inventory_item_id"),
            discovery_method=row["discovery_method"],
            discovered_at=row.get("created_at") or utc_now(),
            search_time_ms=row.get("search_time_ms"),
            product_name=row.get("product_name"),
            hint_product_id=row.get("hint_product_id"),
            hint_variant_id=row.get("hint_variant_id"),
            last_verified_at=row.get("last_verified_at"),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize for an upsert into shopify_product_mappings."""
        return {
            "barcode": self.barcode,
            "shopify_product_id": self.remote_product_id,
            "shopify_variant_id": self.remote_variant_id,
            "shopify_inventory_item_id": self.remote_inventory_item_id,
            "discovery_method": self.discovery_method.value,
            "created_at": self.discovered_at.isoformat(),
            "search_time_ms": self.search_time_ms,
            "product_name": self.product_name,
            "hint_product_id": self.hint_product_id,
            "hint_variant_id": self.hint_variant_id,
            "last_verified_at": (self.last_verified_at or utc_now()).isoformat(),
        }


class ResolutionResult(BaseModel):
    """
    Outcome of resolving one barcode. `method` is the tier that answered.

    `error` is set when nothing matched because a remote tier failed, as
    opposed to the barcode simply not existing remotely.
    """

    barcode: str
    mapping: Optional[ProductMapping] = None
    method: Optional[DiscoveryMethod] = None
    search_time_ms: int = 0
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.mapping is not None

    @classmethod
    def not_found(cls, barcode: str, search_time_ms: int = 0) -> "ResolutionResult":
        return cls(barcode=barcode, search_time_ms=search_time_ms)


class BulkResolution(BaseModel):
    """Results for a whole snapshot plus per-tier counts."""

    results: dict[str, ResolutionResult] = Field(default_factory=dict)
    tier_counts: dict[str, int] = Field(default_factory=dict)
    not_found: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def new_mappings(self) -> int:
        return sum(self.tier_counts.get(tier.value, 0) for tier in DISCOVERY_TIERS)

    def get(self, barcode: str) -> Optional[ResolutionResult]:
        return self.results.get(barcode)


class MappingStats(BaseModel):
    """Persisted mapping counts by provenance."""
    total: int = 0
    by_method: dict[str, int] = Field(default_factory=dict)


class CacheStats(BaseModel):
    """In-memory mapping cache counters."""
    size: int = 0
    hits: int = 0
    misses: int = 0
    ttl_seconds: float = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return round(self.hits / lookups, 4) if lookups else 0.0
