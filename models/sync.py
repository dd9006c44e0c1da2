"""
Sync run results.

SyncOutcome is per item and ephemeral; SyncSummary is handed back to the
caller, which owns persisting it for audit.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema
from models.inventory import LocalInventoryItem
from models.mapping import ImportHint


class SyncStatus(str, Enum):
    """Per-item result."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class SyncState(str, Enum):
    """Orchestrator states."""
    INIT = "INIT"
    LOCATING = "LOCATING"
    RESOLVING = "RESOLVING"
    UPDATING = "UPDATING"
    DONE = "DONE"
    FAILED = "FAILED"


class SyncOutcome(BaseModel):
    """What happened to one inventory item."""
    barcode: Optional[str] = None
    status: SyncStatus
    message: str = ""
    product_id: Optional[str] = None
    remote_variant_id: Optional[str] = None
    remote_inventory_item_id: Optional[str] = None
    quantity_before: Optional[int] = None
    quantity_after: Optional[int] = None
    discovery_method: Optional[str] = None


class SyncSummary(BaseModel):
    """Aggregated result of one store sync run."""
    store_id: str
    store_name: Optional[str] = None
    location_id: Optional[str] = None
    state: SyncState = SyncState.INIT
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    cancelled: bool = False
    tier_counts: dict[str, int] = Field(default_factory=dict)
    new_mappings: int = 0
    avg_search_time_ms: Optional[int] = None
    outcomes: list[SyncOutcome] = Field(default_factory=list)

    def add(self, outcome: SyncOutcome) -> None:
        """Append an outcome and bump its counter."""
        self.outcomes.append(outcome)
        if outcome.status == SyncStatus.SUCCESS:
            self.successful += 1
        elif outcome.status == SyncStatus.ERROR:
            self.failed += 1
        else:
            self.skipped += 1


class SyncRequest(BaseSchema):
    """API body for one store sync."""
    store_name: str = Field(..., min_length=1, description="Matched against Shopify location names")
    items: list[LocalInventoryItem] = Field(default_factory=list)
    hints: list[ImportHint] = Field(default_factory=list)
