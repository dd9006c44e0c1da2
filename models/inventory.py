"""
Local inventory input consumed by the sync engine.

Owned by the external inventory layer; read-only here.
"""

from pydantic import Field, field_validator
from typing import Optional

from models.base import BaseSchema


class LocalInventoryItem(BaseSchema):
    """One product's stock in one store."""

    store_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    barcode: Optional[str] = Field(
        None,
        description="Join key with the remote catalog; items without one are skipped"
    )
    quantity: int = Field(0, description="Total on-hand quantity")
    available_quantity: Optional[int] = Field(
        None,
        description="Sellable quantity; pushed to Shopify when present"
    )
    product_name: Optional[str] = None

    @field_validator("barcode", mode="before")
    @classmethod
    def blank_barcode_is_none(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @property
    def sync_quantity(self) -> int:
        """Quantity written to the remote location."""
        if self.available_quantity is not None:
            return self.available_quantity
        return self.quantity
