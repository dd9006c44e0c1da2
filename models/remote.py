"""
Shapes of the Shopify records the engine reads.

Only the fields the engine needs; the remote catalog's own data model is
not mirrored here.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from models.base import coerce_remote_id


class RemoteLocation(BaseModel):
    """A Shopify stock location."""
    id: str
    name: str
    active: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def id_as_str(cls, v):
        return coerce_remote_id(v)


class RemoteVariant(BaseModel):
    """A sellable variant and the inventory item that carries its stock."""
    id: str
    product_id: Optional[str] = None
    barcode: Optional[str] = None
    inventory_item_id: Optional[str] = None
    title: Optional[str] = None

    @field_validator("id", "product_id", "inventory_item_id", mode="before")
    @classmethod
    def ids_as_str(cls, v):
        return coerce_remote_id(v)

    @field_validator("barcode", mode="before")
    @classmethod
    def strip_barcode(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class RemoteProduct(BaseModel):
    """A product with its variants."""
    id: str
    title: Optional[str] = None
    variants: list[RemoteVariant] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def id_as_str(cls, v):
        return coerce_remote_id(v)
