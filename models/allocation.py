"""
Stored allocation records.

Row shapes for the tables the engine reads. The engine never writes
these back; they are parsed from Supabase rows and consumed read-only.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from models.base import BaseSchema


class AllocationStatus(str, Enum):
    """Lifecycle of a single allocation row."""
    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class LocationType(str, Enum):
    """Kinds of physical location."""
    RESTAURANT = "RESTAURANT"
    COMMISSARY = "COMMISSARY"
    WAREHOUSE = "WAREHOUSE"
    POP_UP = "POP_UP"


class PurchaseOrderRecord(BaseSchema):
    """Purchase order header."""

    id: str
    tenant_id: str
    po_number: Optional[str] = None
    status: Optional[str] = None


class POItemRecord(BaseSchema):
    """Line item of a purchase order. Tenant-scoped through its order."""

    id: str
    po_id: str
    product_id: str
    quantity_ordered: int = Field(..., ge=0)


class ProductRecord(BaseSchema):
    """Product referenced by PO items."""

    id: str
    tenant_id: str
    name: str


class LocationRecord(BaseSchema):
    """Allocation target."""

    id: str
    tenant_id: str
    name: str
    type: Optional[str] = None
    address: Optional[str] = None
    active: bool = True


class AllocationRecord(BaseSchema):
    """Quantity of one PO item assigned to one location."""

    id: str
    tenant_id: str
    po_item_id: str
    target_location_id: str
    quantity_allocated: int
    quantity_received: int = 0
    status: AllocationStatus = AllocationStatus.PENDING
    created_at: Optional[datetime] = None

    @field_validator("quantity_received", mode="before")
    @classmethod
    def received_defaults_to_zero(cls, v):
        """Column is nullable; no receipt count means nothing received yet."""
        return 0 if v is None else v
