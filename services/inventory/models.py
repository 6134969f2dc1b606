"""Inventory data models.

Field aliases match the stored MongoDB document layout (``userId``,
``unitPrice``, ``supplierEmail``, ``LastUpdated``).
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Impact(str, Enum):
    """Severity of a stock shortage."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


def classify_impact(gap: int) -> Impact:
    """Map a shortage gap (units missing) to an impact level.

    Gaps above 10 units are High, above 5 Medium, anything else Low.
    """
    if gap > 10:
        return Impact.HIGH
    if gap > 5:
        return Impact.MEDIUM
    return Impact.LOW


class ShortageSnapshot(BaseModel):
    """Reporting snapshot of the last shortage seen for an item.

    Not authoritative stock: ``InventoryItem.quantity`` is.
    """

    expected: int
    actual: int
    gap: int
    impact: Impact


class InventoryItem(BaseModel):
    """Stock record for one SKU owned by one user."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    user_id: str = Field(alias="userId")
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    unit_price: Decimal | None = Field(None, alias="unitPrice")
    supplier_email: str | None = Field(None, alias="supplierEmail")
    shortages: ShortageSnapshot | None = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="LastUpdated")


class InventoryItemCreate(BaseModel):
    """Payload for creating an inventory item."""

    model_config = ConfigDict(populate_by_name=True)

    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    unit_price: Decimal | None = Field(None, alias="unitPrice", ge=0)
    supplier_email: EmailStr | None = Field(None, alias="supplierEmail")


class InventoryItemUpdate(BaseModel):
    """Partial update for an inventory item (restocking, renaming, supplier change)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, min_length=1)
    quantity: int | None = Field(None, ge=0)
    unit_price: Decimal | None = Field(None, alias="unitPrice", ge=0)
    supplier_email: EmailStr | None = Field(None, alias="supplierEmail")


class SupplierOrderLine(BaseModel):
    """One row of a purchase order sent to a supplier."""

    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    specifications: str | None = None


class SupplierOrderRequest(BaseModel):
    """Purchase order request for restocking short items."""

    model_config = ConfigDict(populate_by_name=True)

    supplier_email: EmailStr = Field(alias="supplierEmail")
    skus: list[SupplierOrderLine] = Field(min_length=1)
    additional_notes: str | None = Field(None, alias="additionalNotes")
    requester_name: str | None = Field(None, alias="requesterName")
