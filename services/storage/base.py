"""Repository interfaces for the document store.

The workflow depends only on these protocols; services.storage.mongo
provides the MongoDB implementation. Every read and write is scoped to the
owning user except the invoice-number lookup, which is global because
invoice numbers are globally unique.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from services.inventory.models import InventoryItem, ShortageSnapshot

if TYPE_CHECKING:
    from services.workflow.models import Invoice, InvoiceStatus


class InvoiceRepository(Protocol):
    """Persistence for invoices."""

    async def insert(self, invoice: "Invoice") -> "Invoice":
        """Persist a new invoice and return it with its id.

        Raises:
            DuplicateInvoice: If the invoice number already exists
        """
        ...

    async def get(self, invoice_id: str, user_id: str | None = None) -> "Invoice | None": ...

    async def find_by_number(self, invoice_number: str) -> "Invoice | None": ...

    async def list_by_status(
        self,
        user_id: str,
        status: "InvoiceStatus | None" = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list["Invoice"]: ...

    async def transition_status(
        self,
        invoice_id: str,
        from_status: "InvoiceStatus",
        to_status: "InvoiceStatus",
        stock_consumed: bool | None = None,
    ) -> bool:
        """Set the status only if it still equals from_status (compare-and-set).

        ``stock_consumed`` stamps (True) or clears (False) ``stock_consumed_at``
        in the same update; None leaves it untouched.

        Returns:
            True if the invoice was updated
        """
        ...

    async def count_by_status(self, user_id: str, since: datetime) -> dict[str, int]: ...


class InventoryRepository(Protocol):
    """Persistence for inventory items."""

    async def find_by_skus(self, user_id: str, skus: list[str]) -> dict[str, InventoryItem]: ...

    async def decrement_if_available(self, user_id: str, sku: str, quantity: int) -> bool:
        """Atomically subtract quantity if at least that much is on hand.

        Returns:
            True if stock was decremented, False if it would have gone negative
            or the SKU does not exist
        """
        ...

    async def increment(self, user_id: str, sku: str, quantity: int) -> None: ...

    async def record_shortage(
        self, user_id: str, sku: str, snapshot: ShortageSnapshot
    ) -> None: ...

    async def list_shortages(self, user_id: str) -> list[InventoryItem]: ...

    async def insert(self, item: InventoryItem) -> InventoryItem:
        """Persist a new item.

        Raises:
            DuplicateInventoryItem: If the user already stocks the SKU
        """
        ...

    async def get(self, item_id: str, user_id: str) -> InventoryItem | None: ...

    async def list_items(self, user_id: str) -> list[InventoryItem]: ...

    async def update(
        self, item_id: str, user_id: str, fields: dict[str, Any]
    ) -> InventoryItem | None: ...

    async def delete(self, item_id: str, user_id: str) -> bool:
        """Remove an item.

        Returns:
            True if the item existed and was removed
        """
        ...


class UserDirectory(Protocol):
    """Read-only lookup of account holders."""

    async def get_email(self, user_id: str) -> str | None: ...
