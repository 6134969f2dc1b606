"""Inventory management operations.

CRUD for a user's stock records, shortage reporting and supplier purchase
orders. Stock consumption by invoice approval lives in the workflow service.
"""

import logging

from services.inventory.models import (
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    SupplierOrderRequest,
)
from services.notifications.dispatcher import NotificationDispatcher, NotificationReport
from services.shared.errors import InventoryItemNotFound
from services.storage.base import InventoryRepository, UserDirectory

logger = logging.getLogger(__name__)


class InventoryService:
    """User-scoped inventory operations."""

    def __init__(
        self,
        inventory: InventoryRepository,
        users: UserDirectory,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.inventory = inventory
        self.users = users
        self.dispatcher = dispatcher

    async def create_item(self, user_id: str, payload: InventoryItemCreate) -> InventoryItem:
        """Add a SKU to the user's inventory.

        Raises:
            DuplicateInventoryItem: If the user already stocks the SKU
        """
        item = InventoryItem(
            user_id=user_id,
            sku=payload.sku,
            name=payload.name,
            quantity=payload.quantity,
            unit_price=payload.unit_price,
            supplier_email=str(payload.supplier_email) if payload.supplier_email else None,
        )
        created = await self.inventory.insert(item)
        logger.info(f"Created inventory item {created.sku} for user {user_id}")
        return created

    async def list_items(self, user_id: str) -> list[InventoryItem]:
        return await self.inventory.list_items(user_id)

    async def get_item(self, item_id: str, user_id: str) -> InventoryItem:
        item = await self.inventory.get(item_id, user_id)
        if item is None:
            raise InventoryItemNotFound(item_id)
        return item

    async def update_item(
        self, item_id: str, user_id: str, payload: InventoryItemUpdate
    ) -> InventoryItem:
        """Apply a partial update; ``LastUpdated`` is stamped by the repository.

        Raises:
            InventoryItemNotFound: If the item does not exist for this user
        """
        fields = payload.model_dump(by_alias=True, exclude_unset=True)
        if "supplierEmail" in fields and fields["supplierEmail"] is not None:
            fields["supplierEmail"] = str(fields["supplierEmail"])
        if not fields:
            return await self.get_item(item_id, user_id)

        item = await self.inventory.update(item_id, user_id, fields)
        if item is None:
            raise InventoryItemNotFound(item_id)
        logger.info(f"Updated inventory item {item.sku} for user {user_id}: {sorted(fields)}")
        return item

    async def delete_item(self, item_id: str, user_id: str) -> None:
        """Remove an item from the user's inventory.

        Raises:
            InventoryItemNotFound: If the item does not exist for this user
        """
        if not await self.inventory.delete(item_id, user_id):
            raise InventoryItemNotFound(item_id)
        logger.info(f"Deleted inventory item {item_id} for user {user_id}")

    async def list_shortages(self, user_id: str) -> list[InventoryItem]:
        """Items whose last recorded shortage has a positive gap."""
        return await self.inventory.list_shortages(user_id)

    async def send_supplier_order(
        self, user_id: str, order: SupplierOrderRequest
    ) -> NotificationReport:
        """Email a purchase order to a supplier on behalf of the user.

        Raises:
            NotificationError: If the email could not be sent
        """
        requester_email = await self.users.get_email(user_id)
        return await self.dispatcher.send_supplier_order(
            order, requester_name=order.requester_name, requester_email=requester_email
        )
