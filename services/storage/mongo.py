"""MongoDB persistence for invoices, inventory and users.

Production-grade implementation with:
- Async access through Motor
- Unique indexes for invoice numbers and per-user SKUs
- Atomic conditional stock decrement (no read-then-write race)
- Compare-and-set invoice status transitions
- Decimal <-> Decimal128 and date <-> datetime conversion at the boundary

Based on Motor documentation:
https://motor.readthedocs.io/en/stable/
"""

import datetime as dt
import logging
from decimal import Decimal
from enum import Enum
from typing import Any

from bson import Decimal128, ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from services.inventory.models import InventoryItem, ShortageSnapshot
from services.shared.config import Settings
from services.shared.errors import DuplicateInventoryItem, DuplicateInvoice
from services.workflow.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)


def to_bson(value: Any) -> Any:
    """Convert Python values into BSON-storable equivalents."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day, tzinfo=dt.UTC)
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_bson(v) for v in value]
    return value


def from_bson(value: Any) -> Any:
    """Convert BSON values back into Python values the models accept."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_bson(v) for v in value]
    return value


def _document_to_model(document: dict[str, Any]) -> dict[str, Any]:
    data = from_bson(document)
    data["id"] = data.pop("_id", None)
    return data


def _object_id(value: str) -> ObjectId | None:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class MongoInvoiceRepository:
    """Invoice collection access."""

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def insert(self, invoice: Invoice) -> Invoice:
        document = to_bson(invoice.model_dump(by_alias=True, exclude={"id"}))
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as e:
            raise DuplicateInvoice(invoice.invoice_number) from e

        logger.info(
            f"Saved invoice {invoice.invoice_number} as {result.inserted_id} "
            f"({invoice.invoice_status.value})"
        )
        return invoice.model_copy(update={"id": str(result.inserted_id)})

    async def get(self, invoice_id: str, user_id: str | None = None) -> Invoice | None:
        oid = _object_id(invoice_id)
        if oid is None:
            return None
        query: dict[str, Any] = {"_id": oid}
        if user_id is not None:
            query["userId"] = user_id
        document = await self.collection.find_one(query)
        return Invoice.model_validate(_document_to_model(document)) if document else None

    async def find_by_number(self, invoice_number: str) -> Invoice | None:
        document = await self.collection.find_one({"invoice_number": invoice_number})
        return Invoice.model_validate(_document_to_model(document)) if document else None

    async def list_by_status(
        self,
        user_id: str,
        status: InvoiceStatus | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Invoice]:
        query: dict[str, Any] = {"userId": user_id}
        if status is not None:
            query["invoice_status"] = status.value
        cursor = (
            self.collection.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        )
        documents = await cursor.to_list(length=limit)
        return [Invoice.model_validate(_document_to_model(d)) for d in documents]

    async def transition_status(
        self,
        invoice_id: str,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        stock_consumed: bool | None = None,
    ) -> bool:
        oid = _object_id(invoice_id)
        if oid is None:
            return False
        now = dt.datetime.now(dt.UTC)
        changes: dict[str, Any] = {"invoice_status": to_status.value, "updated_at": now}
        if stock_consumed is not None:
            changes["stock_consumed_at"] = now if stock_consumed else None
        result = await self.collection.update_one(
            {"_id": oid, "invoice_status": from_status.value}, {"$set": changes}
        )
        return result.modified_count == 1

    async def count_by_status(self, user_id: str, since: dt.datetime) -> dict[str, int]:
        pipeline = [
            {"$match": {"userId": user_id, "created_at": {"$gte": since}}},
            {"$group": {"_id": "$invoice_status", "count": {"$sum": 1}}},
        ]
        cursor = self.collection.aggregate(pipeline)
        return {row["_id"]: row["count"] async for row in cursor}


class MongoInventoryRepository:
    """Inventory collection access."""

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def find_by_skus(self, user_id: str, skus: list[str]) -> dict[str, InventoryItem]:
        cursor = self.collection.find({"userId": user_id, "sku": {"$in": skus}})
        items: dict[str, InventoryItem] = {}
        async for document in cursor:
            item = InventoryItem.model_validate(_document_to_model(document))
            items[item.sku] = item
        return items

    async def decrement_if_available(self, user_id: str, sku: str, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"userId": user_id, "sku": sku, "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity}, "$set": {"LastUpdated": dt.datetime.now(dt.UTC)}},
        )
        return result.modified_count == 1

    async def increment(self, user_id: str, sku: str, quantity: int) -> None:
        await self.collection.update_one(
            {"userId": user_id, "sku": sku},
            {"$inc": {"quantity": quantity}, "$set": {"LastUpdated": dt.datetime.now(dt.UTC)}},
        )

    async def record_shortage(self, user_id: str, sku: str, snapshot: ShortageSnapshot) -> None:
        await self.collection.update_one(
            {"userId": user_id, "sku": sku},
            {"$set": {"shortages": to_bson(snapshot.model_dump())}},
        )

    async def list_shortages(self, user_id: str) -> list[InventoryItem]:
        cursor = self.collection.find({"userId": user_id, "shortages.gap": {"$gt": 0}})
        return [InventoryItem.model_validate(_document_to_model(d)) async for d in cursor]

    async def insert(self, item: InventoryItem) -> InventoryItem:
        document = to_bson(item.model_dump(by_alias=True, exclude={"id"}))
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as e:
            raise DuplicateInventoryItem(item.sku) from e
        return item.model_copy(update={"id": str(result.inserted_id)})

    async def get(self, item_id: str, user_id: str) -> InventoryItem | None:
        oid = _object_id(item_id)
        if oid is None:
            return None
        document = await self.collection.find_one({"_id": oid, "userId": user_id})
        return InventoryItem.model_validate(_document_to_model(document)) if document else None

    async def list_items(self, user_id: str) -> list[InventoryItem]:
        cursor = self.collection.find({"userId": user_id}).sort("sku", ASCENDING)
        return [InventoryItem.model_validate(_document_to_model(d)) async for d in cursor]

    async def update(
        self, item_id: str, user_id: str, fields: dict[str, Any]
    ) -> InventoryItem | None:
        oid = _object_id(item_id)
        if oid is None:
            return None
        changes = {**to_bson(fields), "LastUpdated": dt.datetime.now(dt.UTC)}
        document = await self.collection.find_one_and_update(
            {"_id": oid, "userId": user_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return InventoryItem.model_validate(_document_to_model(document)) if document else None

    async def delete(self, item_id: str, user_id: str) -> bool:
        oid = _object_id(item_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid, "userId": user_id})
        return result.deleted_count == 1


class MongoUserDirectory:
    """Lookup of account holders in the users collection."""

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def get_email(self, user_id: str) -> str | None:
        oid = _object_id(user_id)
        query: dict[str, Any] = {"_id": oid} if oid is not None else {"_id": user_id}
        document = await self.collection.find_one(query, {"email": 1})
        return document.get("email") if document else None


class MongoDatabase:
    """MongoDB connection holder exposing the three repositories."""

    def __init__(self, settings: Settings, client: AsyncIOMotorClient | None = None) -> None:
        """Initialize database access.

        Args:
            settings: Application settings with MongoDB configuration
            client: Optional preconfigured Motor client
        """
        self.settings = settings
        self._client = client or AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
        self.db: AsyncIOMotorDatabase = self._client[settings.mongo_database]
        self.invoices = MongoInvoiceRepository(self.db["invoices"])
        self.inventory = MongoInventoryRepository(self.db["inventory"])
        self.users = MongoUserDirectory(self.db["users"])

    async def create_indexes(self) -> None:
        """Create the indexes the workflow relies on for uniqueness."""
        await self.db["invoices"].create_index("invoice_number", unique=True)
        await self.db["invoices"].create_index(
            [("userId", ASCENDING), ("invoice_status", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.db["inventory"].create_index(
            [("userId", ASCENDING), ("sku", ASCENDING)], unique=True
        )
        logger.info(f"MongoDB indexes ensured on database {self.settings.mongo_database}")

    async def health_check(self) -> bool:
        """Check if MongoDB responds to ping.

        Returns:
            True if the server is reachable
        """
        try:
            await self.db.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB health check failed: {e}")
            return False

    def close(self) -> None:
        self._client.close()
