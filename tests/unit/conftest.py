"""Shared fixtures for unit tests.

In-memory implementations of the repository protocols and a recording mail
transport, so workflow tests run without MongoDB, SMTP or an LLM.
"""

import datetime as dt
import itertools
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.extraction.schema import ExtractedInvoice
from services.inventory.models import InventoryItem, ShortageSnapshot
from services.notifications.dispatcher import NotificationDispatcher
from services.notifications.mailer import EmailMessage, Mailer
from services.shared.config import Settings
from services.shared.errors import DuplicateInventoryItem, DuplicateInvoice, NotificationError
from services.workflow.models import Invoice, InvoiceStatus
from services.workflow.service import InvoiceWorkflow

USER_ID = "user-1"


class FakeInvoiceRepository:
    """Dict-backed invoice store."""

    def __init__(self) -> None:
        self.items: dict[str, Invoice] = {}
        self._ids = itertools.count(1)

    async def insert(self, invoice: Invoice) -> Invoice:
        if any(i.invoice_number == invoice.invoice_number for i in self.items.values()):
            raise DuplicateInvoice(invoice.invoice_number)
        stored = invoice.model_copy(update={"id": f"inv-{next(self._ids)}"})
        self.items[stored.id] = stored  # type: ignore[index]
        return stored

    async def get(self, invoice_id: str, user_id: str | None = None) -> Invoice | None:
        invoice = self.items.get(invoice_id)
        if invoice is None or (user_id is not None and invoice.user_id != user_id):
            return None
        return invoice

    async def find_by_number(self, invoice_number: str) -> Invoice | None:
        return next(
            (i for i in self.items.values() if i.invoice_number == invoice_number), None
        )

    async def list_by_status(
        self,
        user_id: str,
        status: InvoiceStatus | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Invoice]:
        matches = [
            i
            for i in self.items.values()
            if i.user_id == user_id and (status is None or i.invoice_status == status)
        ]
        return matches[skip : skip + limit]

    async def transition_status(
        self,
        invoice_id: str,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        stock_consumed: bool | None = None,
    ) -> bool:
        invoice = self.items.get(invoice_id)
        if invoice is None or invoice.invoice_status != from_status:
            return False
        update: dict[str, Any] = {"invoice_status": to_status}
        if stock_consumed is not None:
            update["stock_consumed_at"] = dt.datetime.now(dt.UTC) if stock_consumed else None
        self.items[invoice_id] = invoice.model_copy(update=update)
        return True

    async def count_by_status(self, user_id: str, since: dt.datetime) -> dict[str, int]:
        counts: dict[str, int] = {}
        for invoice in self.items.values():
            if invoice.user_id == user_id and invoice.created_at >= since:
                key = invoice.invoice_status.value
                counts[key] = counts.get(key, 0) + 1
        return counts


class FakeInventoryRepository:
    """Dict-backed inventory store keyed by (user, sku).

    ``steal_on_decrement`` simulates a concurrent approval: the listed SKUs
    lose the given number of units right before the atomic decrement runs.
    SKUs in ``fail_on_decrement`` make the decrement raise, like a dropped
    database connection.
    """

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], InventoryItem] = {}
        self.steal_on_decrement: dict[str, int] = {}
        self.fail_on_decrement: set[str] = set()
        self.decrement_calls: list[tuple[str, int]] = []
        self._ids = itertools.count(1)

    def add(self, sku: str, quantity: int, user_id: str = USER_ID, **fields: Any) -> InventoryItem:
        item = InventoryItem(
            id=f"item-{next(self._ids)}",
            user_id=user_id,
            sku=sku,
            name=fields.pop("name", f"Item {sku}"),
            quantity=quantity,
            **fields,
        )
        self.items[(user_id, sku)] = item
        return item

    def quantity(self, sku: str, user_id: str = USER_ID) -> int:
        return self.items[(user_id, sku)].quantity

    def _set(self, user_id: str, sku: str, **update: Any) -> None:
        key = (user_id, sku)
        self.items[key] = self.items[key].model_copy(update=update)

    async def find_by_skus(self, user_id: str, skus: list[str]) -> dict[str, InventoryItem]:
        return {
            sku: self.items[(user_id, sku)] for sku in skus if (user_id, sku) in self.items
        }

    async def decrement_if_available(self, user_id: str, sku: str, quantity: int) -> bool:
        self.decrement_calls.append((sku, quantity))
        if sku in self.fail_on_decrement:
            raise RuntimeError(f"connection lost while decrementing {sku}")
        item = self.items.get((user_id, sku))
        if item is None:
            return False
        stolen = self.steal_on_decrement.pop(sku, 0)
        if stolen:
            self._set(user_id, sku, quantity=item.quantity - stolen)
            item = self.items[(user_id, sku)]
        if item.quantity < quantity:
            return False
        self._set(user_id, sku, quantity=item.quantity - quantity)
        return True

    async def increment(self, user_id: str, sku: str, quantity: int) -> None:
        item = self.items[(user_id, sku)]
        self._set(user_id, sku, quantity=item.quantity + quantity)

    async def record_shortage(self, user_id: str, sku: str, snapshot: ShortageSnapshot) -> None:
        if (user_id, sku) in self.items:
            self._set(user_id, sku, shortages=snapshot)

    async def list_shortages(self, user_id: str) -> list[InventoryItem]:
        return [
            i
            for (owner, _), i in self.items.items()
            if owner == user_id and i.shortages is not None and i.shortages.gap > 0
        ]

    async def insert(self, item: InventoryItem) -> InventoryItem:
        if (item.user_id, item.sku) in self.items:
            raise DuplicateInventoryItem(item.sku)
        stored = item.model_copy(update={"id": f"item-{next(self._ids)}"})
        self.items[(item.user_id, item.sku)] = stored
        return stored

    async def get(self, item_id: str, user_id: str) -> InventoryItem | None:
        return next(
            (i for (owner, _), i in self.items.items() if owner == user_id and i.id == item_id),
            None,
        )

    async def list_items(self, user_id: str) -> list[InventoryItem]:
        return [i for (owner, _), i in self.items.items() if owner == user_id]

    async def update(
        self, item_id: str, user_id: str, fields: dict[str, Any]
    ) -> InventoryItem | None:
        item = await self.get(item_id, user_id)
        if item is None:
            return None
        updated = InventoryItem.model_validate({**item.model_dump(by_alias=True), **fields})
        self.items[(user_id, item.sku)] = updated
        return updated

    async def delete(self, item_id: str, user_id: str) -> bool:
        item = await self.get(item_id, user_id)
        if item is None:
            return False
        del self.items[(user_id, item.sku)]
        return True


class FakeUserDirectory:
    def __init__(self, emails: dict[str, str] | None = None) -> None:
        self.emails = emails or {}

    async def get_email(self, user_id: str) -> str | None:
        return self.emails.get(user_id)


class RecordingMailer(Mailer):
    """Mail transport that records messages and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []
        self.fail = False

    async def send(self, message: EmailMessage) -> str:
        if self.fail:
            raise NotificationError(f"Failed to send email to {message.to}")
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    def recipients(self) -> list[str]:
        return [m.to for m in self.sent]


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        confidence_threshold=50,
        email_provider="mock",
        company_name="Acme Supplies",
        app_url="https://app.example.com",
        mail_from="noreply@acme.example.com",
        operator_email="ops@acme.example.com",
    )


@pytest.fixture
def invoices() -> FakeInvoiceRepository:
    return FakeInvoiceRepository()


@pytest.fixture
def inventory() -> FakeInventoryRepository:
    return FakeInventoryRepository()


@pytest.fixture
def users() -> FakeUserDirectory:
    return FakeUserDirectory({USER_ID: "owner@acme.example.com"})


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def dispatcher(settings: Settings, mailer: RecordingMailer) -> NotificationDispatcher:
    return NotificationDispatcher(settings, mailer)


@pytest.fixture
def pdf_service() -> MagicMock:
    """PDF service returning fixed invoice text."""
    service = MagicMock()
    service.extract_from_url = AsyncMock(return_value="INVOICE INV-1001 ...")
    return service


@pytest.fixture
def extractor() -> MagicMock:
    """Extraction provider whose result each test sets."""
    provider = MagicMock()
    provider.provider_name = "fake"
    provider.extract_invoice_fields = AsyncMock()
    provider.health_check = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def make_extracted() -> Callable[..., ExtractedInvoice]:
    """Factory for extraction results with sensible defaults."""

    def factory(**overrides: Any) -> ExtractedInvoice:
        payload: dict[str, Any] = {
            "invoice_number": "INV-1001",
            "date": "2024-03-01",
            "customer_details": {
                "name": "Jane Buyer",
                "email": "jane@customer.example.com",
                "shipping_address": "1 Main St, Springfield",
            },
            "amount": "1,000.00",
            "tax": "100.00",
            "total": "1,100.00",
            "confidence": "high",
            "confidence_score": 90,
            "line_items": [{"sku": "A", "name": "Widget", "quantity": 3, "unit_price": 100}],
        }
        payload.update(overrides)
        return ExtractedInvoice.model_validate(payload)

    return factory


@pytest.fixture
def workflow(
    settings: Settings,
    pdf_service: MagicMock,
    extractor: MagicMock,
    invoices: FakeInvoiceRepository,
    inventory: FakeInventoryRepository,
    users: FakeUserDirectory,
    dispatcher: NotificationDispatcher,
) -> InvoiceWorkflow:
    return InvoiceWorkflow(
        settings=settings,
        pdf_service=pdf_service,
        extractor=extractor,
        invoices=invoices,
        inventory=inventory,
        users=users,
        dispatcher=dispatcher,
    )
