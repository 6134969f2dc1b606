"""Invoice workflow data models.

Defines the persisted invoice record, its status lifecycle and the outcome
objects returned by the automatic and manual workflow paths.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.extraction.schema import CustomerDetails, ExtractedInvoice, LineItem
from services.inventory.models import InventoryItem
from services.inventory.reconciler import ReconciliationVerdict
from services.notifications.dispatcher import NotificationReport


class InvoiceStatus(str, Enum):
    """Invoice workflow states.

    Pending is the entry state for low-confidence extractions. Approved,
    Flagged and Rejected are terminal for the automatic path; an operator can
    still move an invoice to Approved or Rejected manually.
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    FLAGGED = "Flagged"
    REJECTED = "Rejected"


MANUAL_TARGET_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.REJECTED})


class Invoice(BaseModel):
    """Persisted invoice record.

    Line items and monetary fields are kept exactly as extracted; the
    workflow only changes ``invoice_status`` and ``stock_consumed_at``. The
    latter is set when the invoice's stock was decremented and stays set after
    a rejection, since rejecting does not restock.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    invoice_number: str
    user_id: str = Field(alias="userId")
    email_record_id: str | None = Field(None, alias="emailRecordId")

    date: dt.date | None = None
    customer_details: CustomerDetails = Field(default_factory=CustomerDetails)
    amount: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None
    number_of_units: int | None = None
    confidence: str | None = None
    confidence_score: int = Field(0, ge=0, le=100)
    line_items: list[LineItem] = Field(default_factory=list)

    payment_method: str = "Bank Transfer"
    payment_status: str = "Pending"
    invoice_status: InvoiceStatus = InvoiceStatus.PENDING
    stock_consumed_at: dt.datetime | None = None
    notes: str = ""

    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    updated_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))

    @field_validator("date", mode="before")
    @classmethod
    def _date_from_datetime(cls, value: Any) -> Any:
        # MongoDB has no date type; dates are stored as midnight datetimes.
        if isinstance(value, dt.datetime):
            return value.date()
        return value

    @classmethod
    def from_extraction(
        cls,
        extracted: ExtractedInvoice,
        user_id: str,
        status: InvoiceStatus,
        email_record_id: str | None = None,
    ) -> "Invoice":
        """Build an invoice record from validated extraction output.

        Args:
            extracted: Validated extraction result (must carry an invoice number)
            user_id: Owning user
            status: Status decided by the workflow
            email_record_id: Inbound mail record the PDF came from

        Returns:
            New, not yet persisted invoice
        """
        if extracted.invoice_number is None:
            raise ValueError("Extracted invoice has no invoice number")
        return cls(
            invoice_number=extracted.invoice_number,
            user_id=user_id,
            email_record_id=email_record_id,
            date=extracted.date,
            customer_details=extracted.customer_details,
            amount=extracted.amount,
            tax=extracted.tax,
            total=extracted.total,
            number_of_units=extracted.number_of_units,
            confidence=extracted.confidence,
            confidence_score=extracted.confidence_score,
            line_items=list(extracted.line_items),
            invoice_status=status,
            notes=extracted.notes,
        )

    def requested_quantities(self) -> list[tuple[str, int]]:
        """Ordered (sku, quantity) pairs for reconciliation."""
        return [(item.sku, item.quantity) for item in self.line_items]


class ProcessingOutcome(BaseModel):
    """Result of automatically processing one invoice PDF.

    Attributes:
        invoice: Persisted invoice with its decided status
        verdict: Reconciliation verdict (None when confidence was too low to reconcile)
        notifications: One report per attempted notification
    """

    invoice: Invoice
    verdict: ReconciliationVerdict | None = None
    notifications: list[NotificationReport] = Field(default_factory=list)

    @property
    def notification_failures(self) -> list[NotificationReport]:
        return [n for n in self.notifications if not n.success and not n.skipped]


class StatusChangeOutcome(BaseModel):
    """Result of a manual status change.

    Attributes:
        invoice: Invoice after the change
        previous_status: Status before the request
        changed: False when the invoice already had the requested status
        notifications: Reports for notifications sent because of the change
    """

    invoice: Invoice
    previous_status: InvoiceStatus
    changed: bool
    notifications: list[NotificationReport] = Field(default_factory=list)


class MonthlyInvoiceStats(BaseModel):
    """Invoice counts by status over the trailing 30 days."""

    model_config = ConfigDict(populate_by_name=True)

    total_invoices: int = Field(alias="totalInvoices")
    approved: int = 0
    pending: int = 0
    flagged: int = 0
    rejected: int = 0
    approved_percentage: float = Field(0.0, alias="approvedPercentage")
    pending_percentage: float = Field(0.0, alias="pendingPercentage")
    flagged_percentage: float = Field(0.0, alias="flaggedPercentage")
    rejected_percentage: float = Field(0.0, alias="rejectedPercentage")

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "MonthlyInvoiceStats":
        """Build statistics from a status -> count mapping.

        Percentages are rounded to two decimals; an empty mapping yields zeros.
        """
        total = sum(counts.values())

        def share(status: InvoiceStatus) -> float:
            if total == 0:
                return 0.0
            return round(counts.get(status.value, 0) / total * 100, 2)

        return cls(
            total_invoices=total,
            approved=counts.get(InvoiceStatus.APPROVED.value, 0),
            pending=counts.get(InvoiceStatus.PENDING.value, 0),
            flagged=counts.get(InvoiceStatus.FLAGGED.value, 0),
            rejected=counts.get(InvoiceStatus.REJECTED.value, 0),
            approved_percentage=share(InvoiceStatus.APPROVED),
            pending_percentage=share(InvoiceStatus.PENDING),
            flagged_percentage=share(InvoiceStatus.FLAGGED),
            rejected_percentage=share(InvoiceStatus.REJECTED),
        )


class GapAnalysis(BaseModel):
    """Recorded shortages for the SKUs of a flagged invoice."""

    invoice_id: str
    invoice_number: str
    shortages: list[InventoryItem] = Field(default_factory=list)
