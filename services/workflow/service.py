"""Invoice status workflow.

Automatic path (``process_invoice``):
    PDF URL -> text -> structured invoice -> confidence gate -> inventory
    reconciliation -> persisted status -> stock decrement -> notifications

Manual path (``manually_update_invoice_status``):
    operator approval or rejection of an existing invoice, re-running the
    same reconciler before any stock is consumed.

Stock is consumed only on the transition into Approved, with one atomic
conditional decrement per SKU. If a later SKU loses a race with a concurrent
approval, or a decrement fails outright, the SKUs already decremented are
restored so quantities never go negative and never leak. The invoice records
when its stock was consumed, so approving it again after a rejection does
not decrement twice.
"""

import datetime as dt
import logging
import time

from prometheus_client import Counter, Histogram

from services.documents.service import PDFTextService
from services.extraction.base import ExtractionProvider
from services.inventory.reconciler import (
    InventoryReconciler,
    ReconciliationVerdict,
    VerdictKind,
    aggregate_lines,
)
from services.notifications.dispatcher import NotificationDispatcher, NotificationReport
from services.notifications.templates import NotificationTag
from services.shared.config import Settings
from services.shared.errors import (
    DuplicateInvoice,
    InsufficientInventory,
    InvoiceNotFound,
    InvoiceStatusConflict,
    UnknownSku,
    ValidationError,
)
from services.storage.base import InventoryRepository, InvoiceRepository, UserDirectory
from services.workflow.models import (
    MANUAL_TARGET_STATUSES,
    GapAnalysis,
    Invoice,
    InvoiceStatus,
    MonthlyInvoiceStats,
    ProcessingOutcome,
    StatusChangeOutcome,
)

logger = logging.getLogger(__name__)


# Prometheus metrics for the invoice workflow
invoices_processed_total = Counter(
    "invoices_processed_total",
    "Invoices processed by the automatic workflow, by resulting status",
    ["status"],
)

invoice_status_changes_total = Counter(
    "invoice_status_changes_total",
    "Manual invoice status changes",
    ["status"],
)

pdf_text_duration_seconds = Histogram(
    "invoice_pdf_text_duration_seconds",
    "Time spent fetching a PDF and extracting its text",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

llm_extraction_duration_seconds = Histogram(
    "invoice_llm_extraction_duration_seconds",
    "Time spent in the LLM extraction call",
    ["provider"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)

inventory_units_decremented_total = Counter(
    "inventory_units_decremented_total",
    "Stock units consumed by approved invoices",
)

inventory_reservation_conflicts_total = Counter(
    "inventory_reservation_conflicts_total",
    "Approvals whose atomic stock decrement lost a race and was rolled back",
)


class InvoiceWorkflow:
    """Orchestrates invoice extraction, reconciliation, persistence and notification."""

    def __init__(
        self,
        settings: Settings,
        pdf_service: PDFTextService,
        extractor: ExtractionProvider,
        invoices: InvoiceRepository,
        inventory: InventoryRepository,
        users: UserDirectory,
        dispatcher: NotificationDispatcher,
        reconciler: InventoryReconciler | None = None,
    ) -> None:
        """Initialize the workflow with its collaborators.

        Args:
            settings: Application settings (confidence threshold, operator email)
            pdf_service: PDF download and text extraction
            extractor: LLM extraction provider
            invoices: Invoice persistence
            inventory: Inventory persistence
            users: Account directory for operator addresses
            dispatcher: Notification dispatcher
            reconciler: Stock sufficiency check (built on ``inventory`` if omitted)
        """
        self.settings = settings
        self.pdf_service = pdf_service
        self.extractor = extractor
        self.invoices = invoices
        self.inventory = inventory
        self.users = users
        self.dispatcher = dispatcher
        self.reconciler = reconciler or InventoryReconciler(inventory)

    async def process_invoice(
        self, pdf_url: str, user_id: str, email_record_id: str | None = None
    ) -> ProcessingOutcome:
        """Run the automatic workflow for one invoice PDF.

        Args:
            pdf_url: Location of the invoice PDF
            user_id: Owner of the invoice and of the inventory it draws on
            email_record_id: Inbound mail record the PDF came from

        Returns:
            Persisted invoice, reconciliation verdict and notification reports

        Raises:
            FetchError: PDF could not be downloaded
            ParseError: PDF could not be read
            ExtractionError: LLM extraction failed
            ValidationError: Extracted invoice has no invoice number
            DuplicateInvoice: Invoice number already exists
        """
        start = time.perf_counter()
        text = await self.pdf_service.extract_from_url(pdf_url)
        pdf_text_duration_seconds.observe(time.perf_counter() - start)

        start = time.perf_counter()
        extracted = await self.extractor.extract_invoice_fields(text)
        llm_extraction_duration_seconds.labels(provider=self.extractor.provider_name).observe(
            time.perf_counter() - start
        )

        if not extracted.invoice_number:
            raise ValidationError(
                "Extracted invoice has no invoice number", field="invoice_number"
            )
        if await self.invoices.find_by_number(extracted.invoice_number) is not None:
            raise DuplicateInvoice(extracted.invoice_number)

        if extracted.confidence_score < self.settings.confidence_threshold:
            logger.info(
                f"Invoice {extracted.invoice_number} confidence {extracted.confidence_score} "
                f"below threshold {self.settings.confidence_threshold}; holding for review"
            )
            invoice = await self.invoices.insert(
                Invoice.from_extraction(
                    extracted, user_id, InvoiceStatus.PENDING, email_record_id
                )
            )
            report = await self.dispatcher.dispatch_safely(
                NotificationTag.PENDING, await self._operator_email(user_id), invoice
            )
            return self._finish(ProcessingOutcome(invoice=invoice, notifications=[report]))

        verdict = await self.reconciler.reconcile(user_id, extracted.requested_quantities())

        if verdict.kind == VerdictKind.SUFFICIENT:
            invoice = await self.invoices.insert(
                Invoice.from_extraction(
                    extracted, user_id, InvoiceStatus.APPROVED, email_record_id
                ).model_copy(update={"stock_consumed_at": dt.datetime.now(dt.UTC)})
            )
            try:
                reserved = await self._reserve_stock(invoice)
            except Exception:
                logger.error(
                    f"Stock reservation for invoice {invoice.invoice_number} failed; "
                    "holding it as Flagged"
                )
                await self.invoices.transition_status(
                    str(invoice.id),
                    InvoiceStatus.APPROVED,
                    InvoiceStatus.FLAGGED,
                    stock_consumed=False,
                )
                raise

            if reserved:
                report = await self.dispatcher.dispatch_safely(
                    NotificationTag.APPROVED, invoice.customer_details.email, invoice
                )
                return self._finish(
                    ProcessingOutcome(invoice=invoice, verdict=verdict, notifications=[report])
                )

            # Stock moved between reconciliation and decrement.
            invoice, verdict = await self._downgrade_to_flagged(invoice)
            return self._finish(await self._flag_insufficient(invoice, verdict))

        invoice = await self.invoices.insert(
            Invoice.from_extraction(extracted, user_id, InvoiceStatus.FLAGGED, email_record_id)
        )
        if verdict.kind == VerdictKind.INSUFFICIENT:
            return self._finish(await self._flag_insufficient(invoice, verdict))
        return self._finish(await self._flag_unknown_skus(invoice, verdict))

    async def manually_update_invoice_status(
        self, invoice_id: str, user_id: str, status: InvoiceStatus | str
    ) -> StatusChangeOutcome:
        """Approve or reject an invoice on behalf of an operator.

        Args:
            invoice_id: Invoice to update
            user_id: Owner of the invoice
            status: Target status (Approved or Rejected)

        Returns:
            Updated invoice and notification report

        Raises:
            ValidationError: Target status is not Approved or Rejected
            InvoiceNotFound: Invoice does not exist for this user
            UnknownSku: Approval refused, invoice references SKUs not in inventory
            InsufficientInventory: Approval refused, stock does not cover the invoice
            InvoiceStatusConflict: Invoice status changed concurrently
        """
        target = self._parse_manual_status(status)

        invoice = await self.invoices.get(invoice_id, user_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)

        previous = invoice.invoice_status
        if previous == target:
            logger.info(f"Invoice {invoice.invoice_number} already {target.value}; nothing to do")
            return StatusChangeOutcome(invoice=invoice, previous_status=previous, changed=False)

        update: dict[str, object] = {
            "invoice_status": target,
            "updated_at": dt.datetime.now(dt.UTC),
        }
        if target == InvoiceStatus.APPROVED:
            update["stock_consumed_at"] = await self._approve_manually(
                invoice_id, invoice, previous
            )
            tag = NotificationTag.STATUS_CHANGED
        else:
            if not await self.invoices.transition_status(invoice_id, previous, target):
                raise InvoiceStatusConflict(
                    f"Invoice {invoice.invoice_number} changed status concurrently",
                    invoice_id=invoice_id,
                )
            tag = NotificationTag.REJECTED

        updated = invoice.model_copy(update=update)
        invoice_status_changes_total.labels(status=target.value).inc()
        logger.info(
            f"Invoice {invoice.invoice_number} moved {previous.value} -> {target.value} "
            f"by user {user_id}"
        )

        report = await self.dispatcher.dispatch_safely(
            tag, updated.customer_details.email, updated
        )
        return StatusChangeOutcome(
            invoice=updated, previous_status=previous, changed=True, notifications=[report]
        )

    async def get_invoice(self, invoice_id: str, user_id: str) -> Invoice:
        invoice = await self.invoices.get(invoice_id, user_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def list_invoices(
        self,
        user_id: str,
        status: InvoiceStatus | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Invoice]:
        return await self.invoices.list_by_status(user_id, status, limit=limit, skip=skip)

    async def monthly_stats(
        self, user_id: str, now: dt.datetime | None = None
    ) -> MonthlyInvoiceStats:
        """Invoice counts and shares by status over the last 30 days."""
        since = (now or dt.datetime.now(dt.UTC)) - dt.timedelta(days=30)
        counts = await self.invoices.count_by_status(user_id, since)
        return MonthlyInvoiceStats.from_counts(counts)

    async def gap_analysis(self, invoice_id: str, user_id: str) -> GapAnalysis:
        """Recorded shortages for the SKUs of a flagged invoice.

        Raises:
            InvoiceNotFound: Invoice does not exist for this user or is not Flagged
        """
        invoice = await self.invoices.get(invoice_id, user_id)
        if invoice is None or invoice.invoice_status != InvoiceStatus.FLAGGED:
            raise InvoiceNotFound(invoice_id)

        skus = {item.sku for item in invoice.line_items}
        shortages = [
            item for item in await self.inventory.list_shortages(user_id) if item.sku in skus
        ]
        return GapAnalysis(
            invoice_id=invoice_id, invoice_number=invoice.invoice_number, shortages=shortages
        )

    @staticmethod
    def _parse_manual_status(status: InvoiceStatus | str) -> InvoiceStatus:
        try:
            target = InvoiceStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown invoice status: {status}", status=str(status)) from e
        if target not in MANUAL_TARGET_STATUSES:
            raise ValidationError(
                "Invoice status can only be set to Approved or Rejected", status=target.value
            )
        return target

    async def _approve_manually(
        self, invoice_id: str, invoice: Invoice, previous: InvoiceStatus
    ) -> dt.datetime:
        """Move the invoice to Approved, consuming its stock unless already consumed.

        Returns:
            When the invoice's stock was consumed
        """
        if invoice.stock_consumed_at is not None:
            # Rejected after an earlier approval; its stock is already gone.
            if not await self.invoices.transition_status(
                invoice_id, previous, InvoiceStatus.APPROVED
            ):
                raise InvoiceStatusConflict(
                    f"Invoice {invoice.invoice_number} changed status concurrently",
                    invoice_id=invoice_id,
                )
            logger.info(
                f"Invoice {invoice.invoice_number} re-approved; stock was consumed at "
                f"{invoice.stock_consumed_at.isoformat()}"
            )
            return invoice.stock_consumed_at

        verdict = await self.reconciler.reconcile(invoice.user_id, invoice.requested_quantities())
        if verdict.kind == VerdictKind.UNKNOWN_SKUS:
            raise UnknownSku(verdict.unknown_skus)
        if verdict.kind == VerdictKind.INSUFFICIENT:
            raise InsufficientInventory(verdict.insufficient_skus)

        if not await self.invoices.transition_status(
            invoice_id, previous, InvoiceStatus.APPROVED, stock_consumed=True
        ):
            raise InvoiceStatusConflict(
                f"Invoice {invoice.invoice_number} changed status concurrently",
                invoice_id=invoice_id,
            )

        try:
            reserved = await self._reserve_stock(invoice)
        except Exception:
            await self.invoices.transition_status(
                invoice_id, InvoiceStatus.APPROVED, previous, stock_consumed=False
            )
            raise

        if not reserved:
            await self.invoices.transition_status(
                invoice_id, InvoiceStatus.APPROVED, previous, stock_consumed=False
            )
            fresh = await self.reconciler.reconcile(
                invoice.user_id, invoice.requested_quantities()
            )
            skus = fresh.insufficient_skus or list(aggregate_lines(invoice.requested_quantities()))
            raise InsufficientInventory(skus)
        return dt.datetime.now(dt.UTC)

    async def _reserve_stock(self, invoice: Invoice) -> bool:
        """Decrement stock for every SKU of the invoice, all or nothing.

        Returns False when a SKU no longer covers its quantity. If a decrement
        raises, the SKUs already decremented are restored before re-raising.
        """
        reserved: list[tuple[str, int]] = []
        for sku, quantity in aggregate_lines(invoice.requested_quantities()).items():
            try:
                decremented = await self.inventory.decrement_if_available(
                    invoice.user_id, sku, quantity
                )
            except Exception:
                logger.error(
                    f"Stock decrement for {sku} failed while approving invoice "
                    f"{invoice.invoice_number}; rolling back {len(reserved)} SKUs"
                )
                await self._release_stock(invoice.user_id, reserved)
                raise

            if not decremented:
                logger.warning(
                    f"Stock for {sku} dropped below {quantity} while approving invoice "
                    f"{invoice.invoice_number}; rolling back {len(reserved)} SKUs"
                )
                await self._release_stock(invoice.user_id, reserved)
                inventory_reservation_conflicts_total.inc()
                return False
            reserved.append((sku, quantity))

        units = sum(quantity for _, quantity in reserved)
        inventory_units_decremented_total.inc(units)
        logger.info(
            f"Reserved {units} units across {len(reserved)} SKUs for {invoice.invoice_number}"
        )
        return True

    async def _release_stock(self, user_id: str, reserved: list[tuple[str, int]]) -> None:
        for sku, quantity in reversed(reserved):
            await self.inventory.increment(user_id, sku, quantity)

    async def _downgrade_to_flagged(
        self, invoice: Invoice
    ) -> tuple[Invoice, ReconciliationVerdict]:
        await self.invoices.transition_status(
            str(invoice.id), InvoiceStatus.APPROVED, InvoiceStatus.FLAGGED, stock_consumed=False
        )
        flagged = invoice.model_copy(
            update={
                "invoice_status": InvoiceStatus.FLAGGED,
                "stock_consumed_at": None,
                "updated_at": dt.datetime.now(dt.UTC),
            }
        )
        fresh = await self.reconciler.reconcile(invoice.user_id, invoice.requested_quantities())
        verdict = ReconciliationVerdict(
            kind=VerdictKind.INSUFFICIENT,
            shortfalls=fresh.shortfalls,
            unknown_skus=fresh.unknown_skus,
        )
        return flagged, verdict

    async def _flag_insufficient(
        self, invoice: Invoice, verdict: ReconciliationVerdict
    ) -> ProcessingOutcome:
        for shortfall in verdict.shortfalls:
            await self.inventory.record_shortage(
                invoice.user_id, shortfall.sku, shortfall.snapshot()
            )

        reports: list[NotificationReport] = [
            await self.dispatcher.dispatch_safely(
                NotificationTag.FLAGGED_INSUFFICIENT,
                await self._operator_email(invoice.user_id),
                invoice,
                shortfalls=verdict.shortfalls,
            ),
            await self.dispatcher.dispatch_safely(
                NotificationTag.DELAYED_DELIVERY, invoice.customer_details.email, invoice
            ),
        ]
        return ProcessingOutcome(invoice=invoice, verdict=verdict, notifications=reports)

    async def _flag_unknown_skus(
        self, invoice: Invoice, verdict: ReconciliationVerdict
    ) -> ProcessingOutcome:
        requested = aggregate_lines(invoice.requested_quantities())
        missing = [{"sku": sku, "quantity": requested[sku]} for sku in verdict.unknown_skus]
        report = await self.dispatcher.dispatch_safely(
            NotificationTag.FLAGGED_MISSING_SKU,
            invoice.customer_details.email,
            invoice,
            missing=missing,
        )
        return ProcessingOutcome(invoice=invoice, verdict=verdict, notifications=[report])

    async def _operator_email(self, user_id: str) -> str | None:
        return await self.users.get_email(user_id) or self.settings.operator_email

    @staticmethod
    def _finish(outcome: ProcessingOutcome) -> ProcessingOutcome:
        invoices_processed_total.labels(status=outcome.invoice.invoice_status.value).inc()
        for failure in outcome.notification_failures:
            logger.error(
                f"Invoice {outcome.invoice.invoice_number}: {failure.tag.value} notification "
                f"to {failure.recipient} failed ({failure.error})"
            )
        logger.info(
            f"Invoice {outcome.invoice.invoice_number} processed as "
            f"{outcome.invoice.invoice_status.value}"
        )
        return outcome
