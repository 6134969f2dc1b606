"""Unit tests for notification templates and the dispatcher."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from conftest import RecordingMailer

from services.extraction.schema import CustomerDetails
from services.inventory.models import Impact, SupplierOrderLine, SupplierOrderRequest
from services.inventory.reconciler import Shortfall
from services.notifications.dispatcher import NotificationDispatcher
from services.notifications.templates import NotificationTag, invoice_context, render
from services.shared.errors import NotificationError
from services.workflow.models import Invoice, InvoiceStatus


def make_invoice(**overrides: object) -> Invoice:
    payload: dict[str, object] = {
        "invoice_number": "INV-42",
        "user_id": "user-1",
        "amount": Decimal("1250.5"),
        "confidence_score": 30,
        "customer_details": CustomerDetails(
            name="Jane Buyer", email="jane@customer.example.com", shipping_address="1 Main St"
        ),
        "invoice_status": InvoiceStatus.PENDING,
    }
    payload.update(overrides)
    return Invoice.model_validate(payload)


class TestTemplates:
    """Tests for template rendering."""

    def test_invoice_context_fallbacks(self) -> None:
        invoice = make_invoice(amount=None, customer_details=CustomerDetails())

        context = invoice_context(invoice)

        assert context["amount"] == "0.00"
        assert context["customer_name"] == "Valued Customer"
        assert context["shipping_address"] == "Address not provided"

    def test_amount_has_two_decimals(self) -> None:
        assert invoice_context(make_invoice())["amount"] == "1250.50"

    def test_pending_review(self) -> None:
        email = render(
            NotificationTag.PENDING, "Acme", "https://app.example.com/", invoice=make_invoice()
        )

        assert email.subject == "[Acme] Pending Invoice Review Required"
        assert "INV-42" in email.html
        assert "30%" in email.html
        assert "https://app.example.com/dashboard/pending" in email.html
        assert "automated message from Acme" in email.html

    def test_approved_mentions_delivery_window(self) -> None:
        email = render(
            NotificationTag.APPROVED,
            "Acme",
            "https://app.example.com",
            invoice=make_invoice(invoice_status=InvoiceStatus.APPROVED),
        )

        assert email.subject == "[Acme] Order Confirmation - Invoice #INV-42"
        assert "Dear Jane Buyer" in email.html
        assert "3-5 business days" in email.html
        assert "1 Main St" in email.html

    def test_delayed_delivery(self) -> None:
        email = render(NotificationTag.DELAYED_DELIVERY, "Acme", "", invoice=make_invoice())

        assert "10-14 business days" in email.html
        assert "Delivery Update" in email.subject

    def test_flagged_lists_shortfalls(self) -> None:
        shortfall = Shortfall(sku="W-100", requested=11, on_hand=10, gap=1, impact=Impact.LOW)

        email = render(
            NotificationTag.FLAGGED_INSUFFICIENT,
            "Acme",
            "https://app.example.com",
            invoice=make_invoice(invoice_status=InvoiceStatus.FLAGGED),
            shortfalls=[shortfall],
        )

        assert "<td>W-100</td><td>11</td><td>10</td><td>1</td><td>Low</td>" in email.html
        assert "/dashboard/gap" in email.html

    def test_missing_sku_lists_requested_quantity(self) -> None:
        email = render(
            NotificationTag.FLAGGED_MISSING_SKU,
            "Acme",
            "",
            invoice=make_invoice(),
            missing=[{"sku": "GHOST-9", "quantity": 4}],
        )

        assert "Item SKU: GHOST-9 (Quantity Requested: 4)" in email.html

    def test_status_change_subject(self) -> None:
        email = render(
            NotificationTag.STATUS_CHANGED,
            "Acme",
            "",
            invoice=make_invoice(invoice_status=InvoiceStatus.APPROVED),
        )

        assert email.subject == "[Acme] Invoice #INV-42 Status Update: Approved"
        assert "3-5 business days" in email.html

    def test_extracted_values_are_escaped(self) -> None:
        invoice = make_invoice(
            customer_details=CustomerDetails(name="<script>alert(1)</script>")
        )

        email = render(NotificationTag.APPROVED, "Acme", "", invoice=invoice)

        assert "<script>" not in email.html
        assert "&lt;script&gt;" in email.html

    def test_supplier_order(self) -> None:
        lines = [
            SupplierOrderLine(code="W-100", name="Widget", quantity=25),
            SupplierOrderLine(code="B-7", name="Bolt", quantity=100, specifications="M6 x 30"),
        ]

        email = render(
            NotificationTag.SUPPLIER_ORDER,
            "Acme",
            "",
            lines=lines,
            notes="Deliver to dock 3",
            requester_email="owner@acme.example.com",
        )

        assert email.subject == "[Acme] Purchase Order Request"
        assert "<td>B-7</td><td>Bolt</td><td>100</td><td>M6 x 30</td>" in email.html
        assert "<td>W-100</td><td>Widget</td><td>25</td><td>-</td>" in email.html
        assert "Deliver to dock 3" in email.html
        assert "Purchasing Team" in email.html
        assert "Email: owner@acme.example.com" in email.html
        assert "reply to this email with your quotation" in email.html


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_dispatch_sends_rendered_message(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        report = await dispatcher.dispatch(
            NotificationTag.PENDING, "ops@acme.example.com", make_invoice()
        )

        assert report.success is True
        assert report.message_id == "msg-1"
        assert report.recipient == "ops@acme.example.com"
        message = mailer.sent[0]
        assert message.from_address == "noreply@acme.example.com"
        assert message.subject == "[Acme Supplies] Pending Invoice Review Required"

    @pytest.mark.asyncio
    async def test_missing_recipient_is_skipped(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        report = await dispatcher.dispatch(NotificationTag.APPROVED, None, make_invoice())

        assert report.skipped is True
        assert report.success is False
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_dispatch_raises_transport_failure(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        mailer.fail = True

        with pytest.raises(NotificationError):
            await dispatcher.dispatch(NotificationTag.REJECTED, "a@b.example.com", make_invoice())

    @pytest.mark.asyncio
    async def test_dispatch_safely_reports_failure(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        mailer.fail = True

        report = await dispatcher.dispatch_safely(
            NotificationTag.REJECTED, "a@b.example.com", make_invoice()
        )

        assert report.success is False
        assert report.skipped is False
        assert report.error == "Failed to send email to a@b.example.com"

    @pytest.mark.asyncio
    async def test_dispatch_safely_reports_unexpected_error(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        failing = AsyncMock(side_effect=RuntimeError("socket closed"))

        with patch.object(mailer, "send", failing):
            report = await dispatcher.dispatch_safely(
                NotificationTag.APPROVED, "a@b.example.com", make_invoice()
            )

        assert report.success is False
        assert report.recipient == "a@b.example.com"
        assert report.error == "socket closed"

    @pytest.mark.asyncio
    async def test_send_supplier_order(
        self, dispatcher: NotificationDispatcher, mailer: RecordingMailer
    ) -> None:
        order = SupplierOrderRequest(
            supplier_email="sales@supplier.example.com",
            skus=[SupplierOrderLine(code="W-100", name="Widget", quantity=25)],
            requester_name="Pat Buyer",
        )

        report = await dispatcher.send_supplier_order(order, requester_name="Pat Buyer")

        assert report.success is True
        assert mailer.recipients() == ["sales@supplier.example.com"]
        assert "Pat Buyer" in mailer.sent[0].html_body
