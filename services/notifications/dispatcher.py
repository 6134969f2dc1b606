"""Notification dispatch for invoice workflow events.

Maps a notification tag to its template, renders it and hands the message to
the configured mail transport. The workflow uses ``dispatch_safely`` so a
failed email is reported on the outcome instead of undoing a status change.
"""

import logging
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter
from pydantic import BaseModel

from services.inventory.models import SupplierOrderRequest
from services.notifications.mailer import EmailMessage, Mailer
from services.notifications.templates import NotificationTag, render
from services.shared.config import Settings
from services.shared.errors import NotificationError

if TYPE_CHECKING:
    from services.workflow.models import Invoice

logger = logging.getLogger(__name__)

notifications_total = Counter(
    "invoice_notifications_total",
    "Notifications by template and result",
    ["tag", "result"],
)


class NotificationReport(BaseModel):
    """Outcome of one notification attempt.

    Attributes:
        tag: Notification kind
        recipient: Address the message was sent to (None when unknown)
        success: True if the transport accepted the message
        skipped: True if no recipient was available, so nothing was sent
        message_id: Transport message id on success
        error: Failure description
    """

    tag: NotificationTag
    recipient: str | None = None
    success: bool
    skipped: bool = False
    message_id: str | None = None
    error: str | None = None


class NotificationDispatcher:
    """Render and send workflow notifications."""

    def __init__(self, settings: Settings, mailer: Mailer) -> None:
        self.settings = settings
        self.mailer = mailer

    async def dispatch(
        self,
        tag: NotificationTag,
        recipient: str | None,
        invoice: "Invoice | None" = None,
        **context: Any,
    ) -> NotificationReport:
        """Send one notification.

        Args:
            tag: Notification kind (selects the template)
            recipient: Destination address; None yields a skipped report
            invoice: Invoice the notification is about
            **context: Extra template variables

        Returns:
            Report of the send

        Raises:
            NotificationError: If the transport failed
        """
        if not recipient:
            reference = invoice.invoice_number if invoice is not None else "-"
            logger.warning(f"No recipient for {tag.value} notification (invoice {reference})")
            notifications_total.labels(tag=tag.value, result="skipped").inc()
            return NotificationReport(tag=tag, success=False, skipped=True, error="no recipient")

        email = render(
            tag,
            company_name=self.settings.company_name,
            app_url=self.settings.app_url,
            invoice=invoice,
            **context,
        )
        message = EmailMessage(
            to=recipient,
            subject=email.subject,
            html_body=email.html,
            from_address=self.settings.mail_from,
        )

        try:
            message_id = await self.mailer.send(message)
        except NotificationError:
            notifications_total.labels(tag=tag.value, result="failed").inc()
            raise

        notifications_total.labels(tag=tag.value, result="sent").inc()
        return NotificationReport(
            tag=tag, recipient=recipient, success=True, message_id=message_id
        )

    async def dispatch_safely(
        self,
        tag: NotificationTag,
        recipient: str | None,
        invoice: "Invoice | None" = None,
        **context: Any,
    ) -> NotificationReport:
        """Like ``dispatch`` but never raises; failures come back as a report."""
        try:
            return await self.dispatch(tag, recipient, invoice, **context)
        except NotificationError as e:
            logger.error(f"Notification {tag.value} to {recipient} failed: {e.message}")
            return NotificationReport(tag=tag, recipient=recipient, success=False, error=e.message)
        except Exception as e:
            logger.exception(f"Notification {tag.value} to {recipient} failed unexpectedly")
            notifications_total.labels(tag=tag.value, result="failed").inc()
            return NotificationReport(tag=tag, recipient=recipient, success=False, error=str(e))

    async def send_supplier_order(
        self,
        order: SupplierOrderRequest,
        requester_name: str | None = None,
        requester_email: str | None = None,
    ) -> NotificationReport:
        """Email a purchase order to a supplier.

        Raises:
            NotificationError: If the transport failed
        """
        report = await self.dispatch(
            NotificationTag.SUPPLIER_ORDER,
            str(order.supplier_email),
            lines=order.skus,
            notes=order.additional_notes,
            requester_name=requester_name,
            requester_email=requester_email,
        )
        logger.info(f"Supplier order for {len(order.skus)} SKUs sent to {order.supplier_email}")
        return report
