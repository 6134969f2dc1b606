"""Domain exceptions for invoice processing.

Every exception carries the HTTP status the API layer should answer with.
Expected business outcomes of the automatic workflow (short stock, unknown
SKUs) are reconciliation verdicts, not exceptions; the inventory errors below
are only raised when an operator explicitly asks for an approval that cannot
be honoured.
"""

from typing import Any


class InvoiceAutomationError(Exception):
    """Base class for all invoice automation errors."""

    status_code: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error responses."""
        return {"error": self.message, **self.details}


class FetchError(InvoiceAutomationError):
    """Invoice document could not be downloaded (network error, timeout, non-2xx)."""

    status_code = 502


class ParseError(InvoiceAutomationError):
    """Downloaded document is not a readable PDF."""

    status_code = 422


class ExtractionError(InvoiceAutomationError):
    """LLM call failed or returned something that is not an invoice JSON object."""

    status_code = 502


class ValidationError(InvoiceAutomationError):
    """Input has the wrong shape (e.g. extracted invoice without an invoice number)."""

    status_code = 422


class DuplicateInvoice(InvoiceAutomationError):
    """An invoice with the same invoice number already exists."""

    status_code = 409

    def __init__(self, invoice_number: str) -> None:
        super().__init__(
            f"Invoice {invoice_number} already exists", invoice_number=invoice_number
        )


class InvoiceNotFound(InvoiceAutomationError):
    status_code = 404

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice {invoice_id} not found", invoice_id=invoice_id)


class InventoryItemNotFound(InvoiceAutomationError):
    status_code = 404

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Inventory item {item_id} not found", item_id=item_id)


class InvoiceStatusConflict(InvoiceAutomationError):
    """Invoice status changed underneath a manual transition."""

    status_code = 409


class InsufficientInventory(InvoiceAutomationError):
    """Manual approval refused because stock does not cover the invoice."""

    status_code = 400

    def __init__(self, skus: list[str]) -> None:
        super().__init__(f"Insufficient inventory for SKUs: {', '.join(skus)}", skus=skus)


class UnknownSku(InvoiceAutomationError):
    """Manual approval refused because the invoice references SKUs not in inventory."""

    status_code = 400

    def __init__(self, skus: list[str]) -> None:
        super().__init__(f"Unknown SKUs in inventory: {', '.join(skus)}", skus=skus)


class NotificationError(InvoiceAutomationError):
    """Mail transport failed to send a notification."""

    status_code = 502


class DuplicateInventoryItem(InvoiceAutomationError):
    """The user already has an inventory item with this SKU."""

    status_code = 409

    def __init__(self, sku: str) -> None:
        super().__init__(f"Inventory item with SKU {sku} already exists", sku=sku)
