"""Invoice data models for structured extraction.

LLM output is untrusted: every field the workflow consumes is validated and
normalized here, right after JSON parsing. Unusable values are defaulted
(``None``, ``[]``, ``0``) rather than rejected, except for a payload that is
not a JSON object at all, which the providers reject before reaching this
module.
"""

import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

_NUMBER_CLEANUP = re.compile(r"[^\d.\-]")


def parse_decimal(value: Any) -> Decimal | None:
    """Coerce LLM-provided money values ("$1,100.00", 1100, "1100") to Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = _NUMBER_CLEANUP.sub("", value)
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def parse_int(value: Any) -> int | None:
    """Coerce LLM-provided counts to int, rounding fractional values down."""
    number = parse_decimal(value)
    if number is None:
        return None
    try:
        return int(number)
    except (ValueError, OverflowError):
        return None


class CustomerDetails(BaseModel):
    """Customer block of an invoice."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    shipping_address: str | None = None

    @field_validator("name", "email", "phone", "shipping_address", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class LineItem(BaseModel):
    """Single invoice line.

    Attributes:
        sku: Product SKU, matched against the inventory collection
        name: Item description
        quantity: Units requested (always > 0)
        unit_price: Price per unit
        total: Line total as printed on the invoice
    """

    sku: str
    name: str | None = None
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = None
    total: Decimal | None = None

    @field_validator("sku", mode="before")
    @classmethod
    def _clean_sku(cls, value: Any) -> Any:
        return str(value).strip() if value is not None else value

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> Any:
        parsed = parse_int(value)
        return parsed if parsed is not None else value

    @field_validator("unit_price", "total", mode="before")
    @classmethod
    def _coerce_money(cls, value: Any) -> Decimal | None:
        return parse_decimal(value)


class ExtractedInvoice(BaseModel):
    """Structured invoice data returned by the extraction client.

    Schema mirrors the JSON object the LLM is asked to produce.
    """

    invoice_number: str | None = Field(None, description="Unique invoice identifier")
    date: dt.date | None = Field(None, description="Date invoice was issued")
    customer_details: CustomerDetails = Field(default_factory=CustomerDetails)

    # Financial details
    amount: Decimal | None = Field(None, description="Subtotal before tax")
    tax: Decimal | None = Field(None, description="Tax amount")
    total: Decimal | None = Field(None, description="Total amount including tax")
    number_of_units: int | None = Field(None, description="Total number of items")

    # Confidence tracking
    confidence: Literal["high", "medium", "low"] | None = Field(
        None, description="Extraction confidence label"
    )
    confidence_score: int = Field(
        0, description="Overall extraction confidence (0-100)", ge=0, le=100
    )

    line_items: list[LineItem] = Field(default_factory=list)
    notes: str = ""

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _clean_invoice_number(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date | None:
        if isinstance(value, dt.datetime):
            return value.date()
        if value is None or isinstance(value, dt.date):
            return value
        if isinstance(value, str):
            text = value.strip()
            for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d.%m.%Y", "%B %d, %Y"):
                try:
                    return dt.datetime.strptime(text, fmt).date()
                except ValueError:
                    continue
            try:
                return dt.datetime.fromisoformat(text).date()
            except ValueError:
                return None
        return None

    @field_validator("customer_details", mode="before")
    @classmethod
    def _customer_details_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict | CustomerDetails) else {}

    @field_validator("amount", "tax", "total", mode="before")
    @classmethod
    def _coerce_money(cls, value: Any) -> Decimal | None:
        return parse_decimal(value)

    @field_validator("number_of_units", mode="before")
    @classmethod
    def _coerce_units(cls, value: Any) -> int | None:
        parsed = parse_int(value)
        return parsed if parsed is not None and parsed >= 0 else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        label = value.strip().lower()
        return label if label in ("high", "medium", "low") else None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        parsed = parse_int(value)
        if parsed is None:
            return 0
        return max(0, min(100, parsed))

    @field_validator("line_items", mode="before")
    @classmethod
    def _keep_valid_lines(cls, value: Any) -> list[Any]:
        # Non-array output becomes an empty list; unusable lines are dropped.
        if not isinstance(value, list):
            return []
        lines: list[Any] = []
        for raw in value:
            if isinstance(raw, LineItem):
                lines.append(raw)
                continue
            if not isinstance(raw, dict):
                continue
            sku = raw.get("sku")
            quantity = parse_int(raw.get("quantity"))
            if sku is None or not str(sku).strip() or quantity is None or quantity <= 0:
                continue
            lines.append(raw)
        return lines

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_text(cls, value: Any) -> str:
        return str(value) if value is not None else ""

    def requested_quantities(self) -> list[tuple[str, int]]:
        """Ordered (sku, quantity) pairs for reconciliation."""
        return [(item.sku, item.quantity) for item in self.line_items]
