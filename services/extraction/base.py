"""Abstract base class for invoice extraction providers.

Enables switching between LLM backends (OpenAI-compatible APIs, Ollama)
while keeping a single prompt, a single response schema and a single
failure mode (ExtractionError).

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from services.extraction.schema import ExtractedInvoice
from services.shared.config import Settings
from services.shared.errors import ExtractionError

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Analyze this invoice text and extract the following information in JSON format:
- invoice_number: Invoice number (e.g., INV-2023-XXX)
- date: Invoice date (YYYY-MM-DD)
- customer_details:
  - name: Customer's name
  - email: Customer's email
  - phone: Customer's phone number
  - shipping_address: Shipping address
- amount: Subtotal before tax
- tax: Tax amount
- total: Total amount including tax
- number_of_units: Total number of items in invoice
- confidence: Extraction confidence (high/medium/low)
- confidence_score: Score 0-100
- line_items: Array of items with:
  - sku: Product SKU
  - name: Item name
  - quantity: Number of units
  - unit_price: Price per unit
  - total: Total for this item
- notes: Any important notes

Return a single JSON object only. Use null for any field not clearly present.

Text: {invoice_text}"""


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Implementations perform exactly one LLM call per invoice and never retry.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    async def extract_invoice_fields(self, invoice_text: str) -> ExtractedInvoice:
        """Extract structured invoice data from raw invoice text.

        Args:
            invoice_text: Text extracted from the invoice PDF

        Returns:
            Validated and normalized invoice data

        Raises:
            ExtractionError: If the LLM call fails or returns no usable JSON object
        """
        if not invoice_text or not invoice_text.strip():
            raise ExtractionError("Empty invoice text provided", provider=self.provider_name)

        prompt = self.build_prompt(invoice_text)
        try:
            content = await self._complete(prompt)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(f"{self.provider_name} extraction call failed: {e}")
            raise ExtractionError(
                "Failed to extract invoice data. Please try again.",
                provider=self.provider_name,
                cause=str(e),
            ) from e

        return self.parse_response(content)

    def build_prompt(self, invoice_text: str) -> str:
        """Build the extraction instruction for the given invoice text."""
        return EXTRACTION_PROMPT.format(invoice_text=invoice_text)

    def parse_response(self, content: str | None) -> ExtractedInvoice:
        """Parse and validate raw LLM output.

        Args:
            content: Message content returned by the model

        Returns:
            Validated invoice data

        Raises:
            ExtractionError: If the content is not a JSON object matching the schema
        """
        if not content or not content.strip():
            raise ExtractionError(
                "Empty response from extraction model", provider=self.provider_name
            )

        try:
            payload: Any = json.loads(content)
        except json.JSONDecodeError:
            payload = None
        try:
            if payload is None:
                payload = json.loads(self._strip_code_fence(content))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from {self.provider_name} response: {e}")
            raise ExtractionError(
                f"Extraction response is not valid JSON: {e}", provider=self.provider_name
            ) from e

        if not isinstance(payload, dict):
            raise ExtractionError(
                f"Extraction response is a JSON {type(payload).__name__}, expected an object",
                provider=self.provider_name,
            )

        try:
            return ExtractedInvoice.model_validate(payload)
        except PydanticValidationError as e:
            raise ExtractionError(
                f"Extraction response does not match invoice schema: {e.error_count()} errors",
                provider=self.provider_name,
            ) from e

    @staticmethod
    def _strip_code_fence(content: str) -> str:
        """Pull the JSON body out of markdown code blocks or surrounding prose."""
        fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if fenced:
            return fenced.group(1).strip()
        braced = re.search(r"\{[\s\S]*\}", content)
        if braced:
            return braced.group(0)
        return content.strip()

    @abstractmethod
    async def _complete(self, prompt: str) -> str | None:
        """Send a single completion request and return the message content.

        Args:
            prompt: Extraction prompt for the LLM

        Returns:
            Raw message content
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured (API key, server URL).

        Returns:
            True if provider can be used, False otherwise
        """

    async def health_check(self) -> bool:
        """Check whether the backend can serve extraction requests.

        Providers without a remote check report their configuration state.
        """
        return self.is_available()

    async def aclose(self) -> None:
        """Release network clients held by the provider."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'ollama')
        """
