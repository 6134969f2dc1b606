"""PDF text extraction for inbound invoices.

Downloads invoice PDFs over HTTP and converts them to plain text:
- Bounded download via httpx (timeout from settings)
- Text layer extraction via pdfminer.six
- Network and parsing failures mapped to FetchError / ParseError

No retries are performed; callers decide whether to surface or abort.

Based on pdfminer.six high-level API:
https://pdfminersix.readthedocs.io/en/latest/reference/highlevel.html
"""

import asyncio
import io
import logging

import httpx
from pdfminer.high_level import extract_text
from pdfminer.pdfparser import PDFSyntaxError

from services.shared.config import Settings
from services.shared.errors import FetchError, ParseError

logger = logging.getLogger(__name__)


class PDFTextService:
    """Fetches invoice PDFs by URL and returns their raw text."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize PDF text service.

        Args:
            settings: Application settings
            client: Optional shared HTTP client (created lazily otherwise)
        """
        self.settings = settings
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.pdf_fetch_timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> bytes:
        """Download a PDF document.

        Args:
            url: Location of the PDF resource

        Returns:
            Raw response body

        Raises:
            FetchError: On network error, timeout or non-2xx response
        """
        if not url or not url.strip():
            raise FetchError("No PDF URL provided")

        try:
            response = await self._get_client().get(url)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching PDF from {url}", url=url) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch PDF from {url}: {e}", url=url) from e

        if not response.is_success:
            raise FetchError(
                f"Failed to fetch PDF from {url}: HTTP {response.status_code}",
                url=url,
                upstream_status=response.status_code,
            )

        logger.info(f"Fetched PDF from {url} ({len(response.content)} bytes)")
        return response.content

    @staticmethod
    def extract_text(pdf_bytes: bytes) -> str:
        """Extract the text layer of a PDF.

        Args:
            pdf_bytes: PDF file content

        Returns:
            Extracted text

        Raises:
            ParseError: If the content is empty, not a readable PDF, or has no
                text layer (scanned images)
        """
        if not pdf_bytes:
            raise ParseError("Empty PDF document")

        try:
            text = extract_text(io.BytesIO(pdf_bytes))
        except PDFSyntaxError as e:
            raise ParseError(f"Unreadable PDF document: {e}") from e
        except Exception as e:
            raise ParseError(f"PDF text extraction failed: {e}") from e

        if not text.strip():
            raise ParseError("PDF has no extractable text")
        return text

    async def extract_from_url(self, url: str) -> str:
        """Fetch a PDF and return its text.

        Args:
            url: Location of the PDF resource

        Returns:
            Extracted text

        Raises:
            FetchError: If the download fails
            ParseError: If the PDF cannot be read
        """
        pdf_bytes = await self.fetch(url)
        text = await asyncio.to_thread(self.extract_text, pdf_bytes)
        logger.debug(f"Extracted {len(text)} characters of text from {url}")
        return text
