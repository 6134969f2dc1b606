"""Unit tests for PDF download and text extraction."""

from unittest.mock import patch

import httpx
import pytest

from services.documents.service import PDFTextService
from services.shared.config import Settings
from services.shared.errors import FetchError, ParseError

PDF_URL = "https://files.example.com/invoice.pdf"


def service_with(handler: httpx.MockTransport) -> PDFTextService:
    return PDFTextService(Settings(), client=httpx.AsyncClient(transport=handler))


class TestFetch:
    """Tests for PDFTextService.fetch."""

    @pytest.mark.asyncio
    async def test_returns_body(self) -> None:
        service = service_with(httpx.MockTransport(lambda r: httpx.Response(200, content=b"%PDF")))

        assert await service.fetch(PDF_URL) == b"%PDF"

    @pytest.mark.asyncio
    async def test_non_2xx_is_fetch_error(self) -> None:
        service = service_with(httpx.MockTransport(lambda r: httpx.Response(404)))

        with pytest.raises(FetchError) as exc_info:
            await service.fetch(PDF_URL)

        assert exc_info.value.details["upstream_status"] == 404
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout_is_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        service = service_with(httpx.MockTransport(handler))

        with pytest.raises(FetchError, match="Timed out"):
            await service.fetch(PDF_URL)

    @pytest.mark.asyncio
    async def test_connection_error_is_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        service = service_with(httpx.MockTransport(handler))

        with pytest.raises(FetchError):
            await service.fetch(PDF_URL)

    @pytest.mark.asyncio
    async def test_empty_url(self) -> None:
        with pytest.raises(FetchError):
            await PDFTextService(Settings()).fetch("  ")


class TestExtractText:
    """Tests for PDF text extraction."""

    def test_empty_document(self) -> None:
        with pytest.raises(ParseError, match="Empty"):
            PDFTextService.extract_text(b"")

    def test_not_a_pdf(self) -> None:
        with pytest.raises(ParseError):
            PDFTextService.extract_text(b"<html>Not found</html>")

    def test_scanned_pdf_without_text_layer(self) -> None:
        with patch("services.documents.service.extract_text", return_value=" \n\x0c"):
            with pytest.raises(ParseError, match="no extractable text") as exc_info:
                PDFTextService.extract_text(b"%PDF-1.7 scanned")

        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_extract_from_url(self) -> None:
        service = service_with(httpx.MockTransport(lambda r: httpx.Response(200, content=b"%PDF")))

        with patch(
            "services.documents.service.extract_text", return_value="INVOICE INV-1"
        ) as mock_extract:
            text = await service.extract_from_url(PDF_URL)

        assert text == "INVOICE INV-1"
        assert mock_extract.call_args.args[0].read() == b"%PDF"
        await service.aclose()
