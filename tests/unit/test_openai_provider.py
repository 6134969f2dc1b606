"""Unit tests for OpenAIExtractionProvider.

The AsyncOpenAI client is replaced with a mock; no network calls are made.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.extraction.openai_provider import OpenAIExtractionProvider
from services.shared.config import Settings
from services.shared.errors import ExtractionError


def completion(content: str | None) -> MagicMock:
    response = MagicMock()
    choice = MagicMock()
    choice.message.content = content
    response.choices = [choice]
    return response


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock()
    return mock


@pytest.fixture
def provider(client: MagicMock) -> OpenAIExtractionProvider:
    return OpenAIExtractionProvider(Settings(openai_model="gpt-4o-mini"), client=client)


class TestOpenAIExtractionProvider:
    """Tests for OpenAIExtractionProvider."""

    def test_provider_name(self, provider: OpenAIExtractionProvider) -> None:
        assert provider.provider_name == "openai"

    def test_unavailable_without_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        assert OpenAIExtractionProvider(Settings()).is_available() is False

    @pytest.mark.asyncio
    async def test_requests_json_object(
        self, provider: OpenAIExtractionProvider, client: MagicMock
    ) -> None:
        payload = {
            "invoice_number": "INV-1001",
            "confidence_score": 92,
            "line_items": [{"sku": "W-100", "quantity": 10}],
        }
        client.chat.completions.create.return_value = completion(json.dumps(payload))

        invoice = await provider.extract_invoice_fields("INVOICE INV-1001 W-100 x10")

        assert invoice.invoice_number == "INV-1001"
        assert invoice.requested_quantities() == [("W-100", 10)]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0
        assert "INVOICE INV-1001" in kwargs["messages"][-1]["content"]
        client.chat.completions.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_choices(self, provider: OpenAIExtractionProvider, client: MagicMock) -> None:
        response = MagicMock()
        response.choices = []
        client.chat.completions.create.return_value = response

        with pytest.raises(ExtractionError, match="No choices"):
            await provider.extract_invoice_fields("INVOICE")

    @pytest.mark.asyncio
    async def test_api_error_is_extraction_error(
        self, provider: OpenAIExtractionProvider, client: MagicMock
    ) -> None:
        client.chat.completions.create.side_effect = RuntimeError("rate limited")

        with pytest.raises(ExtractionError) as exc_info:
            await provider.extract_invoice_fields("INVOICE")

        assert exc_info.value.details["cause"] == "rate limited"
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_key_fails_on_call(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIExtractionProvider(Settings())

        with pytest.raises(ExtractionError, match="OPENAI_API_KEY"):
            await provider.extract_invoice_fields("INVOICE")

    @pytest.mark.asyncio
    async def test_health_check_follows_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        assert await OpenAIExtractionProvider(Settings()).health_check() is False

    @pytest.mark.asyncio
    async def test_aclose_closes_client(
        self, provider: OpenAIExtractionProvider, client: MagicMock
    ) -> None:
        client.close = AsyncMock()

        await provider.aclose()
        await provider.aclose()

        client.close.assert_awaited_once()
