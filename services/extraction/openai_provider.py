"""OpenAI-compatible extraction provider for invoice field extraction.

Talks to any OpenAI-compatible chat completions API (OpenAI itself, Groq,
vLLM, ...) selected with ``Settings.openai_base_url``. The model is asked for
a JSON object via ``response_format``; the reply is validated against the
invoice schema by the base class.

A single call is made per invoice. Timeouts are enforced by the client and
surface as ExtractionError.
"""

import logging
import os

from openai import AsyncOpenAI

from services.extraction.base import ExtractionProvider
from services.shared.config import Settings
from services.shared.errors import ExtractionError

logger = logging.getLogger(__name__)


class OpenAIExtractionProvider(ExtractionProvider):
    """Extraction provider backed by an OpenAI-compatible chat completions API.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
            client: Optional preconfigured client (created lazily otherwise)
        """
        super().__init__(settings)
        self._client = client

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if an API key is configured.

        Returns:
            True if a client was injected or OPENAI_API_KEY is set
        """
        return self._client is not None or os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if api_key is None:
                raise ExtractionError(
                    "OPENAI_API_KEY environment variable not set", provider=self.provider_name
                )
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.settings.openai_base_url,
                timeout=self.settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _complete(self, prompt: str) -> str | None:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {
                    "role": "system",
                    "content": (
                        "You are an invoice data extraction assistant. Reply with JSON only."
                    ),
                },
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0,  # Deterministic output
        )

        if not response.choices:
            raise ExtractionError("No choices in API response", provider=self.provider_name)

        logger.debug(f"OpenAI extraction used model {self.settings.openai_model}")
        return response.choices[0].message.content
