"""Ollama-based extraction provider for self-hosted LLM inference.

Uses a local Ollama server for structured invoice extraction, keeping
invoice contents on-premises. Ollama's JSON mode is requested so the reply
is a single JSON object.

Requires Ollama server running (default localhost:11434).
See: https://ollama.ai/
"""

import logging

import httpx

from services.extraction.base import ExtractionProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider for self-hosted LLM inference.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
            client: Optional shared HTTP client
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._client = client or httpx.AsyncClient(timeout=settings.llm_timeout_seconds)

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if an Ollama server and model are configured.

        Returns:
            True if base URL and model name are set
        """
        return bool(self._base_url and self._model)

    async def health_check(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = await self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _complete(self, prompt: str) -> str | None:
        response = await self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {
                    "temperature": 0,  # Deterministic output
                    "num_predict": 2048,
                },
            },
        )
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result
