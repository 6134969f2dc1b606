"""Factory for the configured extraction provider.

``Settings.extraction_provider`` names one of the entries in ``PROVIDERS``.
"""

import logging

from services.extraction.base import ExtractionProvider
from services.extraction.ollama_provider import OllamaExtractionProvider
from services.extraction.openai_provider import OpenAIExtractionProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[ExtractionProvider]] = {
    "openai": OpenAIExtractionProvider,
    "ollama": OllamaExtractionProvider,
}


def create_extraction_service(settings: Settings) -> ExtractionProvider:
    """Create the extraction provider named by settings.extraction_provider.

    Logs a warning if the provider is not available (e.g., missing API key);
    extraction calls will then fail with ExtractionError.

    Args:
        settings: Application settings with extraction_provider field

    Returns:
        Configured extraction provider instance

    Raises:
        ValueError: If configured provider is unknown
    """
    provider_name = settings.extraction_provider
    provider_class = PROVIDERS.get(provider_name)
    if provider_class is None:
        available = ", ".join(PROVIDERS)
        raise ValueError(
            f"Unknown extraction provider: '{provider_name}'. Available providers: {available}"
        )
    provider = provider_class(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, server URL)."
        )

    logger.info(f"Created extraction provider: {provider_name}")
    return provider
