"""Factory for creating OCR providers based on configuration.

Registry of provider classes keyed by the ``ocr_provider`` setting, open to
runtime registration of new providers.
"""

import logging

from stock_intake.ocr.backend_provider import BackendOCRProvider
from stock_intake.ocr.base import OCRProvider
from stock_intake.ocr.openai_provider import OpenAIOCRProvider
from stock_intake.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available OCR providers."""

    _providers: dict[str, type[OCRProvider]] = {
        "backend": BackendOCRProvider,
        "openai": OpenAIOCRProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[OCRProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.ocr_provider)
            provider_class: Class implementing OCRProvider
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered OCR provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[OCRProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown OCR provider: '{name}'. Available providers: {available}")
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_ocr_provider(settings: Settings) -> OCRProvider:
    """Create the OCR provider selected by ``settings.ocr_provider``.

    Logs a warning when the provider is not configured (e.g. missing API key).

    Raises:
        ValueError: If configured provider is unknown
    """
    provider_name = settings.ocr_provider
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)

    if not provider.is_available():
        logger.warning(
            f"OCR provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, backend URL)."
        )

    logger.info(f"Created OCR provider: {provider_name}")
    return provider
