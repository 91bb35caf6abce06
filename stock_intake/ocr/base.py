"""Abstract base class for invoice OCR providers.

Enables switching between the backend OCR endpoint and a direct OpenAI vision
call while keeping one result type.
"""

from abc import ABC, abstractmethod

from stock_intake.ocr.schema import OCRResult
from stock_intake.shared.config import Settings


class OCRProvider(ABC):
    """Interface for turning an invoice image into structured invoice data."""

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract_invoice(
        self,
        establishment_id: str,
        image: bytes,
        filename: str,
        content_type: str,
    ) -> OCRResult:
        """Extract structured invoice data from an image.

        Implementations report failures through ``OCRResult.error`` instead of raising.

        Args:
            establishment_id: Establishment the invoice belongs to
            image: Raw image bytes
            filename: Original file name
            content_type: MIME type of the image

        Returns:
            OCRResult with invoice data or error
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the provider is configured."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier for logging/metrics."""
