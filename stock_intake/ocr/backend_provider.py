"""OCR through the establishment backend.

The backend runs OCR with the establishment's own OpenAI integration and
answers with ``{success, data, confidence, warnings, error}``.
"""

import logging

import httpx
from pydantic import ValidationError

from stock_intake.catalog.client import CatalogAPIError, CatalogClient
from stock_intake.ocr.base import OCRProvider
from stock_intake.ocr.schema import OCRData, OCRResult
from stock_intake.shared.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Error al procesar la imagen"


class BackendOCRProvider(OCRProvider):
    """OCR provider that delegates to the backend OCR endpoint."""

    def __init__(self, settings: Settings, client: CatalogClient | None = None) -> None:
        super().__init__(settings)
        self._client = client or CatalogClient(settings)

    @property
    def provider_name(self) -> str:
        return "backend"

    def is_available(self) -> bool:
        return bool(self.settings.backend_base_url)

    def extract_invoice(
        self,
        establishment_id: str,
        image: bytes,
        filename: str,
        content_type: str,
    ) -> OCRResult:
        if not image:
            return self._failure("Empty image provided")

        try:
            body = self._client.process_invoice_ocr(establishment_id, image, filename, content_type)
        except CatalogAPIError as e:
            logger.warning(f"Backend OCR rejected {filename}: {e.message}")
            return self._failure(e.message)
        except httpx.HTTPError as e:
            logger.error(f"Backend OCR request failed: {e}")
            return self._failure(f"OCR request failed: {str(e)}")

        if not body.get("success") or not body.get("data"):
            return self._failure(body.get("error") or DEFAULT_ERROR)

        try:
            data = OCRData.model_validate(body["data"])
        except ValidationError as e:
            logger.warning(f"Backend OCR returned malformed data: {e}")
            return self._failure(f"Malformed OCR data: {e.error_count()} invalid fields")

        return OCRResult(
            success=True,
            data=data,
            confidence=min(max(float(body.get("confidence") or 0), 0.0), 1.0),
            warnings=list(body.get("warnings") or []),
            provider=self.provider_name,
        )

    def _failure(self, error: str) -> OCRResult:
        return OCRResult(success=False, error=error, provider=self.provider_name)
