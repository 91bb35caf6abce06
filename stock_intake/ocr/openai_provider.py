"""OpenAI vision provider for invoice OCR.

Sends the invoice image straight to a vision-capable chat model and asks for
the invoice through function calling, so the answer arrives as JSON arguments.
Used when the service runs without the backend OCR endpoint.

Includes retry logic with exponential backoff for transient API errors.
"""

import base64
import json
import logging
import os
from typing import Any

from openai import OpenAI
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from stock_intake.ocr.base import OCRProvider
from stock_intake.ocr.schema import OCRData, OCRResult
from stock_intake.shared.config import Settings

logger = logging.getLogger(__name__)

FUNCTION_NAME = "extract_supplier_invoice"


class OpenAIOCRProvider(OCRProvider):
    """Invoice OCR using an OpenAI vision model.

    Requires ``APP_OPENAI_API_KEY`` or ``OPENAI_API_KEY``.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def _api_key(self) -> str | None:
        return self.settings.openai_api_key or os.getenv("OPENAI_API_KEY")

    def is_available(self) -> bool:
        """Check if an OpenAI API key is configured."""
        return bool(self._api_key())

    def extract_invoice(
        self,
        establishment_id: str,
        image: bytes,
        filename: str,
        content_type: str,
    ) -> OCRResult:
        """Extract the invoice in ``image`` with a single vision call.

        Args:
            establishment_id: Establishment the invoice belongs to (logged only)
            image: Raw image bytes
            filename: Original file name
            content_type: MIME type of the image

        Returns:
            OCRResult with invoice data or error, provider='openai'
        """
        api_key = self._api_key()
        if not api_key:
            return self._failure("OpenAI API key not configured")

        if not image:
            return self._failure("Empty image provided")

        try:
            if self._client is None or self._client.api_key != api_key:
                self._client = OpenAI(api_key=api_key)

            response = self._call_openai_with_retry(self._image_url(image, content_type))

            message = response.choices[0].message
            if message.function_call is None:
                return self._failure("No function call in API response")

            payload: dict[str, Any] = json.loads(message.function_call.arguments)
            confidence = float(payload.pop("confidence", 0) or 0)
            warnings = [str(w) for w in payload.pop("warnings", None) or []]
            data = OCRData.model_validate(payload)

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from OpenAI response: {e}")
            return self._failure(f"JSON parsing failed: {str(e)}")
        except ValidationError as e:
            logger.warning(f"OpenAI returned malformed invoice for {filename}: {e}")
            return self._failure(f"Malformed OCR data: {e.error_count()} invalid fields")
        except Exception as e:
            logger.error(f"OpenAI OCR failed for establishment {establishment_id}: {e}")
            return self._failure(f"OCR failed: {str(e)}")

        if not data.line_items:
            warnings.append("No se detectaron items en la factura")

        return OCRResult(
            success=True,
            data=data,
            confidence=min(max(confidence, 0.0), 1.0),
            warnings=warnings,
            provider=self.provider_name,
        )

    @retry(
        retry=retry_if_exception_type((Exception,)),
        wait=wait_exponential_jitter(initial=1, max=60),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_openai_with_retry(self, image_url: str) -> Any:
        """Call the chat completions API with the image attached.

        Raises:
            Exception: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=[
                {
                    "role": "system",
                    "content": "You read Argentine supplier invoices for a stock system.",
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self._build_prompt()},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            functions=[self._get_invoice_schema()],
            function_call={"name": FUNCTION_NAME},
            temperature=0,
        )

    @staticmethod
    def _image_url(image: bytes, content_type: str) -> str:
        encoded = base64.b64encode(image).decode("ascii")
        return f"data:{content_type or 'image/jpeg'};base64,{encoded}"

    def _build_prompt(self) -> str:
        return """Extract the invoice in the image.

Instructions:
- vendor is the ISSUER of the invoice, not the customer
- vendor.taxId is the issuer CUIT exactly as printed (e.g. 30-12345678-9)
- invoiceDate as YYYY-MM-DD
- Argentine decimals: "1.234,56" -> 1234.56
- one lineItems entry per product row; quantity defaults to 1 when missing
- unitPrice and total per row as printed
- confidence: your certainty that the reading is correct, 0 to 1
- warnings: short notes about unreadable or doubtful parts
- null for any field not clearly present"""

    def _get_invoice_schema(self) -> dict[str, Any]:
        nullable_string = {"type": ["string", "null"]}
        nullable_number = {"type": ["number", "null"]}
        return {
            "name": FUNCTION_NAME,
            "description": "Structured data of a supplier invoice",
            "parameters": {
                "type": "object",
                "properties": {
                    "invoiceNumber": nullable_string,
                    "invoiceType": nullable_string,
                    "invoiceLetter": nullable_string,
                    "invoiceDate": nullable_string,
                    "subtotal": nullable_number,
                    "taxAmount": nullable_number,
                    "total": nullable_number,
                    "currency": {"type": "string"},
                    "vendor": {
                        "type": "object",
                        "properties": {
                            "name": nullable_string,
                            "taxId": nullable_string,
                            "address": nullable_string,
                            "phone": nullable_string,
                        },
                    },
                    "cae": nullable_string,
                    "caeDueDate": nullable_string,
                    "lineItems": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "description": {"type": "string"},
                                "quantity": {"type": "number"},
                                "unitPrice": {"type": "number"},
                                "total": {"type": "number"},
                            },
                            "required": ["description"],
                        },
                    },
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "warnings": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["vendor", "lineItems"],
            },
        }

    def _failure(self, error: str) -> OCRResult:
        return OCRResult(success=False, error=error, provider=self.provider_name)
