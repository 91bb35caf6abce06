"""REST client for the establishment backend.

Wraps the product, supplier, stock movement, OCR and integration endpoints the
ingestion workflow depends on. Every call is scoped by establishment id.

Reads are retried on transport errors with exponential backoff. Writes are
never retried here: creating a product or a stock movement is not idempotent on
the backend, so the caller decides whether to re-issue it and passes an
idempotency key when it does.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from stock_intake.catalog.schema import (
    NewProduct,
    NewStockMovement,
    Product,
    StockMovement,
    Supplier,
)
from stock_intake.shared.config import Settings

logger = logging.getLogger(__name__)


class CatalogAPIError(Exception):
    """Backend request failed.

    Attributes:
        status_code: HTTP status, or None for transport failures
        message: Message reported by the backend
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CatalogClient:
    """Synchronous client for the establishment REST backend."""

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Application settings
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        headers = {"Accept": "application/json"}
        if settings.backend_token:
            headers["Authorization"] = f"Bearer {settings.backend_token}"

        self._client = httpx.Client(
            base_url=settings.backend_base_url,
            timeout=settings.http_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # Reads

    def get_products(self, establishment_id: str, active_only: bool = True) -> list[Product]:
        """List catalog products for an establishment."""
        body = self._get_json(
            "/api/products",
            params={"establishmentId": establishment_id, "isActive": _flag(active_only)},
        )
        return [Product.model_validate(item) for item in body.get("products") or []]

    def get_suppliers(self, establishment_id: str, active_only: bool = True) -> list[Supplier]:
        """List suppliers for an establishment."""
        body = self._get_json(
            "/api/suppliers",
            params={"establishmentId": establishment_id, "isActive": _flag(active_only)},
        )
        return [Supplier.model_validate(item) for item in body.get("suppliers") or []]

    def has_openai_integration(self, establishment_id: str) -> bool:
        """Check whether the establishment has an active OpenAI integration.

        The backend's OCR endpoint depends on it. Any failure counts as "not configured".
        """
        try:
            body = self._get_json(
                "/api/integrations/OPENAI", params={"establishmentId": establishment_id}
            )
        except (CatalogAPIError, httpx.HTTPError) as e:
            logger.info(f"OpenAI integration lookup failed: {e}")
            return False
        return bool((body.get("data") or {}).get("isActive") is True)

    # Writes

    def create_product(self, product: NewProduct, idempotency_key: str | None = None) -> Product:
        """Create a catalog product."""
        body = self._request(
            "POST",
            "/api/products",
            json=product.model_dump(by_alias=True),
            headers=_idempotency_headers(idempotency_key),
        )
        return Product.model_validate(body.get("product") or body)

    def create_stock_movement(
        self, movement: NewStockMovement, idempotency_key: str | None = None
    ) -> StockMovement:
        """Create a stock movement."""
        body = self._request(
            "POST",
            "/api/stock-movements",
            json=movement.model_dump(by_alias=True, exclude_none=True),
            headers=_idempotency_headers(idempotency_key),
        )
        return StockMovement.model_validate(body.get("movement") or body)

    def process_invoice_ocr(
        self,
        establishment_id: str,
        image: bytes,
        filename: str,
        content_type: str,
    ) -> dict[str, Any]:
        """Send an invoice image to the backend OCR endpoint.

        Returns:
            Raw OCR response body (success, data, confidence, warnings, error)
        """
        return self._request(
            "POST",
            "/api/ocr/invoice",
            data={"establishmentId": establishment_id},
            files={"image": (filename, image, content_type)},
        )

    # Transport helpers

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential_jitter(initial=0.5, max=5),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """GET with retry on transport errors (connection refused, timeouts)."""
        return self._request("GET", path, params=params)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = self._client.request(method, path, **kwargs)
        if response.is_error:
            message = _error_message(response)
            logger.warning(f"{method} {path} failed with {response.status_code}: {message}")
            raise CatalogAPIError(message, status_code=response.status_code)
        result: dict[str, Any] = response.json()
        return result


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _idempotency_headers(key: str | None) -> dict[str, str]:
    return {"Idempotency-Key": key} if key else {}


def _error_message(response: httpx.Response) -> str:
    """Extract the backend's error message, falling back to the status code."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return f"HTTP error! status: {response.status_code}"
