"""Invoice data returned by OCR providers.

Field set follows Argentine supplier invoices (invoice letter, CAE) since that is
what establishments upload.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


class OCRModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class OCRVendor(OCRModel):
    """Issuer of the invoice."""

    name: str | None = None
    tax_id: str | None = None
    address: str | None = None
    phone: str | None = None


class OCRLineItem(OCRModel):
    """Raw invoice line as read by OCR."""

    description: str = ""
    quantity: float = 1
    unit_price: float = 0
    total: float = 0

    @field_validator("description", "quantity", "unit_price", "total", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class OCRData(OCRModel):
    """Structured invoice extracted from an image."""

    invoice_number: str | None = Field(None, description="Invoice number, e.g. 0001-00001234")
    invoice_type: str | None = None
    invoice_letter: str | None = Field(None, description="A, B or C")
    invoice_date: str | None = Field(None, description="Issue date (YYYY-MM-DD)")
    subtotal: float | None = None
    tax_amount: float | None = None
    total: float | None = None
    currency: str = "ARS"
    vendor: OCRVendor = Field(default_factory=OCRVendor)
    cae: str | None = None
    cae_due_date: str | None = None
    line_items: list[OCRLineItem] = Field(default_factory=list)

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, value: Any) -> Any:
        return value or "ARS"

    @field_validator("vendor", mode="before")
    @classmethod
    def _default_vendor(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("line_items", mode="before")
    @classmethod
    def _default_line_items(cls, value: Any) -> Any:
        return [] if value is None else value


class OCRResult(BaseModel):
    """Result of an OCR operation.

    Attributes:
        success: Whether operation succeeded
        data: Extracted invoice, None on failure
        confidence: Provider confidence (0-1)
        warnings: Non-fatal issues worth showing to the operator
        error: Error message if operation failed
        provider: Name of provider that performed OCR
    """

    success: bool
    data: OCRData | None = None
    confidence: float = Field(0.0, ge=0, le=1)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    provider: str
