"""Catalog entities owned by the establishment backend.

Products, suppliers and stock movements are referenced, never owned, by the
ingestion workflow. The backend speaks camelCase JSON, so every model accepts
both the wire alias and the Python field name.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CatalogModel(BaseModel):
    """Base model for camelCase backend payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class ProductCategory(CatalogModel):
    id: str
    name: str
    color: str | None = None


class Product(CatalogModel):
    """Catalog product."""

    id: str
    name: str
    barcode: str | None = None
    sku: str | None = None
    cost_price: float = 0.0
    sale_price: float = 0.0
    current_stock: float = 0.0
    unit: str = "unidad"
    category: ProductCategory | None = None


class Supplier(CatalogModel):
    """Catalog supplier."""

    id: str
    name: str
    business_name: str | None = None
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    notes: str | None = None
    is_active: bool = True


class NewProduct(CatalogModel):
    """Payload for creating a product from an invoice line."""

    establishment_id: str
    name: str
    cost_price: float
    sale_price: float
    current_stock: float = 0
    min_stock: float = 0
    unit: str = "unidad"
    track_stock: bool = True
    is_active: bool = True


class NewStockMovement(CatalogModel):
    """Payload for creating a stock movement."""

    establishment_id: str
    product_id: str
    type: str = Field(default="entrada", description="Movement type; invoices always add stock")
    quantity: float
    unit_cost: float
    reason: str | None = None
    notes: str | None = None
    invoice_number: str | None = None


class StockMovement(CatalogModel):
    """Persisted stock movement as returned by the backend."""

    id: str
    product_id: str
    type: str
    quantity: float
    unit_cost: float | None = None
    notes: str | None = None
    invoice_number: str | None = None
