"""Resolve OCR vendor data and invoice lines against the establishment catalog."""

import logging
import re
from collections.abc import Sequence

from stock_intake.catalog.schema import Product, Supplier
from stock_intake.matching.similarity import (
    PRODUCT_MATCH_THRESHOLD,
    SUPPLIER_MATCH_THRESHOLD,
    Match,
    best_match,
)

logger = logging.getLogger(__name__)

SupplierMatch = Match[Supplier]
ProductMatch = Match[Product]

_TAX_ID_SEPARATORS = re.compile(r"[-\s]")


def normalize_tax_id(tax_id: str | None) -> str:
    """Strip hyphens and whitespace from a tax id (CUIT "30-12345678-9" -> "30123456789")."""
    return _TAX_ID_SEPARATORS.sub("", tax_id or "")


def resolve_supplier(
    vendor_name: str | None,
    vendor_tax_id: str | None,
    suppliers: Sequence[Supplier],
    threshold: float = SUPPLIER_MATCH_THRESHOLD,
) -> SupplierMatch:
    """Select the supplier an invoice was issued by.

    An exact tax id match wins outright at confidence 1.0. Otherwise the vendor
    name is scored against each supplier's name and business name and the best
    supplier is accepted when it reaches ``threshold``.

    Args:
        vendor_name: Vendor name read from the invoice
        vendor_tax_id: Vendor tax id read from the invoice
        suppliers: Supplier catalog, in catalog order
        threshold: Minimum name-match confidence

    Returns:
        SupplierMatch, empty when nothing qualifies
    """
    if not vendor_name and not vendor_tax_id:
        return Match()

    if vendor_tax_id:
        wanted = normalize_tax_id(vendor_tax_id)
        for supplier in suppliers:
            if supplier.tax_id and normalize_tax_id(supplier.tax_id) == wanted:
                logger.debug(f"Supplier {supplier.id} matched by tax id")
                return Match(candidate=supplier, confidence=1.0)

    if vendor_name:
        return best_match(
            vendor_name,
            suppliers,
            lambda supplier: (supplier.name, supplier.business_name),
            threshold,
        )

    return Match()


def resolve_product(
    description: str | None,
    products: Sequence[Product],
    threshold: float = PRODUCT_MATCH_THRESHOLD,
) -> ProductMatch:
    """Find the catalog product an invoice line refers to.

    Args:
        description: Line description read from the invoice
        products: Product catalog, in catalog order
        threshold: Minimum confidence

    Returns:
        ProductMatch, empty for an empty catalog, blank description or no match
    """
    if not description or not description.strip() or not products:
        return Match()
    return best_match(description, products, lambda product: (product.name,), threshold)


def filter_products(query: str, products: Sequence[Product]) -> list[Product]:
    """Search products by name, barcode or SKU; a blank query returns everything."""
    needle = query.strip()
    if not needle:
        return list(products)
    lowered = needle.lower()
    return [
        product
        for product in products
        if lowered in product.name.lower()
        or (product.barcode and needle in product.barcode)
        or (product.sku and lowered in product.sku.lower())
    ]


def filter_suppliers(query: str, suppliers: Sequence[Supplier]) -> list[Supplier]:
    """Search suppliers by name, business name or tax id; a blank query returns everything."""
    needle = query.strip()
    if not needle:
        return list(suppliers)
    lowered = needle.lower()
    return [
        supplier
        for supplier in suppliers
        if lowered in supplier.name.lower()
        or (supplier.business_name and lowered in supplier.business_name.lower())
        or (supplier.tax_id and needle in supplier.tax_id)
    ]
