"""Editable reconciliation of invoice lines against the product catalog.

Each line is in exactly one association state:

- matched: ``product_id`` set (automatic match or operator choice)
- new product: ``is_new_product`` set, the product is created on commit
- unassociated: neither, which blocks the commit

Association fields only change through ``associate_product`` and
``mark_as_new_product``; ``update_field`` handles everything else.
"""

import logging
import uuid
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from stock_intake.catalog.schema import Product
from stock_intake.ingestion.errors import LineItemNotFoundError, ValidationError
from stock_intake.matching.resolvers import resolve_product
from stock_intake.matching.similarity import PRODUCT_MATCH_THRESHOLD
from stock_intake.ocr.schema import OCRLineItem

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"description", "quantity", "unit_price", "total", "is_editing"})
ASSOCIATION_FIELDS = frozenset({"product_id", "product_name", "match_confidence", "is_new_product"})

UNASSOCIATED_MESSAGE = (
    "Todos los items deben estar asociados a un producto o marcados como nuevo producto"
)
NO_ITEMS_MESSAGE = "La factura no tiene items para ingresar"


class LineItem(BaseModel):
    """One invoice line under review."""

    id: str
    description: str = ""
    quantity: float = 1
    unit_price: float = 0
    total: float = 0
    product_id: str | None = None
    product_name: str | None = None
    match_confidence: float = Field(0.0, ge=0, le=1)
    is_new_product: bool = False
    is_editing: bool = False

    @property
    def is_associated(self) -> bool:
        return self.product_id is not None or self.is_new_product


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class LineItemBook:
    """Ordered, editable collection of line items.

    ``revision`` increases on every change so callers can tell whether the
    items changed since they last looked.
    """

    def __init__(self, items: Iterable[LineItem] = ()) -> None:
        self._items: list[LineItem] = list(items)
        self.revision = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self._items)

    @property
    def items(self) -> list[LineItem]:
        return list(self._items)

    def get(self, item_id: str) -> LineItem:
        for item in self._items:
            if item.id == item_id:
                return item
        raise LineItemNotFoundError(item_id)

    def seed(
        self,
        ocr_items: Sequence[OCRLineItem],
        products: Sequence[Product],
        threshold: float = PRODUCT_MATCH_THRESHOLD,
    ) -> list[LineItem]:
        """Replace the items with one line per OCR item, auto-matched to the catalog.

        Matching happens once here; later description edits do not re-match.
        """
        items = []
        for index, raw in enumerate(ocr_items):
            match = resolve_product(raw.description, products, threshold)
            items.append(
                LineItem(
                    id=_new_id(f"item-{index}"),
                    description=raw.description,
                    quantity=raw.quantity,
                    unit_price=raw.unit_price,
                    total=raw.total,
                    product_id=match.candidate.id if match.candidate else None,
                    product_name=match.candidate.name if match.candidate else None,
                    match_confidence=match.confidence,
                )
            )

        matched = sum(1 for item in items if item.product_id)
        logger.info(f"Seeded {len(items)} line items, {matched} matched to catalog products")
        self._items = items
        self._touch()
        return self.items

    def update_field(self, item_id: str, patch: dict[str, Any]) -> LineItem:
        """Merge ``patch`` into an item; quantity/unit_price changes recompute the total.

        Raises:
            ValidationError: If the patch touches association fields or unknown fields
        """
        forbidden = set(patch) & ASSOCIATION_FIELDS
        if forbidden:
            raise ValidationError(
                f"Use product association to change {', '.join(sorted(forbidden))}"
            )
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown line item fields: {', '.join(sorted(unknown))}")

        item = self.get(item_id)
        try:
            updated = LineItem.model_validate({**item.model_dump(), **patch})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid line item values: {e.error_count()} errors") from e
        if "quantity" in patch or "unit_price" in patch:
            updated.total = updated.quantity * updated.unit_price
        return self._replace(updated)

    def associate_product(self, item_id: str, product: Product | None) -> LineItem:
        """Link an item to ``product``, or unlink it when ``product`` is None."""
        item = self.get(item_id)
        updated = item.model_copy(
            update={
                "product_id": product.id if product else None,
                "product_name": product.name if product else None,
                "match_confidence": 1.0 if product else 0.0,
                "is_new_product": False,
            }
        )
        return self._replace(updated)

    def mark_as_new_product(self, item_id: str) -> LineItem:
        item = self.get(item_id)
        updated = item.model_copy(
            update={
                "product_id": None,
                "product_name": None,
                "match_confidence": 0.0,
                "is_new_product": True,
            }
        )
        return self._replace(updated)

    def remove(self, item_id: str) -> None:
        item = self.get(item_id)
        self._items = [other for other in self._items if other.id != item.id]
        self._touch()

    def add_manual(self) -> LineItem:
        """Append an empty, unassociated line for the operator to fill in."""
        item = LineItem(id=_new_id("item-new"), quantity=1, unit_price=0, total=0, is_editing=True)
        self._items.append(item)
        self._touch()
        return item

    def clear(self) -> None:
        self._items = []
        self._touch()

    def total(self) -> float:
        """Sum of line totals.

        Not compared against the total printed on the invoice.
        """
        return sum((item.total for item in self._items), 0.0)

    def unassociated(self) -> list[LineItem]:
        return [item for item in self._items if not item.is_associated]

    def validate_for_commit(self) -> None:
        """Raise ValidationError unless there are items and all are matched or new."""
        if not self._items:
            raise ValidationError(NO_ITEMS_MESSAGE)
        if self.unassociated():
            raise ValidationError(UNASSOCIATED_MESSAGE)

    def _replace(self, updated: LineItem) -> LineItem:
        self._items = [updated if item.id == updated.id else item for item in self._items]
        self._touch()
        return updated

    def _touch(self) -> None:
        self.revision += 1
