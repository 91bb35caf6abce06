"""Stock ingestion workflow: upload -> review -> confirm.

One ``IngestionWorkflow`` holds the whole state of one invoice being ingested
for one establishment: loaded catalogs, OCR result, supplier association,
line items and commit progress. The only way back from ``review`` or
``confirm`` is ``reset``.
"""

import logging
import uuid
from datetime import date
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, Field

from stock_intake.catalog.client import CatalogAPIError, CatalogClient
from stock_intake.catalog.schema import Product, Supplier
from stock_intake.ingestion.commit import (
    CommitContext,
    CommitLedger,
    CommitPlan,
    CommitReport,
    CommitTask,
)
from stock_intake.ingestion.errors import (
    CatalogEntryNotFoundError,
    CommitError,
    ValidationError,
    WorkflowStateError,
)
from stock_intake.ingestion.line_items import LineItem, LineItemBook
from stock_intake.matching.resolvers import SupplierMatch, resolve_supplier
from stock_intake.matching.similarity import Match
from stock_intake.ocr.base import OCRProvider
from stock_intake.ocr.backend_provider import DEFAULT_ERROR
from stock_intake.ocr.schema import OCRData, OCRResult
from stock_intake.shared.config import Settings

logger = logging.getLogger(__name__)


class IngestionStep(str, Enum):
    UPLOAD = "upload"
    REVIEW = "review"
    CONFIRM = "confirm"


class VendorInfo(BaseModel):
    """Vendor identity as read from the invoice."""

    name: str | None = None
    tax_id: str | None = None


class IngestionView(BaseModel):
    """Serializable snapshot of a workflow."""

    session_id: str
    establishment_id: str
    step: IngestionStep
    processing_error: str | None = None
    save_error: str | None = None
    catalog_error: str | None = None
    has_openai_integration: bool | None = None
    ocr_data: OCRData | None = None
    ocr_confidence: float = 0.0
    ocr_warnings: list[str] = Field(default_factory=list)
    invoice_number: str = ""
    invoice_date: str = ""
    notes: str = ""
    vendor: VendorInfo = Field(default_factory=VendorInfo)
    supplier: Supplier | None = None
    supplier_match_confidence: float = 0.0
    line_items: list[LineItem] = Field(default_factory=list)
    calculated_total: float = 0.0
    ocr_total: float | None = None
    commit_tasks: list[CommitTask] = Field(default_factory=list)
    items_processed: int | None = None


class IngestionWorkflow:
    """Controller for one invoice ingestion."""

    def __init__(
        self,
        establishment_id: str,
        client: CatalogClient,
        ocr_provider: OCRProvider,
        settings: Settings,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.establishment_id = establishment_id
        self.settings = settings
        self._client = client
        self._ocr = ocr_provider

        self.products: list[Product] = []
        self.suppliers: list[Supplier] = []
        self.catalog_error: str | None = None
        self.has_openai_integration: bool | None = None

        self.line_items = LineItemBook()
        self.ledger = CommitLedger()
        self._clear_invoice_state()

    # Catalogs

    def load_catalogs(self) -> None:
        """Load active products and suppliers.

        A failing catalog keeps its previous content; the error is kept in
        ``catalog_error`` so matching can still run on what is loaded.
        """
        self.catalog_error = None
        try:
            self.products = self._client.get_products(self.establishment_id)
        except (CatalogAPIError, httpx.HTTPError) as e:
            logger.error(f"Error loading products for {self.establishment_id}: {e}")
            self.catalog_error = str(e)
        try:
            self.suppliers = self._client.get_suppliers(self.establishment_id)
        except (CatalogAPIError, httpx.HTTPError) as e:
            logger.error(f"Error loading suppliers for {self.establishment_id}: {e}")
            self.catalog_error = str(e)
        logger.info(
            f"Loaded {len(self.products)} products and {len(self.suppliers)} suppliers "
            f"for {self.establishment_id}"
        )

    def check_integration(self) -> bool:
        self.has_openai_integration = self._client.has_openai_integration(self.establishment_id)
        return self.has_openai_integration

    def find_product(self, product_id: str) -> Product:
        for product in self.products:
            if product.id == product_id:
                return product
        raise CatalogEntryNotFoundError("Product", product_id)

    def find_supplier(self, supplier_id: str) -> Supplier:
        for supplier in self.suppliers:
            if supplier.id == supplier_id:
                return supplier
        raise CatalogEntryNotFoundError("Supplier", supplier_id)

    # upload -> review

    def process_image(self, image: bytes, filename: str, content_type: str) -> OCRResult:
        """Run OCR on an invoice image and seed the review.

        On failure the workflow stays in ``upload`` with ``processing_error`` set.
        """
        self._require(IngestionStep.UPLOAD, "process an invoice image")
        self.processing_error = None

        result = self._ocr.extract_invoice(self.establishment_id, image, filename, content_type)
        if not result.success or result.data is None:
            self.processing_error = result.error or DEFAULT_ERROR
            logger.warning(f"OCR failed for {filename}: {self.processing_error}")
            return result

        data = result.data
        self.ocr_data = data
        self.ocr_confidence = result.confidence
        self.ocr_warnings = list(result.warnings)
        self.invoice_number = data.invoice_number or ""
        self.invoice_date = data.invoice_date or date.today().isoformat()
        self.vendor = VendorInfo(name=data.vendor.name or "", tax_id=data.vendor.tax_id or "")

        self.supplier_match = resolve_supplier(
            self.vendor.name,
            self.vendor.tax_id,
            self.suppliers,
            self.settings.supplier_match_threshold,
        )
        self.line_items.seed(data.line_items, self.products, self.settings.product_match_threshold)
        self.ledger.clear()

        logger.info(
            f"OCR read {len(data.line_items)} items from {filename} "
            f"(confidence {result.confidence:.2f}, supplier "
            f"{self.supplier_match.candidate.id if self.supplier_match.candidate else 'unmatched'})"
        )
        self.step = IngestionStep.REVIEW
        return result

    # review edits

    def select_supplier(self, supplier_id: str | None) -> SupplierMatch:
        """Operator choice of supplier (None clears it)."""
        self._require(IngestionStep.REVIEW, "select a supplier")
        if supplier_id is None:
            self.supplier_match = Match()
        else:
            self.supplier_match = Match(candidate=self.find_supplier(supplier_id), confidence=1.0)
        return self.supplier_match

    def supplier_created(self, supplier: Supplier) -> SupplierMatch:
        """Add a supplier created elsewhere and resolve the invoice vendor again."""
        self.suppliers = [s for s in self.suppliers if s.id != supplier.id] + [supplier]
        if self.step == IngestionStep.REVIEW and (self.vendor.name or self.vendor.tax_id):
            self.supplier_match = resolve_supplier(
                self.vendor.name,
                self.vendor.tax_id,
                self.suppliers,
                self.settings.supplier_match_threshold,
            )
        return self.supplier_match

    def product_created(self, item_id: str, product: Product) -> LineItem:
        """Add a product created elsewhere and link it to ``item_id``."""
        self._require(IngestionStep.REVIEW, "associate a product")
        self.products = [p for p in self.products if p.id != product.id] + [product]
        return self.line_items.associate_product(item_id, product)

    def associate_product(self, item_id: str, product_id: str | None) -> LineItem:
        self._require(IngestionStep.REVIEW, "associate a product")
        product = self.find_product(product_id) if product_id is not None else None
        return self.line_items.associate_product(item_id, product)

    def mark_as_new_product(self, item_id: str) -> LineItem:
        self._require(IngestionStep.REVIEW, "mark a new product")
        return self.line_items.mark_as_new_product(item_id)

    def update_item(self, item_id: str, patch: dict[str, Any]) -> LineItem:
        self._require(IngestionStep.REVIEW, "edit a line item")
        return self.line_items.update_field(item_id, patch)

    def add_item(self) -> LineItem:
        self._require(IngestionStep.REVIEW, "add a line item")
        return self.line_items.add_manual()

    def remove_item(self, item_id: str) -> None:
        self._require(IngestionStep.REVIEW, "remove a line item")
        self.line_items.remove(item_id)

    def update_invoice(
        self,
        invoice_number: str | None = None,
        invoice_date: str | None = None,
        notes: str | None = None,
    ) -> None:
        self._require(IngestionStep.REVIEW, "edit the invoice")
        if invoice_number is not None:
            self.invoice_number = invoice_number
        if invoice_date is not None:
            self.invoice_date = invoice_date
        if notes is not None:
            self.notes = notes

    # review -> confirm

    def commit(self) -> CommitReport:
        """Create new products, then one stock inflow per line.

        Not transactional: a failure leaves earlier writes in the backend and the
        workflow in ``review``. Calling ``commit`` again resumes, skipping writes
        recorded in the ledger.

        Raises:
            ValidationError: If any line is unassociated (no backend call is made)
            CommitError: If a backend write fails
        """
        self._require(IngestionStep.REVIEW, "commit")
        self.save_error = None

        try:
            self.line_items.validate_for_commit()
        except ValidationError as e:
            self.save_error = str(e)
            raise

        supplier = self.supplier_match.candidate
        context = CommitContext(
            establishment_id=self.establishment_id,
            invoice_number=self.invoice_number or None,
            supplier_name=supplier.name if supplier else self.vendor.name or None,
            notes=self.notes or None,
            markup=self.settings.new_product_markup,
        )
        plan = CommitPlan(self.session_id, self.line_items.items, context)
        self.commit_tasks = plan.tasks

        try:
            report = plan.execute(self._client, self.ledger)
        except CommitError as e:
            self.save_error = str(e)
            raise

        self.commit_report = report
        self.step = IngestionStep.CONFIRM
        logger.info(
            f"Committed {report.items_processed} items for {self.establishment_id} "
            f"({report.products_created} products, {report.movements_created} movements)"
        )
        return report

    def reset(self) -> None:
        """Discard the ingestion and go back to ``upload``; catalogs stay loaded."""
        self.line_items.clear()
        self.ledger.clear()
        self._clear_invoice_state()

    def view(self) -> IngestionView:
        supplier = self.supplier_match.candidate
        return IngestionView(
            session_id=self.session_id,
            establishment_id=self.establishment_id,
            step=self.step,
            processing_error=self.processing_error,
            save_error=self.save_error,
            catalog_error=self.catalog_error,
            has_openai_integration=self.has_openai_integration,
            ocr_data=self.ocr_data,
            ocr_confidence=self.ocr_confidence,
            ocr_warnings=self.ocr_warnings,
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date,
            notes=self.notes,
            vendor=self.vendor,
            supplier=supplier,
            supplier_match_confidence=self.supplier_match.confidence,
            line_items=self.line_items.items,
            calculated_total=self.line_items.total(),
            ocr_total=self.ocr_data.total if self.ocr_data else None,
            commit_tasks=[task.model_copy() for task in self.commit_tasks],
            items_processed=self.commit_report.items_processed if self.commit_report else None,
        )

    def _require(self, step: IngestionStep, operation: str) -> None:
        if self.step != step:
            raise WorkflowStateError(operation, self.step.value)

    def _clear_invoice_state(self) -> None:
        self.step = IngestionStep.UPLOAD
        self.processing_error: str | None = None
        self.save_error: str | None = None
        self.ocr_data: OCRData | None = None
        self.ocr_confidence = 0.0
        self.ocr_warnings: list[str] = []
        self.invoice_number = ""
        self.invoice_date = ""
        self.notes = ""
        self.vendor = VendorInfo()
        self.supplier_match: SupplierMatch = Match()
        self.commit_tasks: list[CommitTask] = []
        self.commit_report: CommitReport | None = None
