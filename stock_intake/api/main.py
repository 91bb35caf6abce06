"""FastAPI application for OCR-assisted stock ingestion.

Exposes the ingestion workflow of an establishment as a session resource:
- Health and readiness checks
- Invoice image upload and OCR
- Line item reconciliation (edit, associate, mark as new, add, remove)
- Supplier selection
- Commit of products and stock movements to the backend
- Prometheus metrics

Based on FastAPI:
https://fastapi.tiangolo.com/
"""

import logging
import time

from fastapi import FastAPI, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stock_intake.api import metrics
from stock_intake.api.sessions import SessionNotFoundError, SessionStore
from stock_intake.catalog.client import CatalogAPIError, CatalogClient
from stock_intake.catalog.schema import Product, Supplier
from stock_intake.ingestion.commit import CommitReport, CommitTask, TaskKind, TaskStatus
from stock_intake.ingestion.errors import (
    CatalogEntryNotFoundError,
    CommitError,
    IngestionError,
    LineItemNotFoundError,
    ValidationError,
    WorkflowStateError,
)
from stock_intake.ingestion.line_items import LineItem
from stock_intake.ingestion.workflow import IngestionView, IngestionWorkflow
from stock_intake.matching.resolvers import filter_products, filter_suppliers
from stock_intake.ocr.factory import create_ocr_provider
from stock_intake.shared.config import get_settings
from stock_intake.shared.logging_config import configure_logging

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Stock Intake Service",
    description="OCR-assisted invoice ingestion into establishment stock",
    version=settings.service_version,
)

catalog_client = CatalogClient(settings)
ocr_provider = create_ocr_provider(settings)
sessions = SessionStore(settings.session_ttl_seconds)

_ERROR_STATUS: dict[type[IngestionError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    LineItemNotFoundError: status.HTTP_404_NOT_FOUND,
    CatalogEntryNotFoundError: status.HTTP_404_NOT_FOUND,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    WorkflowStateError: status.HTTP_409_CONFLICT,
    CommitError: status.HTTP_502_BAD_GATEWAY,
}


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Record request count and duration per endpoint."""
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps session ids out of the label values
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()
    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    status_code = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)),
        status.HTTP_400_BAD_REQUEST,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(CatalogAPIError)
async def catalog_error_handler(request: Request, exc: CatalogAPIError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": f"Backend error: {exc.message}"},
    )


class HealthResponse(BaseModel):
    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    ready: bool
    ocr_provider: str
    ocr_available: bool


class CreateIngestionRequest(BaseModel):
    establishment_id: str = Field(..., min_length=1)


class LineItemPatch(BaseModel):
    """Editable line fields; only the fields sent are applied."""

    description: str | None = None
    quantity: float | None = Field(None, ge=0)
    unit_price: float | None = Field(None, ge=0)
    total: float | None = None
    is_editing: bool | None = None


class AssociateProductRequest(BaseModel):
    product_id: str | None = None


class CreatedProductRequest(BaseModel):
    product: Product


class SelectSupplierRequest(BaseModel):
    supplier_id: str | None = None


class InvoicePatch(BaseModel):
    invoice_number: str | None = None
    invoice_date: str | None = None
    notes: str | None = None


class CommitResponse(BaseModel):
    report: CommitReport
    ingestion: IngestionView


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness probe, reporting whether the OCR provider is configured."""
    return ReadinessResponse(
        ready=True,
        ocr_provider=ocr_provider.provider_name,
        ocr_available=ocr_provider.is_available(),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/ingestions",
    response_model=IngestionView,
    status_code=status.HTTP_201_CREATED,
    tags=["Ingestions"],
)
def create_ingestion(request: CreateIngestionRequest) -> IngestionView:
    """Start an ingestion for an establishment and load its catalogs."""
    workflow = sessions.create(
        lambda: IngestionWorkflow(
            request.establishment_id, catalog_client, ocr_provider, settings
        )
    )
    with sessions.use(workflow.session_id) as workflow:
        workflow.load_catalogs()
        if settings.ocr_provider == "backend":
            workflow.check_integration()
        logger.info(f"Started ingestion {workflow.session_id} for {request.establishment_id}")
        return workflow.view()


@app.get("/api/v1/ingestions/{session_id}", response_model=IngestionView, tags=["Ingestions"])
def get_ingestion(session_id: str) -> IngestionView:
    with sessions.use(session_id) as workflow:
        return workflow.view()


@app.delete(
    "/api/v1/ingestions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Ingestions"],
)
def delete_ingestion(session_id: str) -> Response:
    sessions.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/ingestions/{session_id}/ocr", response_model=IngestionView, tags=["Ingestions"]
)
async def upload_invoice(
    session_id: str,
    file: UploadFile = File(..., description="Invoice image (PNG, JPEG, ...)"),  # noqa: B008
) -> IngestionView:
    """Run OCR on an invoice image and move the ingestion to review.

    ## Error Handling

    - Returns 400 if the file is missing, empty, or not an image
    - Returns 413 if the image exceeds the configured size limit
    - Returns 409 if the ingestion is not in the upload step
    - Returns 502 if OCR fails; the ingestion stays in upload and can be retried
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only images are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {len(content)} bytes (max {settings.max_upload_bytes})",
        )

    metrics.invoice_upload_size_bytes.observe(len(content))

    # The session lock may be held by a commit; wait for it off the event loop
    return await run_in_threadpool(
        _process_upload, session_id, content, file.filename, file.content_type
    )


def _process_upload(
    session_id: str, content: bytes, filename: str, content_type: str
) -> IngestionView:
    with sessions.use(session_id) as workflow:
        ocr_start = time.time()
        result = workflow.process_image(content, filename, content_type)
        metrics.ocr_processing_duration_seconds.observe(time.time() - ocr_start)

        if not result.success:
            metrics.ocr_requests_total.labels(status="failed").inc()
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"OCR processing failed: {workflow.processing_error}",
            )

        metrics.ocr_requests_total.labels(status="success").inc()
        for item in workflow.line_items:
            metrics.line_item_match_confidence.observe(item.match_confidence)
        return workflow.view()


@app.patch(
    "/api/v1/ingestions/{session_id}/items/{item_id}",
    response_model=LineItem,
    tags=["Line items"],
)
def update_line_item(session_id: str, item_id: str, patch: LineItemPatch) -> LineItem:
    with sessions.use(session_id) as workflow:
        return workflow.update_item(item_id, patch.model_dump(exclude_unset=True))


@app.post(
    "/api/v1/ingestions/{session_id}/items",
    response_model=LineItem,
    status_code=status.HTTP_201_CREATED,
    tags=["Line items"],
)
def add_line_item(session_id: str) -> LineItem:
    with sessions.use(session_id) as workflow:
        return workflow.add_item()


@app.delete(
    "/api/v1/ingestions/{session_id}/items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Line items"],
)
def remove_line_item(session_id: str, item_id: str) -> Response:
    with sessions.use(session_id) as workflow:
        workflow.remove_item(item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/ingestions/{session_id}/items/{item_id}/product",
    response_model=LineItem,
    tags=["Line items"],
)
def associate_product(session_id: str, item_id: str, request: AssociateProductRequest) -> LineItem:
    """Link a line to a catalog product, or unlink it with ``product_id: null``."""
    with sessions.use(session_id) as workflow:
        return workflow.associate_product(item_id, request.product_id)


@app.post(
    "/api/v1/ingestions/{session_id}/items/{item_id}/new-product",
    response_model=LineItem,
    tags=["Line items"],
)
def mark_as_new_product(session_id: str, item_id: str) -> LineItem:
    with sessions.use(session_id) as workflow:
        return workflow.mark_as_new_product(item_id)


@app.post(
    "/api/v1/ingestions/{session_id}/items/{item_id}/created-product",
    response_model=LineItem,
    tags=["Line items"],
)
def product_created(session_id: str, item_id: str, request: CreatedProductRequest) -> LineItem:
    """Link a line to a product that was just created in the product form."""
    with sessions.use(session_id) as workflow:
        return workflow.product_created(item_id, request.product)


@app.put(
    "/api/v1/ingestions/{session_id}/supplier",
    response_model=IngestionView,
    tags=["Suppliers"],
)
def select_supplier(session_id: str, request: SelectSupplierRequest) -> IngestionView:
    with sessions.use(session_id) as workflow:
        workflow.select_supplier(request.supplier_id)
        return workflow.view()


@app.post(
    "/api/v1/ingestions/{session_id}/suppliers",
    response_model=IngestionView,
    tags=["Suppliers"],
)
def supplier_created(session_id: str, supplier: Supplier) -> IngestionView:
    """Register a supplier that was just created and match the invoice vendor again."""
    with sessions.use(session_id) as workflow:
        workflow.supplier_created(supplier)
        return workflow.view()


@app.patch(
    "/api/v1/ingestions/{session_id}/invoice",
    response_model=IngestionView,
    tags=["Ingestions"],
)
def update_invoice(session_id: str, patch: InvoicePatch) -> IngestionView:
    with sessions.use(session_id) as workflow:
        workflow.update_invoice(**patch.model_dump(exclude_unset=True))
        return workflow.view()


@app.get(
    "/api/v1/ingestions/{session_id}/products",
    response_model=list[Product],
    tags=["Catalog"],
)
def search_products(
    session_id: str, q: str = Query("", description="Name, barcode or SKU")
) -> list[Product]:
    with sessions.use(session_id) as workflow:
        return filter_products(q, workflow.products)


@app.get(
    "/api/v1/ingestions/{session_id}/suppliers",
    response_model=list[Supplier],
    tags=["Catalog"],
)
def search_suppliers(
    session_id: str, q: str = Query("", description="Name or tax id")
) -> list[Supplier]:
    with sessions.use(session_id) as workflow:
        return filter_suppliers(q, workflow.suppliers)


@app.post(
    "/api/v1/ingestions/{session_id}/commit",
    response_model=CommitResponse,
    tags=["Ingestions"],
)
def commit_ingestion(session_id: str) -> CommitResponse:
    """Create new products and stock inflows for every line.

    ## Error Handling

    - Returns 422 if a line is neither linked to a product nor marked as new;
      nothing is written
    - Returns 502 if a backend write fails; earlier writes remain, the ingestion
      stays in review and a new commit resumes after the last successful write
    """
    with sessions.use(session_id) as workflow:
        try:
            report = workflow.commit()
        except ValidationError:
            metrics.ingestion_commits_total.labels(status="rejected").inc()
            raise
        except CommitError:
            metrics.ingestion_commits_total.labels(status="failed").inc()
            _count_writes(workflow.commit_tasks)
            raise

        metrics.ingestion_commits_total.labels(status="success").inc()
        _count_writes(report.tasks)
        return CommitResponse(report=report, ingestion=workflow.view())


@app.post(
    "/api/v1/ingestions/{session_id}/reset",
    response_model=IngestionView,
    tags=["Ingestions"],
)
def reset_ingestion(session_id: str) -> IngestionView:
    with sessions.use(session_id) as workflow:
        workflow.reset()
        return workflow.view()


def _count_writes(tasks: list[CommitTask]) -> None:
    for task in tasks:
        if task.status != TaskStatus.SUCCEEDED or task.reused:
            continue
        if task.kind == TaskKind.CREATE_PRODUCT:
            metrics.products_created_total.inc()
        else:
            metrics.stock_movements_created_total.inc()
