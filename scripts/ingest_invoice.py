#!/usr/bin/env python3
"""Ingest a supplier invoice image from the command line.

Runs the same workflow as the API: loads the establishment catalogs, runs OCR on
the image, prints the reconciliation and optionally commits it.

Usage:
    python scripts/ingest_invoice.py factura.jpg --establishment est-1
    python scripts/ingest_invoice.py factura.jpg --establishment est-1 --new-unmatched --commit

Requirements:
    - APP_BACKEND_BASE_URL (and APP_BACKEND_TOKEN if needed) for the backend
    - OPENAI_API_KEY when APP_OCR_PROVIDER=openai
"""

import logging
import mimetypes
import sys
from pathlib import Path

from stock_intake.catalog.client import CatalogClient
from stock_intake.ingestion.errors import IngestionError
from stock_intake.ingestion.workflow import IngestionStep, IngestionView, IngestionWorkflow
from stock_intake.ocr.factory import create_ocr_provider
from stock_intake.shared.config import Settings, get_settings
from stock_intake.shared.logging_config import configure_logging

logger = logging.getLogger(__name__)


def format_review(view: IngestionView) -> list[str]:
    """Render a workflow snapshot as printable lines."""
    supplier = view.supplier.name if view.supplier else "(sin proveedor)"
    lines = [
        f"Factura: {view.invoice_number or 'Sin número'}  Fecha: {view.invoice_date}",
        f"Proveedor: {supplier} (OCR: {view.vendor.name or '-'}, "
        f"confianza {view.supplier_match_confidence:.0%})",
        "-" * 80,
    ]
    for item in view.line_items:
        if item.is_new_product:
            target = "NUEVO PRODUCTO"
        elif item.product_id:
            target = f"{item.product_name} ({item.match_confidence:.0%})"
        else:
            target = "SIN ASOCIAR"
        lines.append(
            f"{item.description[:32]:<32} {item.quantity:>6g} x {item.unit_price:>10.2f}"
            f" = {item.total:>10.2f}  -> {target}"
        )
    lines.append("-" * 80)
    ocr_total = f"{view.ocr_total:.2f}" if view.ocr_total is not None else "-"
    lines.append(f"Total calculado: {view.calculated_total:.2f}  Total OCR: {ocr_total}")
    lines.extend(f"Aviso: {warning}" for warning in view.ocr_warnings)
    return lines


def ingest_invoice(
    workflow: IngestionWorkflow,
    image_path: Path,
    new_unmatched: bool = False,
    commit: bool = False,
) -> IngestionView:
    """Run OCR on ``image_path`` and optionally commit the result.

    Args:
        workflow: Workflow in the upload step
        image_path: Invoice image
        new_unmatched: Mark every unassociated line as a new product
        commit: Commit after reconciliation

    Returns:
        Final workflow snapshot

    Raises:
        FileNotFoundError: If the image does not exist
        IngestionError: If OCR or the commit fails
    """
    if not image_path.exists():
        raise FileNotFoundError(f"Image not found: {image_path}")

    content_type = mimetypes.guess_type(image_path.name)[0] or "image/jpeg"
    result = workflow.process_image(image_path.read_bytes(), image_path.name, content_type)
    if not result.success:
        raise IngestionError(f"OCR processing failed: {workflow.processing_error}")

    if new_unmatched:
        for item in workflow.line_items.unassociated():
            workflow.mark_as_new_product(item.id)

    if commit:
        report = workflow.commit()
        logger.info(
            f"Committed {report.items_processed} items "
            f"({report.products_created} new products)"
        )

    return workflow.view()


def run(settings: Settings, image_path: Path, establishment_id: str, **options: bool) -> int:
    client = CatalogClient(settings)
    try:
        workflow = IngestionWorkflow(
            establishment_id, client, create_ocr_provider(settings), settings
        )
        workflow.load_catalogs()
        if workflow.catalog_error:
            logger.warning(f"Catalogs partially loaded: {workflow.catalog_error}")

        try:
            view = ingest_invoice(workflow, image_path, **options)
        except (FileNotFoundError, IngestionError) as e:
            logger.error(str(e))
            if workflow.step == IngestionStep.REVIEW:
                print("\n".join(format_review(workflow.view())))
            return 1

        print("\n".join(format_review(view)))
        return 0
    finally:
        client.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Ingest a supplier invoice into stock")
    parser.add_argument("image", type=Path, help="Invoice image (JPEG, PNG, ...)")
    parser.add_argument(
        "--establishment",
        required=True,
        help="Establishment id the stock belongs to",
    )
    parser.add_argument(
        "--new-unmatched",
        action="store_true",
        help="Create a product for every line without a catalog match",
    )
    parser.add_argument(
        "--commit",
        action="store_true",
        help="Create products and stock movements (default: only print the review)",
    )

    args = parser.parse_args()
    settings = get_settings()
    configure_logging(settings)

    sys.exit(
        run(
            settings,
            args.image,
            args.establishment,
            new_unmatched=args.new_unmatched,
            commit=args.commit,
        )
    )
