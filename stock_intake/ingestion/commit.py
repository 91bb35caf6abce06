"""Ordered commit of reconciled invoice lines to the backend.

A commit is an explicit task list: first one ``create_product`` task per line
marked as a new product, then one ``create_movement`` task per line, in line
order. Tasks run sequentially and stop at the first failure. Nothing is rolled
back.

Every task carries an idempotency key derived from the session and the line's
content only, never from invoice-level fields. Keys of successful tasks go into
a ``CommitLedger`` kept by the workflow, so re-running a commit after a partial
failure skips what already succeeded instead of creating it twice. Editing a
line changes its key, which makes the edited line's tasks run again. Changing
the supplier, invoice number or notes does not; only the movements still
pending pick up the new values.
"""

import hashlib
import logging
from enum import Enum

import httpx
from pydantic import BaseModel, Field

from stock_intake.catalog.client import CatalogAPIError, CatalogClient
from stock_intake.catalog.schema import NewProduct, NewStockMovement
from stock_intake.ingestion.errors import CommitError
from stock_intake.ingestion.line_items import LineItem

logger = logging.getLogger(__name__)

MOVEMENT_TYPE = "entrada"
MOVEMENT_REASON = "Ingreso por factura"
DEFAULT_UNIT = "unidad"


class TaskKind(str, Enum):
    CREATE_PRODUCT = "create_product"
    CREATE_MOVEMENT = "create_movement"


class TaskStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CommitTask(BaseModel):
    """One backend write of a commit."""

    kind: TaskKind
    item_id: str
    idempotency_key: str
    status: TaskStatus = TaskStatus.PENDING
    result_id: str | None = None
    reused: bool = Field(False, description="Satisfied by an earlier attempt, not re-sent")
    error: str | None = None


class CommitContext(BaseModel):
    """Invoice-level data written into every stock movement."""

    establishment_id: str
    invoice_number: str | None = None
    supplier_name: str | None = None
    notes: str | None = None
    markup: float = 1.3

    def movement_notes(self) -> str:
        text = (
            f"Factura: {self.invoice_number or 'Sin número'}"
            f" - Proveedor: {self.supplier_name or 'Sin proveedor'}"
        )
        if self.notes:
            text = f"{text} - {self.notes}"
        return text


class CommitReport(BaseModel):
    """Outcome of a fully successful commit."""

    items_processed: int
    products_created: int
    movements_created: int
    reused_tasks: int
    tasks: list[CommitTask]


class CommitLedger:
    """Idempotency keys of tasks that already succeeded, with the id they created."""

    def __init__(self) -> None:
        self._done: dict[str, str] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._done

    def __len__(self) -> int:
        return len(self._done)

    def get(self, key: str) -> str | None:
        return self._done.get(key)

    def record(self, key: str, result_id: str) -> None:
        self._done[key] = result_id

    def clear(self) -> None:
        self._done.clear()


def _fingerprint(*parts: object) -> str:
    digest = hashlib.sha256("|".join(str(part) for part in parts).encode("utf-8"))
    return digest.hexdigest()[:16]


def _product_key(session_id: str, item: LineItem) -> str:
    return f"{session_id}:product:{item.id}:{_fingerprint(item.description, item.unit_price)}"


def _movement_key(session_id: str, item: LineItem) -> str:
    product_ref = item.description if item.is_new_product else item.product_id
    fingerprint = _fingerprint(item.is_new_product, product_ref, item.quantity, item.unit_price)
    return f"{session_id}:movement:{item.id}:{fingerprint}"


class CommitPlan:
    """Ordered task list for committing ``items``."""

    def __init__(
        self,
        session_id: str,
        items: list[LineItem],
        context: CommitContext,
    ) -> None:
        self.items = {item.id: item for item in items}
        self.context = context
        self.tasks: list[CommitTask] = [
            CommitTask(
                kind=TaskKind.CREATE_PRODUCT,
                item_id=item.id,
                idempotency_key=_product_key(session_id, item),
            )
            for item in items
            if item.is_new_product
        ]
        self.tasks.extend(
            CommitTask(
                kind=TaskKind.CREATE_MOVEMENT,
                item_id=item.id,
                idempotency_key=_movement_key(session_id, item),
            )
            for item in items
        )

    def pending(self) -> list[CommitTask]:
        return [task for task in self.tasks if task.status != TaskStatus.SUCCEEDED]

    def execute(self, client: CatalogClient, ledger: CommitLedger) -> CommitReport:
        """Run the tasks in order, skipping those already in ``ledger``.

        Raises:
            CommitError: On the first failing backend call; earlier writes stay in place
        """
        created_products: dict[str, str] = {}

        for task in self.tasks:
            item = self.items[task.item_id]
            previous = ledger.get(task.idempotency_key)
            if previous is not None:
                task.status = TaskStatus.SUCCEEDED
                task.result_id = previous
                task.reused = True
                if task.kind == TaskKind.CREATE_PRODUCT:
                    created_products[item.id] = previous
                continue

            try:
                if task.kind == TaskKind.CREATE_PRODUCT:
                    result_id = self._create_product(client, item, task.idempotency_key)
                    created_products[item.id] = result_id
                else:
                    product_id = (
                        created_products[item.id] if item.is_new_product else item.product_id
                    )
                    result_id = self._create_movement(
                        client, item, str(product_id), task.idempotency_key
                    )
            except (CatalogAPIError, httpx.HTTPError) as e:
                task.status = TaskStatus.FAILED
                task.error = str(e) or "Error al guardar los movimientos de stock"
                done = sum(1 for t in self.tasks if t.status == TaskStatus.SUCCEEDED)
                logger.error(
                    f"Commit stopped at {task.kind.value} for {item.id}: {task.error} "
                    f"({done} of {len(self.tasks)} tasks done)"
                )
                raise CommitError(task.error, completed=done, pending=len(self.tasks) - done) from e

            task.status = TaskStatus.SUCCEEDED
            task.result_id = result_id
            ledger.record(task.idempotency_key, result_id)
            logger.info(f"{task.kind.value} for {item.id} -> {result_id}")

        return self._report()

    def _create_product(self, client: CatalogClient, item: LineItem, key: str) -> str:
        product = client.create_product(
            NewProduct(
                establishment_id=self.context.establishment_id,
                name=item.description,
                cost_price=item.unit_price,
                sale_price=item.unit_price * self.context.markup,
                current_stock=0,
                min_stock=0,
                unit=DEFAULT_UNIT,
                track_stock=True,
                is_active=True,
            ),
            idempotency_key=key,
        )
        return product.id

    def _create_movement(
        self, client: CatalogClient, item: LineItem, product_id: str, key: str
    ) -> str:
        movement = client.create_stock_movement(
            NewStockMovement(
                establishment_id=self.context.establishment_id,
                product_id=product_id,
                type=MOVEMENT_TYPE,
                quantity=item.quantity,
                unit_cost=item.unit_price,
                reason=MOVEMENT_REASON,
                notes=self.context.movement_notes(),
                invoice_number=self.context.invoice_number or None,
            ),
            idempotency_key=key,
        )
        return movement.id

    def _report(self) -> CommitReport:
        sent = [task for task in self.tasks if not task.reused]
        return CommitReport(
            items_processed=len(self.items),
            products_created=sum(1 for t in sent if t.kind == TaskKind.CREATE_PRODUCT),
            movements_created=sum(1 for t in sent if t.kind == TaskKind.CREATE_MOVEMENT),
            reused_tasks=len(self.tasks) - len(sent),
            tasks=[task.model_copy() for task in self.tasks],
        )
