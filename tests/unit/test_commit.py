"""Unit tests for the ordered, resumable commit plan."""

from unittest.mock import MagicMock

import httpx
import pytest

from stock_intake.catalog.client import CatalogAPIError, CatalogClient
from stock_intake.catalog.schema import Product, StockMovement
from stock_intake.ingestion.commit import (
    CommitContext,
    CommitLedger,
    CommitPlan,
    TaskKind,
    TaskStatus,
)
from stock_intake.ingestion.errors import CommitError
from stock_intake.ingestion.line_items import LineItem


def movement(movement_id: str, product_id: str = "p1") -> StockMovement:
    return StockMovement(id=movement_id, product_id=product_id, type="entrada", quantity=1)


@pytest.fixture
def items() -> list[LineItem]:
    return [
        LineItem(
            id="item-0",
            description="Coca Cola 500ml",
            quantity=2,
            unit_price=50,
            total=100,
            product_id="p1",
            product_name="Coca Cola 500ml",
            match_confidence=0.6,
        ),
        LineItem(
            id="item-1",
            description="Agua",
            quantity=1,
            unit_price=100,
            total=100,
            is_new_product=True,
        ),
    ]


@pytest.fixture
def context() -> CommitContext:
    return CommitContext(
        establishment_id="est-1", invoice_number="0001-00001234", supplier_name="Bebidas SA"
    )


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock(spec=CatalogClient)
    client.create_product.return_value = Product(id="new-1", name="Agua")
    client.create_stock_movement.side_effect = [movement("m1"), movement("m2", "new-1")]
    return client


class TestCommitContext:
    def test_movement_notes(self, context: CommitContext) -> None:
        assert context.movement_notes() == "Factura: 0001-00001234 - Proveedor: Bebidas SA"

    def test_movement_notes_placeholders(self) -> None:
        context = CommitContext(establishment_id="est-1")

        assert context.movement_notes() == "Factura: Sin número - Proveedor: Sin proveedor"

    def test_operator_notes_are_appended(self) -> None:
        context = CommitContext(
            establishment_id="est-1", invoice_number="12", supplier_name="X", notes="Llegó roto"
        )

        assert context.movement_notes() == "Factura: 12 - Proveedor: X - Llegó roto"


class TestCommitPlan:
    def test_product_tasks_come_first(
        self, items: list[LineItem], context: CommitContext
    ) -> None:
        plan = CommitPlan("session-1", items, context)

        assert [(t.kind, t.item_id) for t in plan.tasks] == [
            (TaskKind.CREATE_PRODUCT, "item-1"),
            (TaskKind.CREATE_MOVEMENT, "item-0"),
            (TaskKind.CREATE_MOVEMENT, "item-1"),
        ]
        assert all(t.status == TaskStatus.PENDING for t in plan.tasks)

    def test_keys_are_stable_and_scoped_by_session(
        self, items: list[LineItem], context: CommitContext
    ) -> None:
        first = [t.idempotency_key for t in CommitPlan("session-1", items, context).tasks]
        again = [t.idempotency_key for t in CommitPlan("session-1", items, context).tasks]
        other = [t.idempotency_key for t in CommitPlan("session-2", items, context).tasks]

        assert first == again
        assert set(first).isdisjoint(other)
        assert len(set(first)) == len(first)

    def test_editing_a_line_changes_its_key(
        self, items: list[LineItem], context: CommitContext
    ) -> None:
        before = CommitPlan("s", items, context).tasks[1].idempotency_key
        items[0] = items[0].model_copy(update={"quantity": 3})

        after = CommitPlan("s", items, context).tasks[1].idempotency_key

        assert before != after

    def test_invoice_fields_do_not_change_keys(
        self, items: list[LineItem], context: CommitContext
    ) -> None:
        before = [t.idempotency_key for t in CommitPlan("s", items, context).tasks]
        edited = context.model_copy(
            update={"invoice_number": "0009-9", "supplier_name": "Otro", "notes": "Faltó uno"}
        )

        after = [t.idempotency_key for t in CommitPlan("s", items, edited).tasks]

        assert before == after

    def test_execute_creates_product_then_movements(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        ledger = CommitLedger()

        report = CommitPlan("s", items, context).execute(client, ledger)

        new_product = client.create_product.call_args.args[0]
        assert new_product.name == "Agua"
        assert new_product.cost_price == 100
        assert new_product.sale_price == pytest.approx(130)
        assert new_product.current_stock == 0
        assert new_product.unit == "unidad"

        first, second = (c.args[0] for c in client.create_stock_movement.call_args_list)
        assert (first.product_id, first.quantity, first.unit_cost) == ("p1", 2, 50)
        assert (second.product_id, second.quantity, second.unit_cost) == ("new-1", 1, 100)
        assert first.type == "entrada"
        assert first.reason == "Ingreso por factura"
        assert first.invoice_number == "0001-00001234"
        assert first.notes == "Factura: 0001-00001234 - Proveedor: Bebidas SA"

        assert report.items_processed == 2
        assert report.products_created == 1
        assert report.movements_created == 2
        assert report.reused_tasks == 0
        assert len(ledger) == 3

    def test_idempotency_keys_are_sent(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        plan = CommitPlan("s", items, context)
        plan.execute(client, CommitLedger())

        assert client.create_product.call_args.kwargs["idempotency_key"] == (
            plan.tasks[0].idempotency_key
        )
        sent = [c.kwargs["idempotency_key"] for c in client.create_stock_movement.call_args_list]
        assert sent == [plan.tasks[1].idempotency_key, plan.tasks[2].idempotency_key]

    def test_custom_markup(self, items: list[LineItem], client: MagicMock) -> None:
        context = CommitContext(establishment_id="est-1", markup=1.5)

        CommitPlan("s", items, context).execute(client, CommitLedger())

        assert client.create_product.call_args.args[0].sale_price == pytest.approx(150)

    def test_empty_invoice_number_is_omitted(
        self, items: list[LineItem], client: MagicMock
    ) -> None:
        context = CommitContext(establishment_id="est-1", invoice_number="")

        CommitPlan("s", items, context).execute(client, CommitLedger())

        assert client.create_stock_movement.call_args.args[0].invoice_number is None


class TestPartialFailure:
    def test_stops_at_first_failure(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        client.create_stock_movement.side_effect = [
            movement("m1"),
            CatalogAPIError("Stock bloqueado", status_code=409),
        ]
        plan = CommitPlan("s", items, context)

        with pytest.raises(CommitError, match="Stock bloqueado") as exc_info:
            plan.execute(client, CommitLedger())

        assert exc_info.value.completed == 2
        assert exc_info.value.pending == 1
        assert [t.status for t in plan.tasks] == [
            TaskStatus.SUCCEEDED,
            TaskStatus.SUCCEEDED,
            TaskStatus.FAILED,
        ]
        assert plan.tasks[2].error == "Stock bloqueado"
        assert plan.pending() == [plan.tasks[2]]

    def test_product_failure_sends_no_movements(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        client.create_product.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(CommitError) as exc_info:
            CommitPlan("s", items, context).execute(client, CommitLedger())

        assert exc_info.value.completed == 0
        client.create_stock_movement.assert_not_called()

    def test_retry_skips_completed_tasks(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        ledger = CommitLedger()
        client.create_stock_movement.side_effect = [
            movement("m1"),
            CatalogAPIError("HTTP error! status: 503", status_code=503),
        ]
        with pytest.raises(CommitError):
            CommitPlan("s", items, context).execute(client, ledger)

        client.create_stock_movement.side_effect = [movement("m2", "new-1")]
        report = CommitPlan("s", items, context).execute(client, ledger)

        assert client.create_product.call_count == 1
        assert client.create_stock_movement.call_count == 3
        retried = client.create_stock_movement.call_args.args[0]
        assert retried.product_id == "new-1"
        assert report.products_created == 0
        assert report.movements_created == 1
        assert report.reused_tasks == 2
        assert [t.reused for t in report.tasks] == [True, True, False]

    def test_empty_error_message_gets_default(
        self, items: list[LineItem], context: CommitContext, client: MagicMock
    ) -> None:
        client.create_product.side_effect = CatalogAPIError("")

        with pytest.raises(CommitError, match="Error al guardar los movimientos de stock"):
            CommitPlan("s", items, context).execute(client, CommitLedger())


class TestCommitLedger:
    def test_record_and_lookup(self) -> None:
        ledger = CommitLedger()
        ledger.record("k1", "m1")

        assert "k1" in ledger
        assert ledger.get("k1") == "m1"
        assert ledger.get("k2") is None

    def test_clear(self) -> None:
        ledger = CommitLedger()
        ledger.record("k1", "m1")

        ledger.clear()

        assert len(ledger) == 0
