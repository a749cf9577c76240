"""Unit tests for the ERP sync adapter, status board, and dispatcher."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from veggie_pos.constants import PaymentMethod, SyncDomain, SyncState
from veggie_pos.core_logic import SaleCommitted
from veggie_pos.errors import ConnectionFailure, SyncFailure
from veggie_pos.models import CartLine, Sale
from veggie_pos.sync import (
    ErpSyncAdapter,
    SaleSyncResult,
    SyncDispatcher,
    SyncStatusBoard,
    build_invoice,
    map_remote_customer,
    map_remote_product,
    map_remote_supplier,
)


class ImmediateExecutor:
    """Executor stand-in that runs work on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass


class QueuedExecutor:
    """Executor stand-in that holds work until the test runs it."""

    def __init__(self):
        self.queued = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.queued.append((future, fn, args, kwargs))
        return future

    def run_next(self):
        future, fn, args, kwargs = self.queued.pop(0)
        future.set_result(fn(*args, **kwargs))

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def sale(tomato, onion) -> Sale:
    return Sale(
        sale_id="S1",
        receipt_number="R123456",
        lines=(
            CartLine(tomato, Decimal("2"), Decimal("100")),
            CartLine(onion, Decimal("1.5"), Decimal("40")),
        ),
        total=Decimal("260"),
        payment_method=PaymentMethod.UPI,
        timestamp=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
        cashier="Front Counter",
    )


@pytest.fixture
def client() -> Mock:
    return Mock(name="client")


@pytest.fixture
def adapter(client) -> ErpSyncAdapter:
    return ErpSyncAdapter(client)


# ---------------------------------------------------------------------------
# Payload mapping
# ---------------------------------------------------------------------------


def test_build_invoice_maps_lines_and_tax(sale):
    """Invoices carry one line per cart line with tax-inclusive totals."""

    invoice = build_invoice(sale, tax_rate=Decimal("18"))

    assert invoice["socid"] == 1
    assert invoice["type"] == 0
    assert invoice["mode_reglement_id"] == 3
    assert invoice["note_private"] == "POS Sale - Receipt: R123456"
    assert invoice["date"] == int(sale.timestamp.timestamp())
    first, second = invoice["lines"]
    assert first["qty"] == 2.0
    assert first["subprice"] == 100.0
    assert first["total_ht"] == 200.0
    assert first["total_ttc"] == pytest.approx(236.0)
    assert first["tva_tx"] == 18.0
    assert second["total_ht"] == 60.0


def test_build_invoice_uses_customer_reference(sale):
    """A numeric customer id becomes the third-party reference."""

    invoice = build_invoice(replace(sale, customer_id="17"))

    assert invoice["socid"] == 17


def test_map_remote_product_reads_stock_and_price():
    """ERP products map onto catalog products."""

    product = map_remote_product({"id": "5", "label": "Carrot", "price": "30.5", "stock_reel": "12"})

    assert product.product_id == "5"
    assert product.name == "Carrot"
    assert product.price == Decimal("30.5")
    assert product.stock == Decimal("12")


def test_map_remote_customer_joins_address():
    """ERP third parties map onto customers with a zero balance."""

    customer = map_remote_customer({"id": 9, "name": "Cafe", "address": "1 Main St", "town": "Springfield"})

    assert customer.customer_id == "9"
    assert customer.address == "1 Main St Springfield"
    assert customer.balance == Decimal("0")


def test_map_remote_supplier_reads_contact_and_limit():
    """ERP supplier third parties map onto suppliers owing nothing."""

    supplier = map_remote_supplier(
        {"id": 4, "name": "Green Farms", "phone": "555-0300", "town": "Nashik", "outstanding_limit": "2500"}
    )

    assert supplier.supplier_id == "4"
    assert supplier.address == "Nashik"
    assert supplier.credit_limit == Decimal("2500")
    assert supplier.balance == Decimal("0")


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


def test_sync_sale_creates_validates_and_pushes_stock(adapter, client, sale):
    """A successful sync validates the invoice and decrements remote stock."""

    client.create_invoice.return_value = 77
    client.get_product.return_value = {"stock_reel": "20"}

    result = adapter.sync_sale(sale)

    assert result == SaleSyncResult(success=True, external_id=77)
    client.validate_invoice.assert_called_once_with(77)
    client.update_product_stock.assert_any_call("P1", 18.0)
    client.update_product_stock.assert_any_call("P2", 18.5)


def test_sync_sale_reports_failure_without_raising(adapter, client, sale):
    """ERP failures come back as an unsuccessful result."""

    client.create_invoice.side_effect = SyncFailure("ERP API error: 500 Server Error")

    result = adapter.sync_sale(sale)

    assert result.success is False
    assert "500" in result.error
    client.update_product_stock.assert_not_called()


def test_sync_sale_accepts_string_invoice_id(adapter, client, sale):
    """An invoice id returned as text is read as a number."""

    client.create_invoice.return_value = "42"
    client.get_product.return_value = {"stock_reel": "20"}

    result = adapter.sync_sale(sale)

    assert result == SaleSyncResult(success=True, external_id=42)
    client.validate_invoice.assert_called_once_with(42)


def test_sync_sale_reads_invoice_id_from_object(adapter, client, sale):
    """Some ERP versions answer with the created invoice object."""

    client.create_invoice.return_value = {"id": 9}
    client.get_product.return_value = {"stock_reel": "20"}

    assert adapter.sync_sale(sale).external_id == 9


@pytest.mark.parametrize(
    "created, remote",
    [
        (77, {"stock_reel": "n/a"}),
        (77, None),
        ("INV-77", {"stock_reel": "20"}),
    ],
)
def test_sync_sale_unreadable_response_is_a_failure(adapter, client, sale, created, remote):
    """Responses that cannot be read fail the sync instead of raising."""

    client.create_invoice.return_value = created
    client.get_product.return_value = remote

    result = adapter.sync_sale(sale)

    assert result.success is False
    assert result.error.startswith("Unexpected ERP response")


def test_sync_products_collects_record_errors(adapter, client):
    """Unreadable records are skipped and reported."""

    client.get_products.return_value = [
        {"id": "1", "label": "Carrot", "price": "30"},
        {"label": "no id"},
    ]

    result = adapter.sync_products()

    assert result.success is True
    assert result.synced_count == 1
    assert len(result.errors) == 1
    assert result.records[0].name == "Carrot"


def test_sync_customers_failure(adapter, client):
    """A failed pull returns an unsuccessful result."""

    client.get_customers.side_effect = ConnectionFailure("ERP unreachable")

    result = adapter.sync_customers()

    assert result.success is False
    assert result.errors == ("ERP unreachable",)


def test_sync_suppliers_maps_records(adapter, client):
    """Supplier pulls map every readable record."""

    client.get_suppliers.return_value = [{"id": 4, "name": "Green Farms"}, {"id": 5}]

    result = adapter.sync_suppliers()

    assert result.success is True
    assert [supplier.name for supplier in result.records] == ["Green Farms"]
    assert len(result.errors) == 1


def test_sync_suppliers_failure(adapter, client):
    client.get_suppliers.side_effect = ConnectionFailure("ERP unreachable")

    result = adapter.sync_suppliers()

    assert result.success is False
    assert result.errors == ("ERP unreachable",)


def test_test_connection(adapter, client):
    """Connection tests report success and failure as results."""

    assert adapter.test_connection().success is True

    client.status.side_effect = ConnectionFailure("down")
    result = adapter.test_connection()

    assert result.success is False
    assert result.message == "down"


# ---------------------------------------------------------------------------
# Status board
# ---------------------------------------------------------------------------


def test_board_starts_idle():
    """Every domain starts idle with no last sync."""

    board = SyncStatusBoard()

    assert all(status.state is SyncState.IDLE for status in board.snapshot().values())
    assert board.last_sync is None


def test_board_error_keeps_last_success_time():
    """An error after a success keeps the success timestamp."""

    board = SyncStatusBoard()
    when = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    board.mark_success(SyncDomain.SALES, when=when)
    board.mark_error(SyncDomain.SALES, "boom")

    status = board.get(SyncDomain.SALES)
    assert status.state is SyncState.ERROR
    assert status.last_sync == when
    assert status.message == "boom"
    assert board.last_sync == when


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def test_dispatcher_pushes_committed_sale(sale):
    """SaleCommitted events are synced and the board records success."""

    adapter = Mock()
    adapter.sync_sale.return_value = SaleSyncResult(success=True, external_id=1)
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    dispatcher(SaleCommitted(sale))

    adapter.sync_sale.assert_called_once_with(sale)
    assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.SUCCESS


def test_dispatcher_records_failed_sync(sale):
    """Failed syncs set the error state with the message."""

    adapter = Mock()
    adapter.sync_sale.return_value = SaleSyncResult(success=False, error="timeout")
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    dispatcher.submit_sale(sale)

    status = dispatcher.board.get(SyncDomain.SALES)
    assert status.state is SyncState.ERROR
    assert status.message == "timeout"


def test_dispatcher_contains_unexpected_errors(sale):
    """Even unexpected adapter errors end up on the board."""

    adapter = Mock()
    adapter.sync_sale.side_effect = RuntimeError("bug")
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    future = dispatcher.submit_sale(sale)

    assert future.result().success is False
    assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.ERROR


def test_dispatcher_does_not_block_on_slow_sync(sale):
    """The sale push runs on the worker thread, so submit returns at once."""

    release = threading.Event()
    adapter = Mock()

    def slow_sync(_sale):
        release.wait(timeout=5)
        return SaleSyncResult(success=True)

    adapter.sync_sale.side_effect = slow_sync
    dispatcher = SyncDispatcher(adapter)
    try:
        dispatcher.submit_sale(sale)
        assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.SYNCING
        release.set()
        assert dispatcher.drain(timeout=5) is True
        assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.SUCCESS
    finally:
        release.set()
        dispatcher.close()


def test_sales_status_stays_syncing_while_pushes_are_queued(sale):
    """The sales domain reports success only once the last queued push is done."""

    executor = QueuedExecutor()
    adapter = Mock()
    adapter.sync_sale.return_value = SaleSyncResult(success=True, external_id=1)
    dispatcher = SyncDispatcher(adapter, executor=executor)

    dispatcher.submit_sale(sale)
    dispatcher.submit_sale(replace(sale, sale_id="S2"))
    executor.run_next()

    status = dispatcher.board.get(SyncDomain.SALES)
    assert status.state is SyncState.SYNCING
    assert status.last_sync is not None
    assert status.message == "1 pending"

    executor.run_next()

    assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.SUCCESS


def test_failed_push_shows_error_even_with_pushes_queued(sale):
    """An error is reported at once, before the queue empties."""

    executor = QueuedExecutor()
    adapter = Mock()
    adapter.sync_sale.return_value = SaleSyncResult(success=False, error="timeout")
    dispatcher = SyncDispatcher(adapter, executor=executor)

    dispatcher.submit_sale(sale)
    dispatcher.submit_sale(replace(sale, sale_id="S2"))
    executor.run_next()

    assert dispatcher.board.get(SyncDomain.SALES).state is SyncState.ERROR


def test_sync_all_runs_every_pull_in_order():
    """sync_all pulls products, customers, and suppliers and records each."""

    adapter = Mock()
    calls = []
    adapter.sync_products.side_effect = lambda: calls.append("products") or Mock(success=True, synced_count=3, errors=())
    adapter.sync_customers.side_effect = lambda: calls.append("customers") or Mock(success=False, synced_count=0, errors=("down",))
    adapter.sync_suppliers.side_effect = lambda: calls.append("suppliers") or Mock(success=True, synced_count=1, errors=())
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    results = dispatcher.sync_all()

    assert calls == ["products", "customers", "suppliers"]
    assert set(results) == {SyncDomain.PRODUCTS, SyncDomain.CUSTOMERS, SyncDomain.SUPPLIERS}
    assert dispatcher.board.get(SyncDomain.SUPPLIERS).message == "1 records"
    assert dispatcher.board.get(SyncDomain.PRODUCTS).state is SyncState.SUCCESS
    assert dispatcher.board.get(SyncDomain.CUSTOMERS).message == "down"


def test_resync_sale_runs_synchronously(sale):
    """A manual resync returns the result directly."""

    adapter = Mock()
    adapter.sync_sale.return_value = SaleSyncResult(success=True, external_id=5)
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    assert dispatcher.resync_sale(sale).external_id == 5


def test_test_connection_sets_connected_flag():
    """The board's connected flag follows the last connection test."""

    adapter = Mock()
    adapter.test_connection.return_value = Mock(success=True, message="Connection successful")
    dispatcher = SyncDispatcher(adapter, executor=ImmediateExecutor())

    dispatcher.test_connection()

    assert dispatcher.board.connected is True
