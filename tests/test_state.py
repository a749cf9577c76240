"""Unit tests for the reducer and the injectable state store."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from veggie_pos.constants import PaymentMethod, PurchaseOrderStatus
from veggie_pos.errors import DuplicateRecordError, MissingReferenceError, StockConflict
from veggie_pos.models import CartLine, PurchaseOrder, PurchaseOrderLine, Sale, Supplier, SupplierPayment
from veggie_pos.state import (
    AddProduct,
    AddPurchaseOrder,
    AdjustCustomerBalance,
    DeleteProduct,
    LoadSnapshot,
    PosState,
    RecordSale,
    RecordSupplierPayment,
    Store,
    UpdateProduct,
    UpdatePurchaseOrder,
    find_stock_conflicts,
    reduce,
)


def make_sale(*lines: CartLine, sale_id: str = "S1", customer_id: str | None = None) -> Sale:
    return Sale(
        sale_id=sale_id,
        receipt_number="R000001",
        lines=tuple(lines),
        total=sum((line.subtotal for line in lines), Decimal("0")),
        payment_method=PaymentMethod.CASH,
        timestamp=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
        cashier="Front Counter",
        customer_id=customer_id,
    )


# ---------------------------------------------------------------------------
# reduce
# ---------------------------------------------------------------------------


def test_add_product_appends(tomato):
    """AddProduct returns a new state with the product appended."""

    state = PosState()

    new_state = reduce(state, AddProduct(tomato))

    assert new_state.products == (tomato,)
    assert state.products == ()


def test_add_product_rejects_duplicate_id(tomato):
    """Duplicate product ids are refused."""

    state = PosState(products=(tomato,))

    with pytest.raises(DuplicateRecordError):
        reduce(state, AddProduct(tomato))


def test_update_unknown_product_raises(tomato):
    """Updating a product that does not exist is reported."""

    with pytest.raises(MissingReferenceError):
        reduce(PosState(), UpdateProduct(tomato))


def test_update_product_replaces_in_place(tomato, onion):
    """UpdateProduct keeps catalog order."""

    state = PosState(products=(tomato, onion))
    cheaper = replace(tomato, price=Decimal("90"))

    new_state = reduce(state, UpdateProduct(cheaper))

    assert new_state.products == (cheaper, onion)


def test_delete_product_removes(tomato, onion):
    """DeleteProduct drops the product."""

    new_state = reduce(PosState(products=(tomato, onion)), DeleteProduct("P1"))

    assert new_state.products == (onion,)


def test_adjust_balance_adds_delta(regular_customer):
    """Balance adjustments add the signed delta."""

    state = PosState(customers=(regular_customer,))

    new_state = reduce(state, AdjustCustomerBalance("C1", Decimal("-50")))

    assert new_state.get_customer("C1").balance == Decimal("150")


def test_record_sale_decrements_stock_and_prepends(tomato, onion):
    """RecordSale lowers stock and puts the sale first in the ledger."""

    earlier = make_sale(CartLine(onion, Decimal("1"), onion.price), sale_id="S0")
    state = PosState(products=(tomato, onion), sales=(earlier,))
    sale = make_sale(CartLine(tomato, Decimal("4"), tomato.price))

    new_state = reduce(state, RecordSale(sale))

    assert new_state.get_product("P1").stock == Decimal("6")
    assert new_state.get_product("P2").stock == Decimal("5")
    assert [s.sale_id for s in new_state.sales] == ["S1", "S0"]


def test_record_sale_conflict_leaves_state_untouched(tomato, onion):
    """A sale over stock raises StockConflict listing every offending product."""

    state = PosState(products=(tomato, onion))
    sale = make_sale(
        CartLine(tomato, Decimal("11"), tomato.price),
        CartLine(onion, Decimal("6"), onion.price),
    )

    with pytest.raises(StockConflict) as excinfo:
        reduce(state, RecordSale(sale))

    assert [conflict[0] for conflict in excinfo.value.conflicts] == ["P1", "P2"]
    assert state.get_product("P1").stock == Decimal("10")


def test_record_sale_for_deleted_product_conflicts(tomato):
    """A product missing from the catalog counts as zero stock."""

    sale = make_sale(CartLine(tomato, Decimal("1"), tomato.price))

    assert find_stock_conflicts(PosState(), sale) == [("P1", Decimal("1"), Decimal("0"))]


def test_record_sale_applies_balance_delta(tomato, regular_customer):
    """A balance delta on the command moves the customer's balance."""

    state = PosState(products=(tomato,), customers=(regular_customer,))
    sale = make_sale(CartLine(tomato, Decimal("1"), tomato.price), customer_id="C1")

    new_state = reduce(state, RecordSale(sale, balance_delta=Decimal("100")))

    assert new_state.get_customer("C1").balance == Decimal("300")


def test_record_sale_rejects_duplicate_sale_id(tomato):
    """Recording the same sale twice is refused."""

    sale = make_sale(CartLine(tomato, Decimal("1"), tomato.price))
    state = reduce(PosState(products=(tomato,)), RecordSale(sale))

    with pytest.raises(DuplicateRecordError):
        reduce(state, RecordSale(sale))


def make_order(order_id: str = "PO1") -> PurchaseOrder:
    return PurchaseOrder(
        order_id=order_id,
        supplier_id="SUP1",
        order_number=order_id,
        lines=(PurchaseOrderLine("P1", "Tomato", Decimal("20"), Decimal("60")),),
        order_date=datetime(2026, 10, 19, 6, 0, tzinfo=UTC),
    )


def make_payment(amount: str, payment_id: str = "SP1", supplier_id: str = "SUP1") -> SupplierPayment:
    return SupplierPayment(
        payment_id=payment_id,
        supplier_id=supplier_id,
        amount=Decimal(amount),
        payment_method=PaymentMethod.CASH,
        date=datetime(2026, 10, 19, 12, 0, tzinfo=UTC),
    )


def test_purchase_orders_are_added_and_replaced():
    """Orders append once and are replaced by id."""

    order = make_order()
    state = reduce(PosState(), AddPurchaseOrder(order))
    received = replace(order, status=PurchaseOrderStatus.RECEIVED)

    new_state = reduce(state, UpdatePurchaseOrder(received))

    assert new_state.get_purchase_order("PO1") == received
    assert state.get_purchase_order("PO1") == order
    with pytest.raises(DuplicateRecordError):
        reduce(state, AddPurchaseOrder(order))
    with pytest.raises(MissingReferenceError):
        reduce(PosState(), UpdatePurchaseOrder(order))


def test_supplier_payment_lowers_balance():
    """A recorded payment is kept and subtracted from the supplier balance."""

    state = PosState(suppliers=(Supplier("SUP1", "Green Farms", balance=Decimal("900")),))

    new_state = reduce(state, RecordSupplierPayment(make_payment("250")))

    assert new_state.get_supplier("SUP1").balance == Decimal("650")
    assert [payment.payment_id for payment in new_state.supplier_payments] == ["SP1"]


def test_supplier_payment_for_unknown_supplier_raises():
    """Payments must name a known supplier."""

    state = PosState(suppliers=(Supplier("SUP1", "Green Farms"),))

    with pytest.raises(MissingReferenceError):
        reduce(state, RecordSupplierPayment(make_payment("10", supplier_id="SUP9")))


def test_reduce_rejects_unknown_command():
    """Objects that are not commands raise TypeError."""

    with pytest.raises(TypeError):
        reduce(PosState(), object())  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def test_dispatch_swaps_state_and_notifies(tomato):
    """Subscribers receive the new state and the command."""

    store = Store()
    listener = Mock()
    store.subscribe(listener)

    command = AddProduct(tomato)
    new_state = store.dispatch(command)

    assert store.state is new_state
    listener.assert_called_once_with(new_state, command)


def test_unsubscribe_stops_notifications(tomato):
    """An unsubscribed listener is not called again."""

    store = Store()
    listener = Mock()
    unsubscribe = store.subscribe(listener)
    unsubscribe()

    store.dispatch(AddProduct(tomato))

    listener.assert_not_called()


def test_failing_subscriber_does_not_break_dispatch(tomato):
    """A subscriber exception is logged and the dispatch still succeeds."""

    store = Store()
    store.subscribe(Mock(side_effect=RuntimeError("boom")))
    after = Mock()
    store.subscribe(after)

    store.dispatch(AddProduct(tomato))

    assert store.state.products == (tomato,)
    after.assert_called_once()


def test_dispatch_saves_through_persistence(tomato):
    """Every successful dispatch is saved."""

    persistence = Mock()
    store = Store(persistence=persistence)

    new_state = store.dispatch(AddProduct(tomato))

    persistence.save.assert_called_once_with(new_state)


def test_failed_save_keeps_previous_state(tomato):
    """When saving fails the state is not swapped."""

    persistence = Mock()
    persistence.save.side_effect = OSError("disk full")
    store = Store(persistence=persistence)

    with pytest.raises(OSError):
        store.dispatch(AddProduct(tomato))

    assert store.state == PosState()


def test_rejected_command_is_not_saved(tomato):
    """Commands that fail validation never reach persistence."""

    persistence = Mock()
    store = Store(PosState(products=(tomato,)), persistence=persistence)

    with pytest.raises(DuplicateRecordError):
        store.dispatch(AddProduct(tomato))

    persistence.save.assert_not_called()


def test_hydrate_loads_snapshot_without_saving(tomato):
    """Rehydration replaces the state and does not write it back."""

    snapshot = PosState(products=(tomato,))
    persistence = Mock()
    persistence.load.return_value = snapshot
    store = Store(persistence=persistence)

    assert store.hydrate() is True
    assert store.state is snapshot
    persistence.save.assert_not_called()


def test_hydrate_without_snapshot_keeps_state():
    """A missing snapshot leaves the initial state in place."""

    persistence = Mock()
    persistence.load.return_value = None
    initial = PosState()
    store = Store(initial, persistence=persistence)

    assert store.hydrate() is False
    assert store.state is initial


def test_load_snapshot_replaces_state(tomato):
    """LoadSnapshot swaps in the given state as-is."""

    snapshot = PosState(products=(tomato,))

    assert reduce(PosState(), LoadSnapshot(snapshot)) is snapshot
