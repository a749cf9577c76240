"""Injectable state store for the catalog, customers, ledger, and back office.

State is a single immutable :class:`PosState` value. Callers never mutate it
directly; they dispatch command objects to a :class:`Store`, which reduces the
command over the current value with :func:`reduce`, persists the resulting
snapshot, and notifies subscribers. There is no module-level store: whoever
needs one receives it by reference.

``RecordSale`` is the only command that touches stock. Its reducer re-checks
every line against the stock held in the state it is applied to, so the check
and the decrement happen in one step under the store lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, List, Optional, Protocol, Tuple, TypeVar, Union

from . import log
from .errors import DuplicateRecordError, MissingReferenceError, StockConflict
from .models import ZERO, Customer, Expense, Product, PurchaseOrder, Sale, Supplier, SupplierPayment


@dataclass(frozen=True)
class PosState:
    """Snapshot of everything the register persists between sessions."""

    products: Tuple[Product, ...] = ()
    customers: Tuple[Customer, ...] = ()
    sales: Tuple[Sale, ...] = ()
    suppliers: Tuple[Supplier, ...] = ()
    expenses: Tuple[Expense, ...] = ()
    purchase_orders: Tuple[PurchaseOrder, ...] = ()
    supplier_payments: Tuple[SupplierPayment, ...] = ()

    def get_product(self, product_id: str) -> Optional[Product]:
        return _find(self.products, "product_id", product_id)

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return _find(self.customers, "customer_id", customer_id)

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return _find(self.sales, "sale_id", sale_id)

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        return _find(self.suppliers, "supplier_id", supplier_id)

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return _find(self.expenses, "expense_id", expense_id)

    def get_purchase_order(self, order_id: str) -> Optional[PurchaseOrder]:
        return _find(self.purchase_orders, "order_id", order_id)


@dataclass(frozen=True)
class AddProduct:
    product: Product


@dataclass(frozen=True)
class UpdateProduct:
    product: Product


@dataclass(frozen=True)
class DeleteProduct:
    product_id: str


@dataclass(frozen=True)
class AddCustomer:
    customer: Customer


@dataclass(frozen=True)
class UpdateCustomer:
    customer: Customer


@dataclass(frozen=True)
class DeleteCustomer:
    customer_id: str


@dataclass(frozen=True)
class AdjustCustomerBalance:
    """Add ``delta`` to a customer's running balance (negative for payments)."""

    customer_id: str
    delta: Decimal


@dataclass(frozen=True)
class AddSupplier:
    supplier: Supplier


@dataclass(frozen=True)
class UpdateSupplier:
    supplier: Supplier


@dataclass(frozen=True)
class DeleteSupplier:
    supplier_id: str


@dataclass(frozen=True)
class AddExpense:
    expense: Expense


@dataclass(frozen=True)
class UpdateExpense:
    expense: Expense


@dataclass(frozen=True)
class DeleteExpense:
    expense_id: str


@dataclass(frozen=True)
class AddPurchaseOrder:
    order: PurchaseOrder


@dataclass(frozen=True)
class UpdatePurchaseOrder:
    order: PurchaseOrder


@dataclass(frozen=True)
class RecordSupplierPayment:
    """Append a supplier payment and subtract it from the supplier balance."""

    payment: SupplierPayment


@dataclass(frozen=True)
class RecordSale:
    """Apply a committed sale: decrement stock and append to the ledger.

    ``balance_delta`` is added to the sale's customer balance in the same step
    when credit tracking is enabled.
    """

    sale: Sale
    balance_delta: Optional[Decimal] = None


@dataclass(frozen=True)
class LoadSnapshot:
    """Replace the whole state, typically with a snapshot rehydrated at startup."""

    state: PosState


Command = Union[
    AddProduct,
    UpdateProduct,
    DeleteProduct,
    AddCustomer,
    UpdateCustomer,
    DeleteCustomer,
    AdjustCustomerBalance,
    AddSupplier,
    UpdateSupplier,
    DeleteSupplier,
    AddExpense,
    UpdateExpense,
    DeleteExpense,
    AddPurchaseOrder,
    UpdatePurchaseOrder,
    RecordSupplierPayment,
    RecordSale,
    LoadSnapshot,
]

Listener = Callable[[PosState, Command], None]

_Record = TypeVar("_Record")


class Persistence(Protocol):
    """Opaque key-value hook used to rehydrate and save snapshots."""

    def load(self) -> Optional[PosState]:
        ...

    def save(self, snapshot: PosState) -> None:
        ...


def _find(records: Tuple[_Record, ...], key: str, value: str) -> Optional[_Record]:
    for record in records:
        if getattr(record, key) == value:
            return record
    return None


def _append(records: Tuple[_Record, ...], record: _Record, key: str, kind: str) -> Tuple[_Record, ...]:
    identifier = getattr(record, key)
    if _find(records, key, identifier) is not None:
        log.warning("Rejected duplicate %s id '%s'", kind, identifier)
        raise DuplicateRecordError(f"{kind.capitalize()} '{identifier}' already exists")
    return records + (record,)


def _replace(records: Tuple[_Record, ...], record: _Record, key: str, kind: str) -> Tuple[_Record, ...]:
    identifier = getattr(record, key)
    if _find(records, key, identifier) is None:
        log.warning("Update failed for unknown %s id '%s'", kind, identifier)
        raise MissingReferenceError(f"Unknown {kind} id: {identifier}")
    return tuple(record if getattr(existing, key) == identifier else existing for existing in records)


def _remove(records: Tuple[_Record, ...], identifier: str, key: str, kind: str) -> Tuple[_Record, ...]:
    if _find(records, key, identifier) is None:
        log.warning("Delete failed for unknown %s id '%s'", kind, identifier)
        raise MissingReferenceError(f"Unknown {kind} id: {identifier}")
    return tuple(existing for existing in records if getattr(existing, key) != identifier)


def _adjust_balance(customers: Tuple[Customer, ...], customer_id: str, delta: Decimal) -> Tuple[Customer, ...]:
    customer = _find(customers, "customer_id", customer_id)
    if customer is None:
        log.warning("Balance adjustment failed for unknown customer '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    updated = replace(customer, balance=customer.balance + delta)
    return _replace(customers, updated, "customer_id", "customer")


def _apply_supplier_payment(state: PosState, payment: SupplierPayment) -> PosState:
    supplier = _find(state.suppliers, "supplier_id", payment.supplier_id)
    if supplier is None:
        log.warning("Payment '%s' names unknown supplier '%s'", payment.payment_id, payment.supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {payment.supplier_id}")
    payments = _append(state.supplier_payments, payment, "payment_id", "supplier payment")
    updated = replace(supplier, balance=supplier.balance - payment.amount)
    return replace(
        state,
        suppliers=_replace(state.suppliers, updated, "supplier_id", "supplier"),
        supplier_payments=payments,
    )


def find_stock_conflicts(state: PosState, sale: Sale) -> List[Tuple[str, Decimal, Decimal]]:
    """Return ``(product_id, requested, available)`` for lines the stock cannot cover.

    A product missing from the catalog counts as zero available stock.
    """
    conflicts: List[Tuple[str, Decimal, Decimal]] = []
    for product_id, requested in sale.units_by_product.items():
        product = state.get_product(product_id)
        available = product.stock if product is not None else ZERO
        if product is None or requested > available:
            conflicts.append((product_id, requested, available))
    return conflicts


def _apply_sale(state: PosState, command: RecordSale) -> PosState:
    sale = command.sale
    if state.get_sale(sale.sale_id) is not None:
        raise DuplicateRecordError(f"Sale '{sale.sale_id}' already exists")

    conflicts = find_stock_conflicts(state, sale)
    if conflicts:
        log.warning("Stock conflict while recording sale '%s': %s", sale.sale_id, conflicts)
        raise StockConflict(conflicts)

    sold = sale.units_by_product
    products = tuple(
        replace(product, stock=product.stock - sold[product.product_id])
        if product.product_id in sold
        else product
        for product in state.products
    )

    customers = state.customers
    if command.balance_delta is not None and sale.customer_id is not None:
        customers = _adjust_balance(customers, sale.customer_id, command.balance_delta)

    return replace(
        state,
        products=products,
        customers=customers,
        sales=(sale,) + state.sales,
    )


def reduce(state: PosState, command: Command) -> PosState:
    """Return the state that results from applying ``command`` to ``state``.

    The function is pure: ``state`` is never modified, and a command that
    violates a rule raises before any new state is produced.

    Args:
        state (PosState): Current snapshot.
        command (Command): One of the command dataclasses defined here.

    Returns:
        PosState: New snapshot reflecting the command.

    Raises:
        DuplicateRecordError: When an add command reuses an existing id.
        MissingReferenceError: When an update, delete, or balance adjustment
            targets an unknown id.
        StockConflict: When ``RecordSale`` asks for more than is in stock.
        TypeError: For objects that are not commands.
    """
    if isinstance(command, AddProduct):
        return replace(state, products=_append(state.products, command.product, "product_id", "product"))
    if isinstance(command, UpdateProduct):
        return replace(state, products=_replace(state.products, command.product, "product_id", "product"))
    if isinstance(command, DeleteProduct):
        return replace(state, products=_remove(state.products, command.product_id, "product_id", "product"))
    if isinstance(command, AddCustomer):
        return replace(state, customers=_append(state.customers, command.customer, "customer_id", "customer"))
    if isinstance(command, UpdateCustomer):
        return replace(state, customers=_replace(state.customers, command.customer, "customer_id", "customer"))
    if isinstance(command, DeleteCustomer):
        return replace(state, customers=_remove(state.customers, command.customer_id, "customer_id", "customer"))
    if isinstance(command, AdjustCustomerBalance):
        return replace(state, customers=_adjust_balance(state.customers, command.customer_id, command.delta))
    if isinstance(command, AddSupplier):
        return replace(state, suppliers=_append(state.suppliers, command.supplier, "supplier_id", "supplier"))
    if isinstance(command, UpdateSupplier):
        return replace(state, suppliers=_replace(state.suppliers, command.supplier, "supplier_id", "supplier"))
    if isinstance(command, DeleteSupplier):
        return replace(state, suppliers=_remove(state.suppliers, command.supplier_id, "supplier_id", "supplier"))
    if isinstance(command, AddExpense):
        return replace(state, expenses=_append(state.expenses, command.expense, "expense_id", "expense"))
    if isinstance(command, UpdateExpense):
        return replace(state, expenses=_replace(state.expenses, command.expense, "expense_id", "expense"))
    if isinstance(command, DeleteExpense):
        return replace(state, expenses=_remove(state.expenses, command.expense_id, "expense_id", "expense"))
    if isinstance(command, AddPurchaseOrder):
        orders = _append(state.purchase_orders, command.order, "order_id", "purchase order")
        return replace(state, purchase_orders=orders)
    if isinstance(command, UpdatePurchaseOrder):
        orders = _replace(state.purchase_orders, command.order, "order_id", "purchase order")
        return replace(state, purchase_orders=orders)
    if isinstance(command, RecordSupplierPayment):
        return _apply_supplier_payment(state, command.payment)
    if isinstance(command, RecordSale):
        return _apply_sale(state, command)
    if isinstance(command, LoadSnapshot):
        return command.state
    raise TypeError(f"Unsupported command: {command!r}")


class Store:
    """Holds the current :class:`PosState` and serialises every transition.

    ``dispatch`` reduces, persists, and swaps the state while holding a
    re-entrant lock, so a check performed by a reducer still holds when the
    new value is published. Subscribers run after the lock is released; a
    subscriber that raises is logged and skipped.
    """

    def __init__(self, initial_state: Optional[PosState] = None, *, persistence: Optional[Persistence] = None) -> None:
        self._state = initial_state if initial_state is not None else PosState()
        self._persistence = persistence
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> PosState:
        return self._state

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def snapshot(self) -> PosState:
        return self._state

    def dispatch(self, command: Command) -> PosState:
        with self._lock:
            new_state = reduce(self._state, command)
            if self._persistence is not None and not isinstance(command, LoadSnapshot):
                self._persistence.save(new_state)
            self._state = new_state
            listeners = list(self._listeners)
        log.debug("Dispatched %s", type(command).__name__)

        for listener in listeners:
            try:
                listener(new_state, command)
            except Exception:
                log.exception("Store subscriber %r failed on %s", listener, type(command).__name__)
        return new_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def hydrate(self) -> bool:
        """Replace the state with the persisted snapshot, if one exists."""
        if self._persistence is None:
            return False
        snapshot = self._persistence.load()
        if snapshot is None:
            log.info("No persisted snapshot found; starting from the current state")
            return False
        self.dispatch(LoadSnapshot(snapshot))
        log.info(
            "Rehydrated snapshot with %d products, %d customers, %d sales",
            len(snapshot.products),
            len(snapshot.customers),
            len(snapshot.sales),
        )
        return True


__all__ = [
    "PosState",
    "AddProduct",
    "UpdateProduct",
    "DeleteProduct",
    "AddCustomer",
    "UpdateCustomer",
    "DeleteCustomer",
    "AdjustCustomerBalance",
    "AddSupplier",
    "UpdateSupplier",
    "DeleteSupplier",
    "AddExpense",
    "UpdateExpense",
    "DeleteExpense",
    "AddPurchaseOrder",
    "UpdatePurchaseOrder",
    "RecordSupplierPayment",
    "RecordSale",
    "LoadSnapshot",
    "Command",
    "Persistence",
    "Store",
    "find_stock_conflicts",
    "reduce",
]
