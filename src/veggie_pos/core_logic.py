"""Business logic layer for the Veggie Market POS.

This module hosts the :class:`SaleEngine`, the single authority that turns an
open tab into an immutable :class:`~veggie_pos.models.Sale`, together with the
catalog, customer, supplier, purchasing, and expense helpers used by the front end. All
state changes go through the injected :class:`~veggie_pos.state.Store`; the
engine never edits stock or the ledger itself.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from . import data_manager, log
from .cart import CartSession, require_nonnegative_money, require_positive_quantity
from .constants import EXPECTED_SCHEMA_VERSION, CreditPolicy, CustomerType, PaymentMethod, PurchaseOrderStatus
from .erp_client import ErpClient
from .errors import (
    BusinessRuleViolation,
    CreditLimitExceeded,
    CustomerRequired,
    EmptyCart,
    InsufficientPayment,
    MissingReferenceError,
)
from .models import (
    Customer,
    Expense,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    Sale,
    Supplier,
    SupplierPayment,
    Tab,
    as_aware,
)
from .state import (
    AddCustomer,
    AddExpense,
    AddProduct,
    AddPurchaseOrder,
    AddSupplier,
    AdjustCustomerBalance,
    DeleteCustomer,
    DeleteExpense,
    DeleteProduct,
    DeleteSupplier,
    PosState,
    RecordSale,
    RecordSupplierPayment,
    Store,
    UpdateCustomer,
    UpdateExpense,
    UpdateProduct,
    UpdatePurchaseOrder,
    UpdateSupplier,
)
from .sync import ErpSyncAdapter, SyncDispatcher


@dataclass(frozen=True)
class SaleCommitted:
    """Event published after a sale has been applied to the local state."""

    sale: Sale


SaleListener = Callable[[SaleCommitted], None]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_sale_id(*, when: Optional[datetime] = None, sequence: int = 0, prefix: str = "S") -> str:
    """Generate a sortable sale identifier.

    Args:
        when (datetime | None): Commit time; defaults to now (UTC).
        sequence (int): Per-engine counter appended so that two commits in
            the same microsecond never share an id.
        prefix (str): Leading designator.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{sequence:04d}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{sequence:04d}"


def generate_receipt_number(when: Optional[datetime] = None) -> str:
    """Return ``R`` followed by the last six digits of the epoch milliseconds."""
    when = when or _resolve_timestamp(None)
    millis = int(when.timestamp() * 1000)
    return f"R{str(millis)[-6:]}"


def coerce_payment_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    """Map user input onto :class:`PaymentMethod`.

    Raises:
        BusinessRuleViolation: For unsupported tender types.
    """
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError as exc:
        log.error("Unsupported payment method provided: %s", value)
        raise BusinessRuleViolation(f"Unsupported payment method: {value}") from exc


class SaleEngine:
    """Validate and commit tabs from a :class:`CartSession` into the store.

    A commit is all-or-nothing: every validation runs before the store sees a
    ``RecordSale`` command, the reducer re-checks stock while holding the store
    lock, and the tab is cleared only after the state swap succeeded. Sale
    listeners (the ERP sync dispatcher, for one) run afterwards and cannot
    undo the sale.

    Args:
        store (Store): Shared state store.
        cart (CartSession): Register session whose tabs are committed.
        operator (str): Name recorded as the cashier on every sale.
        credit_policy (CreditPolicy): Whether credit sales move customer
            balances.
        clock (Callable[[], datetime] | None): Source of commit timestamps;
            defaults to the current UTC time.
    """

    def __init__(
        self,
        store: Store,
        cart: CartSession,
        *,
        operator: str,
        credit_policy: CreditPolicy = CreditPolicy.IGNORE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.cart = cart
        self.operator = operator
        self.credit_policy = credit_policy
        self.clock = clock
        self._listeners: List[SaleListener] = []
        self._sequence = itertools.count(1)

    def subscribe(self, listener: SaleListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def commit(
        self,
        tab_id: str,
        payment_method: Union[PaymentMethod, str],
        amount_tendered: Optional[Decimal] = None,
    ) -> Sale:
        """Turn a tab into an immutable sale.

        Args:
            tab_id (str): Tab to finalise.
            payment_method (PaymentMethod | str): Tender type.
            amount_tendered (Decimal | None): Cash handed over; when omitted
                exact payment is assumed.

        Returns:
            Sale: The recorded sale, ready for receipt rendering.

        Raises:
            MissingReferenceError: If the tab (or a bound customer under
                credit tracking) is unknown.
            EmptyCart: If the tab has no lines.
            InsufficientPayment: If cash tendered is below the total.
            StockConflict: If any line now exceeds the available stock.
            CustomerRequired: Credit sale without a customer under tracking.
            CreditLimitExceeded: Credit sale past the customer's limit.
            ValueError: For a negative tendered amount.
        """
        # The tab is read under the store lock so a second commit of the same
        # tab sees it already cleared.
        with self.store.lock:
            tab = self.cart.get_tab(tab_id)
            if not tab.lines:
                log.warning("Commit rejected for empty tab '%s'", tab_id)
                raise EmptyCart(f"Tab '{tab.name}' has no items")

            method = coerce_payment_method(payment_method)
            total = tab.total
            if amount_tendered is not None:
                require_nonnegative_money(amount_tendered)
                if method is PaymentMethod.CASH and amount_tendered < total:
                    log.warning("Cash tender %s below total %s on tab '%s'", amount_tendered, total, tab_id)
                    raise InsufficientPayment(total, amount_tendered)

            balance_delta = self._credit_delta(self.store.state, tab, method, total)
            timestamp = _resolve_timestamp(self.clock() if self.clock else None)
            sale = Sale(
                sale_id=generate_sale_id(when=timestamp, sequence=next(self._sequence)),
                receipt_number=generate_receipt_number(timestamp),
                lines=tab.lines,
                total=total,
                payment_method=method,
                timestamp=timestamp,
                cashier=self.operator,
                customer_id=tab.customer_id,
                amount_tendered=amount_tendered,
            )
            self.store.dispatch(RecordSale(sale=sale, balance_delta=balance_delta))
            self.cart.clear_tab(tab_id)

        log.info(
            "Committed sale '%s' (receipt %s, %d lines, total=%s, payment=%s)",
            sale.sale_id,
            sale.receipt_number,
            len(sale.lines),
            sale.total,
            sale.payment_method.value,
        )
        self._publish(SaleCommitted(sale))
        return sale

    def commit_active(
        self,
        payment_method: Union[PaymentMethod, str],
        amount_tendered: Optional[Decimal] = None,
    ) -> Sale:
        return self.commit(self.cart.active_tab_id, payment_method, amount_tendered)

    def _credit_delta(
        self,
        state: PosState,
        tab: Tab,
        method: PaymentMethod,
        total: Decimal,
    ) -> Optional[Decimal]:
        if method is not PaymentMethod.CREDIT or self.credit_policy is CreditPolicy.IGNORE:
            return None
        if tab.customer_id is None:
            log.warning("Credit sale on tab '%s' has no customer", tab.tab_id)
            raise CustomerRequired("Credit sales require a customer")
        customer = state.get_customer(tab.customer_id)
        if customer is None:
            raise MissingReferenceError(f"Unknown customer id: {tab.customer_id}")
        if customer.balance + total > customer.credit_limit:
            log.warning(
                "Credit limit exceeded for '%s': balance=%s total=%s limit=%s",
                customer.customer_id,
                customer.balance,
                total,
                customer.credit_limit,
            )
            raise CreditLimitExceeded(
                f"Customer '{customer.name}' has {customer.available_credit} credit available"
            )
        return total

    def _publish(self, event: SaleCommitted) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Sale listener %r failed for sale '%s'", listener, event.sale.sale_id)


# ---------------------------------------------------------------------------
# Catalog, customer, supplier, and expense helpers
# ---------------------------------------------------------------------------


def get_product(store: Store, product_id: str) -> Product:
    """Resolve a product or raise :class:`MissingReferenceError`."""
    product = store.state.get_product(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def get_customer(store: Store, customer_id: str) -> Customer:
    """Resolve a customer or raise :class:`MissingReferenceError`."""
    customer = store.state.get_customer(customer_id)
    if customer is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    return customer


def list_products(store: Store) -> List[Product]:
    return list(store.state.products)


def list_sales(store: Store) -> List[Sale]:
    """Return the ledger newest first."""
    return list(store.state.sales)


def find_product_by_barcode(store: Store, barcode: str) -> Product:
    """Return the product carrying ``barcode``.

    Raises:
        MissingReferenceError: If no product matches.
    """
    for product in store.state.products:
        if product.barcode and product.barcode == barcode:
            return product
    log.warning("Barcode lookup failed for '%s'", barcode)
    raise MissingReferenceError(f"No product with barcode: {barcode}")


def search_products(store: Store, term: str) -> List[Product]:
    """Case-insensitive match on name or category, substring match on barcode."""
    needle = term.strip().lower()
    return [
        product
        for product in store.state.products
        if needle in product.name.lower()
        or needle in product.category.lower()
        or (product.barcode is not None and term.strip() in product.barcode)
    ]


def add_product(
    store: Store,
    *,
    product_id: str,
    name: str,
    category: str,
    price: Decimal,
    unit: str,
    stock: Decimal,
    min_stock: Decimal = Decimal("0"),
    barcode: Optional[str] = None,
    supplier: Optional[str] = None,
) -> Product:
    """Validate and register a new catalog product.

    Raises:
        ValueError: For a negative price, stock, or minimum stock.
        DuplicateRecordError: If ``product_id`` is taken.
    """
    require_nonnegative_money(price)
    require_nonnegative_money(stock)
    require_nonnegative_money(min_stock)
    product = Product(
        product_id=product_id,
        name=name,
        category=category,
        price=price,
        unit=unit,
        stock=stock,
        min_stock=min_stock,
        barcode=barcode,
        supplier=supplier,
    )
    store.dispatch(AddProduct(product))
    log.info("Added product '%s' (%s) with stock %s", product_id, name, stock)
    return product


def update_product(store: Store, product_id: str, /, **changes: object) -> Product:
    """Apply field changes to an existing product.

    Only the fields named in ``changes`` are touched. Price and stock values
    go through the same validation as :func:`add_product`.

    Raises:
        BusinessRuleViolation: If ``changes`` tries to set ``product_id``.
    """
    if "product_id" in changes:
        log.warning("Rejected id change for product '%s'", product_id)
        raise BusinessRuleViolation("Product ids cannot be changed")
    current = get_product(store, product_id)
    for key in ("price", "stock", "min_stock"):
        if key in changes:
            require_nonnegative_money(changes[key])  # type: ignore[arg-type]
    updated = replace(current, **changes)  # type: ignore[arg-type]
    store.dispatch(UpdateProduct(updated))
    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(changes)))
    return updated


def set_product_stock(store: Store, product_id: str, stock: Decimal) -> Product:
    return update_product(store, product_id, stock=stock)


def delete_product(store: Store, product_id: str) -> None:
    store.dispatch(DeleteProduct(product_id))
    log.info("Deleted product '%s'", product_id)


def add_customer(
    store: Store,
    *,
    customer_id: str,
    name: str,
    phone: str = "",
    email: str = "",
    address: str = "",
    customer_type: CustomerType = CustomerType.RETAIL,
    credit_limit: Decimal = Decimal("0"),
    balance: Decimal = Decimal("0"),
) -> Customer:
    """Validate and register a new customer."""
    require_nonnegative_money(credit_limit)
    customer = Customer(
        customer_id=customer_id,
        name=name,
        phone=phone,
        email=email,
        address=address,
        customer_type=CustomerType(customer_type),
        credit_limit=credit_limit,
        balance=balance,
    )
    store.dispatch(AddCustomer(customer))
    log.info("Added %s customer '%s' (%s)", customer.customer_type.value, customer_id, name)
    return customer


def update_customer(store: Store, customer_id: str, /, **changes: object) -> Customer:
    if "customer_id" in changes:
        log.warning("Rejected id change for customer '%s'", customer_id)
        raise BusinessRuleViolation("Customer ids cannot be changed")
    current = get_customer(store, customer_id)
    if "credit_limit" in changes:
        require_nonnegative_money(changes["credit_limit"])  # type: ignore[arg-type]
    updated = replace(current, **changes)  # type: ignore[arg-type]
    store.dispatch(UpdateCustomer(updated))
    log.info("Updated customer '%s': %s", customer_id, ", ".join(sorted(changes)))
    return updated


def delete_customer(store: Store, customer_id: str) -> None:
    store.dispatch(DeleteCustomer(customer_id))
    log.info("Deleted customer '%s'", customer_id)


def record_customer_payment(store: Store, customer_id: str, amount: Decimal) -> Customer:
    """Reduce a customer's outstanding balance by ``amount``.

    Raises:
        ValueError: If ``amount`` is not positive.
        MissingReferenceError: If the customer is unknown.
    """
    require_positive_quantity(amount)
    store.dispatch(AdjustCustomerBalance(customer_id=customer_id, delta=-amount))
    customer = get_customer(store, customer_id)
    log.info("Recorded payment of %s from '%s'; balance now %s", amount, customer_id, customer.balance)
    return customer


def get_supplier(store: Store, supplier_id: str) -> Supplier:
    """Resolve a supplier or raise :class:`MissingReferenceError`."""
    supplier = store.state.get_supplier(supplier_id)
    if supplier is None:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}")
    return supplier


def add_supplier(
    store: Store,
    *,
    supplier_id: str,
    name: str,
    contact_person: str = "",
    phone: str = "",
    email: str = "",
    address: str = "",
    products: tuple[str, ...] = (),
    payment_terms: str = "",
    credit_limit: Decimal = Decimal("0"),
    balance: Decimal = Decimal("0"),
) -> Supplier:
    """Register a supplier; ``balance`` is the amount already owed to it."""
    require_nonnegative_money(credit_limit)
    supplier = Supplier(
        supplier_id=supplier_id,
        name=name,
        contact_person=contact_person,
        phone=phone,
        email=email,
        address=address,
        products=tuple(products),
        payment_terms=payment_terms,
        credit_limit=credit_limit,
        balance=balance,
    )
    store.dispatch(AddSupplier(supplier))
    log.info("Added supplier '%s' (%s)", supplier_id, name)
    return supplier


def update_supplier(store: Store, supplier_id: str, /, **changes: object) -> Supplier:
    if "supplier_id" in changes:
        log.warning("Rejected id change for supplier '%s'", supplier_id)
        raise BusinessRuleViolation("Supplier ids cannot be changed")
    current = get_supplier(store, supplier_id)
    if "credit_limit" in changes:
        require_nonnegative_money(changes["credit_limit"])  # type: ignore[arg-type]
    if "products" in changes:
        changes["products"] = tuple(changes["products"])  # type: ignore[arg-type]
    updated = replace(current, **changes)  # type: ignore[arg-type]
    store.dispatch(UpdateSupplier(updated))
    log.info("Updated supplier '%s': %s", supplier_id, ", ".join(sorted(changes)))
    return updated


def delete_supplier(store: Store, supplier_id: str) -> None:
    store.dispatch(DeleteSupplier(supplier_id))
    log.info("Deleted supplier '%s'", supplier_id)


def record_supplier_payment(
    store: Store,
    *,
    payment_id: str,
    supplier_id: str,
    amount: Decimal,
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
    date: Optional[datetime] = None,
    reference: str = "",
    notes: Optional[str] = None,
) -> Supplier:
    """Pay a supplier and return it with the reduced balance.

    Raises:
        ValueError: If ``amount`` is not positive.
        MissingReferenceError: If the supplier is unknown.
        DuplicateRecordError: If ``payment_id`` is taken.
    """
    require_positive_quantity(amount)
    payment = SupplierPayment(
        payment_id=payment_id,
        supplier_id=supplier_id,
        amount=amount,
        payment_method=coerce_payment_method(payment_method),
        date=as_aware(_resolve_timestamp(date)),
        reference=reference,
        notes=notes,
    )
    store.dispatch(RecordSupplierPayment(payment))
    supplier = get_supplier(store, supplier_id)
    log.info("Paid %s to supplier '%s'; balance now %s", amount, supplier_id, supplier.balance)
    return supplier


def add_purchase_order(
    store: Store,
    *,
    order_id: str,
    supplier_id: str,
    lines: Sequence[Tuple[str, Decimal, Decimal]],
    order_number: Optional[str] = None,
    order_date: Optional[datetime] = None,
    expected_date: Optional[datetime] = None,
) -> PurchaseOrder:
    """Place a pending order from ``(product_id, quantity, unit_price)`` lines.

    Product names are copied from the catalog when the product is known;
    otherwise the id doubles as the name.

    Raises:
        ValueError: For an empty order, a non-positive quantity, or a
            negative price.
        MissingReferenceError: If the supplier is unknown.
    """
    if not lines:
        raise ValueError("A purchase order needs at least one line")
    get_supplier(store, supplier_id)
    order_lines = []
    for product_id, quantity, unit_price in lines:
        require_positive_quantity(quantity)
        require_nonnegative_money(unit_price)
        product = store.state.get_product(product_id)
        order_lines.append(
            PurchaseOrderLine(
                product_id=product_id,
                product_name=product.name if product is not None else product_id,
                quantity=quantity,
                unit_price=unit_price,
            )
        )
    order = PurchaseOrder(
        order_id=order_id,
        supplier_id=supplier_id,
        order_number=order_number or order_id,
        lines=tuple(order_lines),
        order_date=as_aware(_resolve_timestamp(order_date)),
        expected_date=as_aware(expected_date) if expected_date is not None else None,
    )
    store.dispatch(AddPurchaseOrder(order))
    log.info("Placed purchase order '%s' with '%s' for %s", order_id, supplier_id, order.total)
    return order


def set_purchase_order_status(
    store: Store,
    order_id: str,
    status: Union[PurchaseOrderStatus, str],
    *,
    when: Optional[datetime] = None,
) -> PurchaseOrder:
    """Move a pending order to received or cancelled.

    Raises:
        MissingReferenceError: If the order is unknown.
        BusinessRuleViolation: If the order is no longer pending.
    """
    order = store.state.get_purchase_order(order_id)
    if order is None:
        log.warning("Purchase order lookup failed for id '%s'", order_id)
        raise MissingReferenceError(f"Unknown purchase order id: {order_id}")
    status = PurchaseOrderStatus(status)
    if order.status is not PurchaseOrderStatus.PENDING:
        log.warning("Purchase order '%s' is already %s", order_id, order.status.value)
        raise BusinessRuleViolation(f"Purchase order '{order_id}' is already {order.status.value}")
    received = as_aware(_resolve_timestamp(when)) if status is PurchaseOrderStatus.RECEIVED else None
    updated = replace(order, status=status, received_date=received)
    store.dispatch(UpdatePurchaseOrder(updated))
    log.info("Purchase order '%s' marked %s", order_id, status.value)
    return updated


def add_expense(
    store: Store,
    *,
    expense_id: str,
    category: str,
    description: str,
    amount: Decimal,
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
    date: Optional[datetime] = None,
    reference: Optional[str] = None,
    supplier_id: Optional[str] = None,
) -> Expense:
    """Record an operating expense.

    A naive ``date`` is taken as local time.

    Raises:
        ValueError: If ``amount`` is not positive.
        MissingReferenceError: If ``supplier_id`` names an unknown supplier.
    """
    require_positive_quantity(amount)
    if supplier_id is not None:
        get_supplier(store, supplier_id)
    expense = Expense(
        expense_id=expense_id,
        category=category,
        description=description,
        amount=amount,
        payment_method=coerce_payment_method(payment_method),
        date=as_aware(_resolve_timestamp(date)),
        reference=reference,
        supplier_id=supplier_id,
    )
    store.dispatch(AddExpense(expense))
    log.info("Recorded expense '%s' (%s, %s)", expense_id, category, amount)
    return expense


def update_expense(store: Store, expense_id: str, /, **changes: object) -> Expense:
    if "expense_id" in changes:
        log.warning("Rejected id change for expense '%s'", expense_id)
        raise BusinessRuleViolation("Expense ids cannot be changed")
    current = store.state.get_expense(expense_id)
    if current is None:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}")
    if "amount" in changes:
        require_positive_quantity(changes["amount"])  # type: ignore[arg-type]
    if "payment_method" in changes:
        changes["payment_method"] = coerce_payment_method(changes["payment_method"])  # type: ignore[arg-type]
    if changes.get("date") is not None:
        changes["date"] = as_aware(changes["date"])  # type: ignore[arg-type]
    if changes.get("supplier_id") is not None:
        get_supplier(store, changes["supplier_id"])  # type: ignore[arg-type]
    updated = replace(current, **changes)  # type: ignore[arg-type]
    store.dispatch(UpdateExpense(updated))
    log.info("Updated expense '%s': %s", expense_id, ", ".join(sorted(changes)))
    return updated


def delete_expense(store: Store, expense_id: str) -> None:
    store.dispatch(DeleteExpense(expense_id))
    log.info("Deleted expense '%s'", expense_id)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


@dataclass
class RuntimeContext:
    """Everything a front end needs for one register session.

    ``sync`` is ``None`` unless the ERP integration is enabled.
    """

    settings: data_manager.ConfigSettings
    store: Store
    cart: CartSession
    engine: SaleEngine
    sync: Optional[SyncDispatcher] = None
    _closers: List[Callable[[], None]] = field(default_factory=list, repr=False, compare=False)

    def close(self) -> None:
        while self._closers:
            self._closers.pop()()


def build_sync_dispatcher(settings: data_manager.ConfigSettings, *, client: Optional[ErpClient] = None) -> SyncDispatcher:
    """Create the ERP dispatcher for ``settings.erp``.

    Raises:
        ValueError: If the ERP integration is disabled in the settings.
    """
    if settings.erp is None:
        raise ValueError("ERP integration is not enabled")
    client = client if client is not None else ErpClient(settings.erp)
    adapter = ErpSyncAdapter(client, tax_rate=settings.erp_tax_rate)
    return SyncDispatcher(adapter)


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    *,
    store: Optional[Store] = None,
    sync: Optional[SyncDispatcher] = None,
) -> RuntimeContext:
    """Wire a store, cart session, sale engine, and ERP sync from ``settings``.

    When no store is supplied, one backed by the configured workbook is
    created and rehydrated from disk. With the ERP enabled, the dispatcher is
    subscribed to committed sales and shut down by :meth:`RuntimeContext.close`.
    """
    if store is None:
        store = Store(persistence=data_manager.WorkbookStore(settings.data_file))
        store.hydrate()
    cart = CartSession(price_conflict_policy=settings.price_conflict_policy)
    engine = SaleEngine(
        store,
        cart,
        operator=settings.default_operator,
        credit_policy=settings.credit_policy,
    )
    context = RuntimeContext(settings=settings, store=store, cart=cart, engine=engine)

    if sync is None and settings.erp is not None:
        sync = build_sync_dispatcher(settings)
        context._closers.append(sync.adapter.client.close)
    if sync is not None:
        context.sync = sync
        context._closers.append(sync.close)
        context._closers.append(engine.subscribe(sync))
        log.info("ERP sync enabled")
    return context


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and the persisted snapshot for a register session.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    context = build_runtime_context(settings)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


__all__ = [
    "SaleCommitted",
    "SaleEngine",
    "RuntimeContext",
    "generate_sale_id",
    "generate_receipt_number",
    "coerce_payment_method",
    "get_product",
    "get_customer",
    "list_products",
    "list_sales",
    "find_product_by_barcode",
    "search_products",
    "add_product",
    "update_product",
    "set_product_stock",
    "delete_product",
    "add_customer",
    "update_customer",
    "delete_customer",
    "record_customer_payment",
    "get_supplier",
    "add_supplier",
    "update_supplier",
    "delete_supplier",
    "record_supplier_payment",
    "add_purchase_order",
    "set_purchase_order_status",
    "add_expense",
    "update_expense",
    "delete_expense",
    "build_sync_dispatcher",
    "build_runtime_context",
    "load_runtime_context",
    "ensure_schema_version",
]
