"""Data access layer for the Veggie Market POS.

This module provides low-level helpers that read from and write to the
market workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: creating, opening, and persisting the Excel file.
3. Snapshot mapping: converting a :class:`~veggie_pos.state.PosState` to and
   from worksheet rows through :class:`WorkbookStore`, the persistence hook
   handed to the state store.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    ERP_DEFAULT_TIMEOUT_SECONDS,
    ERP_TAX_RATE,
    CreditPolicy,
    CustomerType,
    PaymentMethod,
    PriceConflictPolicy,
    PurchaseOrderStatus,
    SheetName,
)
from .erp_client import ErpConfig
from .models import (
    CartLine,
    Customer,
    Expense,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    Sale,
    Supplier,
    SupplierPayment,
    as_aware,
)
from .state import PosState


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "Category",
        "Price",
        "Unit",
        "Stock",
        "MinStock",
        "Barcode",
        "Supplier",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "Name",
        "Phone",
        "Email",
        "Address",
        "CustomerType",
        "CreditLimit",
        "Balance",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "ReceiptNumber",
        "Timestamp",
        "PaymentMethod",
        "Total",
        "Cashier",
        "CustomerID",
        "AmountTendered",
    ],
    SheetName.SALE_LINES.value: [
        "SaleID",
        "ProductID",
        "ProductName",
        "Category",
        "Unit",
        "CatalogPrice",
        "SnapshotStock",
        "SnapshotMinStock",
        "Barcode",
        "Supplier",
        "Quantity",
        "UnitPrice",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "Name",
        "ContactPerson",
        "Phone",
        "Email",
        "Address",
        "Products",
        "PaymentTerms",
        "CreditLimit",
        "Balance",
    ],
    SheetName.EXPENSES.value: [
        "ExpenseID",
        "Category",
        "Description",
        "Amount",
        "PaymentMethod",
        "Date",
        "Reference",
        "SupplierID",
    ],
    SheetName.PURCHASE_ORDERS.value: [
        "OrderID",
        "SupplierID",
        "OrderNumber",
        "Status",
        "OrderDate",
        "ExpectedDate",
        "ReceivedDate",
    ],
    SheetName.PURCHASE_ORDER_LINES.value: [
        "OrderID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
    ],
    SheetName.SUPPLIER_PAYMENTS.value: [
        "PaymentID",
        "SupplierID",
        "Amount",
        "PaymentMethod",
        "Date",
        "Reference",
        "Notes",
    ],
}

_PRODUCT_LIST_SEPARATOR = "; "


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    market_name: str
    schema_version: str
    default_operator: str
    price_conflict_policy: PriceConflictPolicy = PriceConflictPolicy.REJECT
    credit_policy: CreditPolicy = CreditPolicy.IGNORE
    erp: Optional[ErpConfig] = None
    erp_tax_rate: Decimal = ERP_TAX_RATE


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _parse_erp(parser: configparser.ConfigParser) -> Optional[ErpConfig]:
    if not parser.getboolean("ERP", "Enabled", fallback=False):
        return None
    base_url = parser.get("ERP", "BaseUrl", fallback="").strip()
    if not base_url:
        raise KeyError("Missing required configuration entry: [ERP] BaseUrl")
    return ErpConfig(
        base_url=base_url,
        api_key=parser.get("ERP", "ApiKey", fallback="").strip() or None,
        username=parser.get("ERP", "Username", fallback="").strip() or None,
        password=parser.get("ERP", "Password", fallback="").strip() or None,
        timeout=parser.getfloat("ERP", "TimeoutSeconds", fallback=ERP_DEFAULT_TIMEOUT_SECONDS),
    )


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` are mandatory; ``[Sales]`` and ``[ERP]``
    fall back to defaults. Relative ``DataFile`` entries are anchored to
    ``base_path`` (or the working directory) and resolved.

    Raises:
        KeyError: If a required section or option is missing, or a policy
            value is not recognised.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        market_name = parser.get("System", "MarketName")
        schema_version = parser.get("System", "SchemaVersion")
        default_operator = parser.get("Defaults", "Operator")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    try:
        price_policy = PriceConflictPolicy(
            parser.get("Sales", "PriceConflictPolicy", fallback=PriceConflictPolicy.REJECT.value).strip().lower()
        )
        credit_policy = CreditPolicy(
            parser.get("Sales", "CreditPolicy", fallback=CreditPolicy.IGNORE.value).strip().lower()
        )
    except ValueError as exc:
        raise KeyError(f"Invalid [Sales] configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        market_name=market_name,
        schema_version=schema_version,
        default_operator=default_operator,
        price_conflict_policy=price_policy,
        credit_policy=credit_policy,
        erp=_parse_erp(parser),
        erp_tax_rate=Decimal(parser.get("ERP", "TaxRate", fallback=str(ERP_TAX_RATE)).strip()),
    )


def new_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Create an in-memory workbook with one bold header row per sheet."""

    workbook = openpyxl.Workbook()
    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the market workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    """Yield the raw values of every non-empty data row on a sheet."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal(default)


def _optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None and raw != "" else None


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _timestamp(raw: object) -> datetime:
    """Parse a stored moment; cells typed in by hand come back naive and are read as local time."""
    if isinstance(raw, datetime):
        return as_aware(raw)
    return as_aware(datetime.fromisoformat(str(raw)))


def _optional_timestamp(raw: object) -> Optional[datetime]:
    return _timestamp(raw) if raw is not None and raw != "" else None


def _isoformat(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


def serialize_product(record: Product) -> List[object]:
    return [
        record.product_id,
        record.name,
        record.category,
        record.price,
        record.unit,
        record.stock,
        record.min_stock,
        record.barcode,
        record.supplier,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a ``Products`` row, coercing ids to ``str`` and numbers to ``Decimal``."""

    product_id, name, category, price, unit, stock, min_stock, barcode, supplier = raw_row[:9]
    return Product(
        product_id=str(product_id),
        name=_text(name),
        category=_text(category),
        price=_decimal(price),
        unit=_text(unit),
        stock=_decimal(stock),
        min_stock=_decimal(min_stock),
        barcode=_optional_text(barcode),
        supplier=_optional_text(supplier),
    )


def serialize_customer(record: Customer) -> List[object]:
    return [
        record.customer_id,
        record.name,
        record.phone,
        record.email,
        record.address,
        record.customer_type.value,
        record.credit_limit,
        record.balance,
    ]


def deserialize_customer(raw_row: Sequence[object]) -> Customer:
    customer_id, name, phone, email, address, customer_type, credit_limit, balance = raw_row[:8]
    return Customer(
        customer_id=str(customer_id),
        name=_text(name),
        phone=_text(phone),
        email=_text(email),
        address=_text(address),
        customer_type=CustomerType(_text(customer_type) or CustomerType.RETAIL.value),
        credit_limit=_decimal(credit_limit),
        balance=_decimal(balance),
    )


def serialize_sale(record: Sale) -> List[object]:
    return [
        record.sale_id,
        record.receipt_number,
        record.timestamp.isoformat(),
        record.payment_method.value,
        record.total,
        record.cashier,
        record.customer_id,
        record.amount_tendered,
    ]


def serialize_sale_line(sale_id: str, line: CartLine) -> List[object]:
    product = line.product
    return [
        sale_id,
        product.product_id,
        product.name,
        product.category,
        product.unit,
        product.price,
        product.stock,
        product.min_stock,
        product.barcode,
        product.supplier,
        line.quantity,
        line.unit_price,
    ]


def deserialize_sale_line(raw_row: Sequence[object]) -> CartLine:
    (
        _sale_id,
        product_id,
        name,
        category,
        unit,
        catalog_price,
        stock,
        min_stock,
        barcode,
        supplier,
        quantity,
        unit_price,
    ) = raw_row[:12]
    product = Product(
        product_id=str(product_id),
        name=_text(name),
        category=_text(category),
        price=_decimal(catalog_price),
        unit=_text(unit),
        stock=_decimal(stock),
        min_stock=_decimal(min_stock),
        barcode=_optional_text(barcode),
        supplier=_optional_text(supplier),
    )
    return CartLine(product=product, quantity=_decimal(quantity), unit_price=_decimal(unit_price))


def deserialize_sale(raw_row: Sequence[object], lines: Sequence[CartLine]) -> Sale:
    sale_id, receipt_number, timestamp, payment_method, total, cashier, customer_id, tendered = raw_row[:8]
    return Sale(
        sale_id=str(sale_id),
        receipt_number=_text(receipt_number),
        lines=tuple(lines),
        total=_decimal(total),
        payment_method=PaymentMethod(_text(payment_method)),
        timestamp=_timestamp(timestamp),
        cashier=_text(cashier),
        customer_id=_optional_text(customer_id),
        amount_tendered=_decimal(tendered) if tendered not in (None, "") else None,
    )


def serialize_supplier(record: Supplier) -> List[object]:
    return [
        record.supplier_id,
        record.name,
        record.contact_person,
        record.phone,
        record.email,
        record.address,
        _PRODUCT_LIST_SEPARATOR.join(record.products),
        record.payment_terms,
        record.credit_limit,
        record.balance,
    ]


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    supplier_id, name, contact, phone, email, address, products, terms, credit_limit, balance = raw_row[:10]
    product_names = tuple(
        item.strip() for item in _text(products).split(_PRODUCT_LIST_SEPARATOR.strip()) if item.strip()
    )
    return Supplier(
        supplier_id=str(supplier_id),
        name=_text(name),
        contact_person=_text(contact),
        phone=_text(phone),
        email=_text(email),
        address=_text(address),
        products=product_names,
        payment_terms=_text(terms),
        credit_limit=_decimal(credit_limit),
        balance=_decimal(balance),
    )


def serialize_expense(record: Expense) -> List[object]:
    return [
        record.expense_id,
        record.category,
        record.description,
        record.amount,
        record.payment_method.value,
        record.date.isoformat(),
        record.reference,
        record.supplier_id,
    ]


def deserialize_expense(raw_row: Sequence[object]) -> Expense:
    expense_id, category, description, amount, payment_method, date, reference, supplier_id = raw_row[:8]
    return Expense(
        expense_id=str(expense_id),
        category=_text(category),
        description=_text(description),
        amount=_decimal(amount),
        payment_method=PaymentMethod(_text(payment_method)),
        date=_timestamp(date),
        reference=_optional_text(reference),
        supplier_id=_optional_text(supplier_id),
    )


def serialize_purchase_order(record: PurchaseOrder) -> List[object]:
    return [
        record.order_id,
        record.supplier_id,
        record.order_number,
        record.status.value,
        record.order_date.isoformat(),
        _isoformat(record.expected_date),
        _isoformat(record.received_date),
    ]


def serialize_purchase_order_line(order_id: str, line: PurchaseOrderLine) -> List[object]:
    return [order_id, line.product_id, line.product_name, line.quantity, line.unit_price]


def deserialize_purchase_order_line(raw_row: Sequence[object]) -> PurchaseOrderLine:
    _order_id, product_id, product_name, quantity, unit_price = raw_row[:5]
    return PurchaseOrderLine(
        product_id=str(product_id),
        product_name=_text(product_name),
        quantity=_decimal(quantity),
        unit_price=_decimal(unit_price),
    )


def deserialize_purchase_order(raw_row: Sequence[object], lines: Sequence[PurchaseOrderLine]) -> PurchaseOrder:
    order_id, supplier_id, order_number, status, order_date, expected, received = raw_row[:7]
    return PurchaseOrder(
        order_id=str(order_id),
        supplier_id=str(supplier_id),
        order_number=_text(order_number),
        lines=tuple(lines),
        order_date=_timestamp(order_date),
        status=PurchaseOrderStatus(_text(status) or PurchaseOrderStatus.PENDING.value),
        expected_date=_optional_timestamp(expected),
        received_date=_optional_timestamp(received),
    )


def serialize_supplier_payment(record: SupplierPayment) -> List[object]:
    return [
        record.payment_id,
        record.supplier_id,
        record.amount,
        record.payment_method.value,
        record.date.isoformat(),
        record.reference,
        record.notes,
    ]


def deserialize_supplier_payment(raw_row: Sequence[object]) -> SupplierPayment:
    payment_id, supplier_id, amount, payment_method, date, reference, notes = raw_row[:7]
    return SupplierPayment(
        payment_id=str(payment_id),
        supplier_id=str(supplier_id),
        amount=_decimal(amount),
        payment_method=PaymentMethod(_text(payment_method)),
        date=_timestamp(date),
        reference=_text(reference),
        notes=_optional_text(notes),
    )


def snapshot_to_workbook(snapshot: PosState) -> Workbook:
    """Render a full snapshot into a fresh workbook."""

    workbook = new_workbook()
    products = workbook[SheetName.PRODUCTS.value]
    for product in snapshot.products:
        products.append(serialize_product(product))
    customers = workbook[SheetName.CUSTOMERS.value]
    for customer in snapshot.customers:
        customers.append(serialize_customer(customer))
    sales = workbook[SheetName.SALES.value]
    sale_lines = workbook[SheetName.SALE_LINES.value]
    for sale in snapshot.sales:
        sales.append(serialize_sale(sale))
        for line in sale.lines:
            sale_lines.append(serialize_sale_line(sale.sale_id, line))
    suppliers = workbook[SheetName.SUPPLIERS.value]
    for supplier in snapshot.suppliers:
        suppliers.append(serialize_supplier(supplier))
    expenses = workbook[SheetName.EXPENSES.value]
    for expense in snapshot.expenses:
        expenses.append(serialize_expense(expense))
    orders = workbook[SheetName.PURCHASE_ORDERS.value]
    order_lines = workbook[SheetName.PURCHASE_ORDER_LINES.value]
    for order in snapshot.purchase_orders:
        orders.append(serialize_purchase_order(order))
        for line in order.lines:
            order_lines.append(serialize_purchase_order_line(order.order_id, line))
    payments = workbook[SheetName.SUPPLIER_PAYMENTS.value]
    for payment in snapshot.supplier_payments:
        payments.append(serialize_supplier_payment(payment))
    return workbook


def workbook_to_snapshot(workbook: Workbook) -> PosState:
    """Rebuild a snapshot from the workbook sheets, keeping sheet order."""

    lines_by_sale: Dict[str, List[CartLine]] = {}
    for raw in iter_sheet_rows(workbook, SheetName.SALE_LINES.value):
        lines_by_sale.setdefault(str(raw[0]), []).append(deserialize_sale_line(raw))
    lines_by_order: Dict[str, List[PurchaseOrderLine]] = {}
    for raw in iter_sheet_rows(workbook, SheetName.PURCHASE_ORDER_LINES.value):
        lines_by_order.setdefault(str(raw[0]), []).append(deserialize_purchase_order_line(raw))

    return PosState(
        products=tuple(deserialize_product(raw) for raw in iter_sheet_rows(workbook, SheetName.PRODUCTS.value)),
        customers=tuple(deserialize_customer(raw) for raw in iter_sheet_rows(workbook, SheetName.CUSTOMERS.value)),
        sales=tuple(
            deserialize_sale(raw, lines_by_sale.get(str(raw[0]), ()))
            for raw in iter_sheet_rows(workbook, SheetName.SALES.value)
        ),
        suppliers=tuple(deserialize_supplier(raw) for raw in iter_sheet_rows(workbook, SheetName.SUPPLIERS.value)),
        expenses=tuple(deserialize_expense(raw) for raw in iter_sheet_rows(workbook, SheetName.EXPENSES.value)),
        purchase_orders=tuple(
            deserialize_purchase_order(raw, lines_by_order.get(str(raw[0]), ()))
            for raw in iter_sheet_rows(workbook, SheetName.PURCHASE_ORDERS.value)
        ),
        supplier_payments=tuple(
            deserialize_supplier_payment(raw)
            for raw in iter_sheet_rows(workbook, SheetName.SUPPLIER_PAYMENTS.value)
        ),
    )


class WorkbookStore:
    """Persistence hook that keeps the snapshot in one workbook file.

    ``save`` rewrites every sheet from the snapshot, so the file always
    mirrors the latest state. ``load`` answers ``None`` for a missing or empty
    workbook so the caller keeps its initial state.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()

    def load(self) -> Optional[PosState]:
        if not self.data_file.exists():
            log.info("Workbook '%s' does not exist yet", self.data_file)
            return None
        snapshot = workbook_to_snapshot(open_workbook(self.data_file))
        if snapshot == PosState():
            return None
        return snapshot

    def save(self, snapshot: PosState) -> None:
        save_workbook(snapshot_to_workbook(snapshot), self.data_file)
        log.debug("Saved snapshot to '%s'", self.data_file)


__all__ = [
    "CONFIG_FILE_NAME",
    "SHEET_COLUMNS",
    "ConfigSettings",
    "WorkbookStore",
    "find_config_file",
    "read_config",
    "parse_settings",
    "new_workbook",
    "open_workbook",
    "save_workbook",
    "iter_sheet_rows",
    "snapshot_to_workbook",
    "workbook_to_snapshot",
]
