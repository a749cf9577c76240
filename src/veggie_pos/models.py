"""Domain records shared by the state store, cart, sale engine, and reports.

Every record is a frozen dataclass so that state transitions always produce
new values. Collections nested inside records are tuples for the same reason.
Monetary amounts and quantities are :class:`~decimal.Decimal` instances;
quantities may be fractional for weight-based units.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .constants import CustomerType, PaymentMethod, PurchaseOrderStatus


ZERO = Decimal("0")


def as_aware(moment: datetime) -> datetime:
    """Return ``moment`` with a timezone; naive values are read as local time."""
    if moment.tzinfo is None or moment.tzinfo.utcoffset(moment) is None:
        return moment.astimezone()
    return moment


@dataclass(frozen=True)
class Product:
    """Sellable catalog item and its current stock level."""

    product_id: str
    name: str
    category: str
    price: Decimal
    unit: str
    stock: Decimal
    min_stock: Decimal = ZERO
    barcode: Optional[str] = None
    supplier: Optional[str] = None

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock


@dataclass(frozen=True)
class Customer:
    """Customer record; a positive balance means the customer owes money."""

    customer_id: str
    name: str
    phone: str = ""
    email: str = ""
    address: str = ""
    customer_type: CustomerType = CustomerType.RETAIL
    credit_limit: Decimal = ZERO
    balance: Decimal = ZERO

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.balance


@dataclass(frozen=True)
class CartLine:
    """Product snapshot captured at add time plus the quantity being sold.

    ``unit_price`` is the price used for this line, which may be an operator
    override rather than the catalog price. Later catalog edits never reach an
    open line because ``product`` is a copy taken when the line was created.
    """

    product: Product
    quantity: Decimal
    unit_price: Decimal

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Tab:
    """One in-progress bill at the register."""

    tab_id: str
    name: str
    lines: Tuple[CartLine, ...] = ()
    customer_id: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), ZERO)

    @property
    def item_count(self) -> int:
        return len(self.lines)

    def find_line(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


@dataclass(frozen=True)
class Sale:
    """Immutable record of a committed tab."""

    sale_id: str
    receipt_number: str
    lines: Tuple[CartLine, ...]
    total: Decimal
    payment_method: PaymentMethod
    timestamp: datetime
    cashier: str
    customer_id: Optional[str] = None
    amount_tendered: Optional[Decimal] = None

    @property
    def change(self) -> Decimal:
        if self.amount_tendered is None or self.amount_tendered <= self.total:
            return ZERO
        return self.amount_tendered - self.total

    @property
    def units_by_product(self) -> dict[str, Decimal]:
        units: dict[str, Decimal] = {}
        for line in self.lines:
            units[line.product_id] = units.get(line.product_id, ZERO) + line.quantity
        return units


@dataclass(frozen=True)
class Supplier:
    """Supplier contact record; a positive balance means the market owes money."""

    supplier_id: str
    name: str
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    products: Tuple[str, ...] = field(default_factory=tuple)
    payment_terms: str = ""
    credit_limit: Decimal = ZERO
    balance: Decimal = ZERO


@dataclass(frozen=True)
class PurchaseOrderLine:
    product_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class PurchaseOrder:
    """Goods ordered from a supplier.

    Receiving or cancelling an order only changes its status and dates; stock
    levels are adjusted separately.
    """

    order_id: str
    supplier_id: str
    order_number: str
    lines: Tuple[PurchaseOrderLine, ...]
    order_date: datetime
    status: PurchaseOrderStatus = PurchaseOrderStatus.PENDING
    expected_date: Optional[datetime] = None
    received_date: Optional[datetime] = None

    @property
    def total(self) -> Decimal:
        return sum((line.total for line in self.lines), ZERO)


@dataclass(frozen=True)
class SupplierPayment:
    """Money paid to a supplier against its outstanding balance."""

    payment_id: str
    supplier_id: str
    amount: Decimal
    payment_method: PaymentMethod
    date: datetime
    reference: str = ""
    notes: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    """Operating expense paid by the market."""

    expense_id: str
    category: str
    description: str
    amount: Decimal
    payment_method: PaymentMethod
    date: datetime
    reference: Optional[str] = None
    supplier_id: Optional[str] = None


__all__ = [
    "ZERO",
    "as_aware",
    "Product",
    "Customer",
    "CartLine",
    "Tab",
    "Sale",
    "Supplier",
    "Expense",
    "PurchaseOrderLine",
    "PurchaseOrder",
    "SupplierPayment",
]
