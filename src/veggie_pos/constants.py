"""Enumerations shared across the Veggie Market POS modules.

Centralises domain constants so that the state store, the sale engine, the
ERP bridge, and the command-line front end rely on a single source of truth
for identifiers that end up in the workbook or on the wire.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Dict


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.1.0"

DEFAULT_TAB_PREFIX = "Bill"

# ERP invoice mapping.
ERP_TAX_RATE = Decimal("18")
ERP_DEFAULT_CUSTOMER_REF = 1
ERP_INVOICE_TYPE_STANDARD = 0
ERP_DEFAULT_TIMEOUT_SECONDS = 5.0


class PaymentMethod(str, Enum):
    """Enumerate the tender types accepted at the register."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    CREDIT = "credit"
    BANK_TRANSFER = "bank_transfer"


# Payment mode identifiers understood by the ERP invoice endpoint.
ERP_PAYMENT_MODE_IDS: Dict[PaymentMethod, int] = {
    PaymentMethod.CASH: 1,
    PaymentMethod.CARD: 2,
    PaymentMethod.UPI: 3,
    PaymentMethod.CREDIT: 4,
    PaymentMethod.BANK_TRANSFER: 5,
}


class CustomerType(str, Enum):
    """Enumerate the customer segments served by the market."""

    RETAIL = "retail"
    WHOLESALE = "wholesale"


class PriceConflictPolicy(str, Enum):
    """How a second add with a different override price merges into a line."""

    KEEP_FIRST = "keep_first"
    REJECT = "reject"
    OVERWRITE = "overwrite"


class CreditPolicy(str, Enum):
    """Whether credit sales move the bound customer's running balance."""

    IGNORE = "ignore"
    TRACK_BALANCE = "track_balance"


class SyncState(str, Enum):
    """Lifecycle of an outbound ERP synchronisation."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncDomain(str, Enum):
    """Record families mirrored into the ERP system."""

    PRODUCTS = "products"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"
    SALES = "sales"


class PurchaseOrderStatus(str, Enum):
    """Lifecycle of a purchase order placed with a supplier."""

    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class ReportPeriod(str, Enum):
    """Time windows offered by the reporting views."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    CUSTOM = "custom"
    ALL = "all"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    SALES = "Sales"
    SALE_LINES = "SaleLines"
    SUPPLIERS = "Suppliers"
    EXPENSES = "Expenses"
    PURCHASE_ORDERS = "PurchaseOrders"
    PURCHASE_ORDER_LINES = "PurchaseOrderLines"
    SUPPLIER_PAYMENTS = "SupplierPayments"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAB_PREFIX",
    "ERP_TAX_RATE",
    "ERP_DEFAULT_CUSTOMER_REF",
    "ERP_INVOICE_TYPE_STANDARD",
    "ERP_DEFAULT_TIMEOUT_SECONDS",
    "ERP_PAYMENT_MODE_IDS",
    "PaymentMethod",
    "CustomerType",
    "PriceConflictPolicy",
    "CreditPolicy",
    "PurchaseOrderStatus",
    "SyncState",
    "SyncDomain",
    "ReportPeriod",
    "SheetName",
]
