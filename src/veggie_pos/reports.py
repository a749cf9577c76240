"""Read-only reporting views over the sales ledger and back-office records.

Every function here is a pure function of its arguments: it never reaches
into a store, never logs, and never mutates its inputs. Callers pick a
:class:`TimeWindow` with :func:`resolve_window`, then feed filtered sales into
the aggregations. :func:`build_report` does both for a full state snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .constants import ReportPeriod
from .models import ZERO, Customer, Expense, Product, Sale, Supplier, SupplierPayment, as_aware
from .state import PosState


HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive ``[start, end]`` range; ``None`` leaves that side open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        moment = as_aware(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


def resolve_window(
    period: Union[ReportPeriod, str],
    *,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> TimeWindow:
    """Translate a named reporting period into a :class:`TimeWindow`.

    ``today`` starts at midnight of ``now`` in ``now``'s own timezone, so a
    caller passing local time gets local midnight; ``week`` covers the seven
    days before ``now``; ``month`` starts on the first day of ``now``'s month;
    ``custom`` uses ``start`` and ``end`` inclusively; ``all`` is unbounded.
    Windows opened relative to ``now`` have no upper bound. Naive arguments
    are read as local time.

    Raises:
        ValueError: For an unknown period, or a custom window missing a bound
            or ending before it starts.
    """
    period = ReportPeriod(period)
    now = as_aware(now)
    start = as_aware(start) if start is not None else None
    end = as_aware(end) if end is not None else None
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is ReportPeriod.TODAY:
        return TimeWindow(start=midnight)
    if period is ReportPeriod.WEEK:
        return TimeWindow(start=now - timedelta(days=7))
    if period is ReportPeriod.MONTH:
        return TimeWindow(start=midnight.replace(day=1))
    if period is ReportPeriod.CUSTOM:
        if start is None or end is None:
            raise ValueError("A custom report period needs both a start and an end")
        if end < start:
            raise ValueError("Report period ends before it starts")
        return TimeWindow(start=start, end=end)
    return TimeWindow()


def filter_sales(sales: Iterable[Sale], window: TimeWindow) -> List[Sale]:
    return [sale for sale in sales if window.contains(sale.timestamp)]


def filter_expenses(expenses: Iterable[Expense], window: TimeWindow) -> List[Expense]:
    return [expense for expense in expenses if window.contains(expense.date)]


def filter_supplier_payments(payments: Iterable[SupplierPayment], window: TimeWindow) -> List[SupplierPayment]:
    return [payment for payment in payments if window.contains(payment.date)]


@dataclass(frozen=True)
class SalesSummary:
    revenue: Decimal
    transaction_count: int
    average_transaction: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    profit_margin: Decimal


def sales_summary(sales: Sequence[Sale], expenses: Sequence[Expense] = ()) -> SalesSummary:
    """Revenue, transaction count, and profit figures for the given records.

    The average transaction and the profit margin (a percentage of revenue)
    are zero when there is no revenue to divide by.
    """
    revenue = sum((sale.total for sale in sales), ZERO)
    count = len(sales)
    total_expenses = sum((expense.amount for expense in expenses), ZERO)
    net_profit = revenue - total_expenses
    return SalesSummary(
        revenue=revenue,
        transaction_count=count,
        average_transaction=revenue / count if count else ZERO,
        total_expenses=total_expenses,
        net_profit=net_profit,
        profit_margin=net_profit / revenue * HUNDRED if revenue > ZERO else ZERO,
    )


def _units_and_revenue(sales: Iterable[Sale]) -> Dict[str, Tuple[Decimal, Decimal]]:
    totals: Dict[str, Tuple[Decimal, Decimal]] = {}
    for sale in sales:
        for line in sale.lines:
            units, revenue = totals.get(line.product_id, (ZERO, ZERO))
            totals[line.product_id] = (units + line.quantity, revenue + line.subtotal)
    return totals


@dataclass(frozen=True)
class ProductPerformance:
    product: Product
    units_sold: Decimal
    revenue: Decimal


def product_performance(products: Iterable[Product], sales: Iterable[Sale]) -> List[ProductPerformance]:
    """Units sold and revenue per catalog product, best sellers first.

    Products without sales are listed with zeros; sales of products no longer
    in the catalog are not.
    """
    totals = _units_and_revenue(sales)
    rows = [
        ProductPerformance(product, *totals.get(product.product_id, (ZERO, ZERO)))
        for product in products
    ]
    return sorted(rows, key=lambda row: row.units_sold, reverse=True)


@dataclass(frozen=True)
class CustomerPerformance:
    customer: Customer
    total_spent: Decimal
    order_count: int
    last_purchase: Optional[datetime]


def customer_performance(customers: Iterable[Customer], sales: Sequence[Sale]) -> List[CustomerPerformance]:
    """Spend, order count, and latest purchase per customer, top spenders first."""
    rows = []
    for customer in customers:
        own = [sale for sale in sales if sale.customer_id == customer.customer_id]
        rows.append(
            CustomerPerformance(
                customer=customer,
                total_spent=sum((sale.total for sale in own), ZERO),
                order_count=len(own),
                last_purchase=max((sale.timestamp for sale in own), default=None),
            )
        )
    return sorted(rows, key=lambda row: row.total_spent, reverse=True)


@dataclass(frozen=True)
class StockTurnover:
    product: Product
    units_sold: Decimal
    turnover_rate: Decimal


def stock_turnover(products: Iterable[Product], sales: Iterable[Sale]) -> List[StockTurnover]:
    """Units sold divided by the stock left on hand; zero when nothing is left."""
    totals = _units_and_revenue(sales)
    rows = []
    for product in products:
        sold = totals.get(product.product_id, (ZERO, ZERO))[0]
        rate = sold / product.stock if product.stock > ZERO else ZERO
        rows.append(StockTurnover(product=product, units_sold=sold, turnover_rate=rate))
    return sorted(rows, key=lambda row: row.turnover_rate, reverse=True)


def low_stock(products: Iterable[Product]) -> List[Product]:
    return [product for product in products if product.is_low_stock]


def expenses_by_category(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, ZERO) + expense.amount
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


@dataclass(frozen=True)
class SupplierSpend:
    supplier: Supplier
    total_paid: Decimal
    payment_count: int


def supplier_spend(
    suppliers: Iterable[Supplier],
    expenses: Sequence[Expense],
    payments: Sequence[SupplierPayment] = (),
) -> List[SupplierSpend]:
    """Expenses and direct payments linked to each supplier, largest first."""
    rows = []
    for supplier in suppliers:
        paid = [expense.amount for expense in expenses if expense.supplier_id == supplier.supplier_id]
        paid += [payment.amount for payment in payments if payment.supplier_id == supplier.supplier_id]
        rows.append(SupplierSpend(supplier=supplier, total_paid=sum(paid, ZERO), payment_count=len(paid)))
    return sorted(rows, key=lambda row: row.total_paid, reverse=True)


@dataclass(frozen=True)
class OutstandingBalances:
    """Money owed to the market (receivables) and by it (payables)."""

    receivables: Tuple[Customer, ...]
    payables: Tuple[Supplier, ...]

    @property
    def total_receivable(self) -> Decimal:
        return sum((customer.balance for customer in self.receivables), ZERO)

    @property
    def total_payable(self) -> Decimal:
        return sum((supplier.balance for supplier in self.payables), ZERO)


def outstanding_balances(customers: Iterable[Customer], suppliers: Iterable[Supplier]) -> OutstandingBalances:
    """Customers and suppliers with a positive balance, largest first."""
    return OutstandingBalances(
        receivables=tuple(
            sorted((c for c in customers if c.balance > ZERO), key=lambda c: c.balance, reverse=True)
        ),
        payables=tuple(
            sorted((s for s in suppliers if s.balance > ZERO), key=lambda s: s.balance, reverse=True)
        ),
    )


@dataclass(frozen=True)
class Report:
    """Every reporting view for one time window."""

    period: ReportPeriod
    window: TimeWindow
    summary: SalesSummary
    products: Tuple[ProductPerformance, ...]
    customers: Tuple[CustomerPerformance, ...]
    turnover: Tuple[StockTurnover, ...]
    low_stock: Tuple[Product, ...]
    expenses_by_category: Dict[str, Decimal]
    suppliers: Tuple[SupplierSpend, ...]


def build_report(
    state: PosState,
    period: Union[ReportPeriod, str],
    *,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Report:
    """Assemble a :class:`Report` for ``state`` over the requested period.

    Sales and expenses are both limited to the window; the low-stock list
    always reflects current stock.
    """
    window = resolve_window(period, now=now, start=start, end=end)
    sales = filter_sales(state.sales, window)
    expenses = filter_expenses(state.expenses, window)
    payments = filter_supplier_payments(state.supplier_payments, window)
    return Report(
        period=ReportPeriod(period),
        window=window,
        summary=sales_summary(sales, expenses),
        products=tuple(product_performance(state.products, sales)),
        customers=tuple(customer_performance(state.customers, sales)),
        turnover=tuple(stock_turnover(state.products, sales)),
        low_stock=tuple(low_stock(state.products)),
        expenses_by_category=expenses_by_category(expenses),
        suppliers=tuple(supplier_spend(state.suppliers, expenses, payments)),
    )


__all__ = [
    "TimeWindow",
    "SalesSummary",
    "ProductPerformance",
    "CustomerPerformance",
    "StockTurnover",
    "SupplierSpend",
    "Report",
    "resolve_window",
    "filter_sales",
    "filter_expenses",
    "filter_supplier_payments",
    "OutstandingBalances",
    "outstanding_balances",
    "sales_summary",
    "product_performance",
    "customer_performance",
    "stock_turnover",
    "low_stock",
    "expenses_by_category",
    "supplier_spend",
    "build_report",
]
