"""Unit tests for the reporting views."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from veggie_pos import reports
from veggie_pos.constants import PaymentMethod, ReportPeriod
from veggie_pos.models import CartLine, Customer, Expense, Sale, Supplier, SupplierPayment
from veggie_pos.state import PosState

NOW = datetime(2026, 10, 19, 15, 45, tzinfo=UTC)


def make_sale(sale_id: str, when: datetime, *lines: CartLine, customer_id: str | None = None) -> Sale:
    return Sale(
        sale_id=sale_id,
        receipt_number=f"R{sale_id}",
        lines=tuple(lines),
        total=sum((line.subtotal for line in lines), Decimal("0")),
        payment_method=PaymentMethod.CASH,
        timestamp=when,
        cashier="Front Counter",
        customer_id=customer_id,
    )


def make_expense(expense_id: str, category: str, amount: str, when: datetime, supplier_id: str | None = None) -> Expense:
    return Expense(
        expense_id=expense_id,
        category=category,
        description=category,
        amount=Decimal(amount),
        payment_method=PaymentMethod.CASH,
        date=when,
        supplier_id=supplier_id,
    )


@pytest.fixture
def ledger(tomato, onion):
    return [
        make_sale("3", NOW - timedelta(hours=1), CartLine(tomato, Decimal("2"), Decimal("100")), customer_id="C1"),
        make_sale("2", NOW - timedelta(days=3), CartLine(onion, Decimal("4"), Decimal("40"))),
        make_sale(
            "1",
            NOW - timedelta(days=40),
            CartLine(tomato, Decimal("1"), Decimal("100")),
            CartLine(onion, Decimal("1"), Decimal("40")),
            customer_id="C1",
        ),
    ]


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


def test_today_starts_at_midnight():
    """'today' opens at midnight of now."""

    window = reports.resolve_window(ReportPeriod.TODAY, now=NOW)

    assert window.start == datetime(2026, 10, 19, tzinfo=UTC)
    assert window.end is None


def test_today_uses_local_midnight_for_naive_now():
    """A naive now is local time, so 'today' opens at local midnight."""

    naive_now = datetime(2026, 10, 19, 15, 45)

    window = reports.resolve_window(ReportPeriod.TODAY, now=naive_now)

    assert window.start == datetime(2026, 10, 19).astimezone()
    assert window.start.tzinfo is not None


def test_window_accepts_naive_records():
    """Naive record timestamps compare against aware windows as local time."""

    window = reports.resolve_window(ReportPeriod.TODAY, now=datetime(2026, 10, 19, 15, 45).astimezone())

    assert window.contains(datetime(2026, 10, 19, 9, 0)) is True
    assert window.contains(datetime(2026, 10, 18, 9, 0)) is False


def test_week_is_last_seven_days():
    """'week' looks back seven days from now."""

    assert reports.resolve_window("week", now=NOW).start == NOW - timedelta(days=7)


def test_month_starts_on_first_day():
    """'month' starts on the first of the month."""

    assert reports.resolve_window("month", now=NOW).start == datetime(2026, 10, 1, tzinfo=UTC)


def test_custom_requires_both_bounds():
    """Custom windows need a start and an end."""

    with pytest.raises(ValueError):
        reports.resolve_window("custom", now=NOW, start=NOW)


def test_custom_rejects_inverted_bounds():
    """Custom windows cannot end before they start."""

    with pytest.raises(ValueError):
        reports.resolve_window("custom", now=NOW, start=NOW, end=NOW - timedelta(days=1))


def test_custom_window_is_inclusive(ledger):
    """Sales exactly on either bound are included."""

    start = ledger[1].timestamp
    end = ledger[0].timestamp
    window = reports.resolve_window("custom", now=NOW, start=start, end=end)

    assert [sale.sale_id for sale in reports.filter_sales(ledger, window)] == ["3", "2"]


def test_all_is_unbounded(ledger):
    """'all' keeps every sale."""

    window = reports.resolve_window("all", now=NOW)

    assert len(reports.filter_sales(ledger, window)) == 3


def test_unknown_period_raises():
    """Unknown period names are rejected."""

    with pytest.raises(ValueError):
        reports.resolve_window("fortnight", now=NOW)


# ---------------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------------


def test_sales_summary_totals(ledger):
    """Revenue, counts and profit figures add up."""

    expenses = [make_expense("E1", "Rent", "100", NOW)]

    summary = reports.sales_summary(ledger[:2], expenses)

    assert summary.revenue == Decimal("360")
    assert summary.transaction_count == 2
    assert summary.average_transaction == Decimal("180")
    assert summary.net_profit == Decimal("260")
    assert summary.profit_margin.quantize(Decimal("0.01")) == Decimal("72.22")


def test_sales_summary_empty_has_zero_ratios():
    """No sales means zero averages and margins rather than division errors."""

    summary = reports.sales_summary([], [])

    assert summary.average_transaction == Decimal("0")
    assert summary.profit_margin == Decimal("0")


def test_product_performance_sorted_by_units(tomato, onion, ledger):
    """Best sellers by units come first; revenue follows line subtotals."""

    rows = reports.product_performance([tomato, onion], ledger)

    assert [row.product.product_id for row in rows] == ["P2", "P1"]
    assert rows[0].units_sold == Decimal("5")
    assert rows[1].revenue == Decimal("300")


def test_customer_performance(regular_customer, ledger):
    """Customer spend, order count and last purchase are derived from the ledger."""

    other = Customer(customer_id="C2", name="Nobody")

    rows = reports.customer_performance([other, regular_customer], ledger)

    assert rows[0].customer is regular_customer
    assert rows[0].total_spent == Decimal("340")
    assert rows[0].order_count == 2
    assert rows[0].last_purchase == ledger[0].timestamp
    assert rows[1].last_purchase is None


def test_stock_turnover_handles_zero_stock(tomato, onion, ledger):
    """Turnover is units sold over stock, zero when stock is zero."""

    empty_onion = replace(onion, stock=Decimal("0"))

    rows = reports.stock_turnover([tomato, empty_onion], ledger)

    assert rows[0].product is tomato
    assert rows[0].turnover_rate == Decimal("0.3")
    assert rows[1].turnover_rate == Decimal("0")


def test_low_stock(tomato, onion):
    """Products at or below minimum stock are listed."""

    assert reports.low_stock([tomato, onion]) == [onion]


def test_expenses_by_category():
    """Expenses are summed per category, largest first."""

    expenses = [
        make_expense("E1", "Transport", "50", NOW),
        make_expense("E2", "Rent", "300", NOW),
        make_expense("E3", "Transport", "25", NOW),
    ]

    assert reports.expenses_by_category(expenses) == {"Rent": Decimal("300"), "Transport": Decimal("75")}


def test_supplier_spend():
    """Supplier spend sums linked expenses."""

    farm = Supplier(supplier_id="SUP1", name="Green Farms")
    idle = Supplier(supplier_id="SUP2", name="Idle Co")
    expenses = [
        make_expense("E1", "Purchases", "400", NOW, "SUP1"),
        make_expense("E2", "Purchases", "100", NOW, "SUP1"),
        make_expense("E3", "Rent", "300", NOW),
    ]

    rows = reports.supplier_spend([idle, farm], expenses)

    assert rows[0].supplier is farm
    assert rows[0].total_paid == Decimal("500")
    assert rows[0].payment_count == 2
    assert rows[1].total_paid == Decimal("0")


def test_supplier_spend_includes_direct_payments():
    """Payments made straight to a supplier count towards its spend."""

    farm = Supplier(supplier_id="SUP1", name="Green Farms")
    payment = SupplierPayment("SP1", "SUP1", Decimal("250"), PaymentMethod.UPI, NOW)

    rows = reports.supplier_spend([farm], [make_expense("E1", "Purchases", "100", NOW, "SUP1")], [payment])

    assert rows[0].total_paid == Decimal("350")
    assert rows[0].payment_count == 2


def test_outstanding_balances_lists_positive_balances(regular_customer):
    """Receivables and payables keep only money actually owed, largest first."""

    settled = Customer(customer_id="C2", name="Settled", balance=Decimal("0"))
    small = Customer(customer_id="C3", name="Small Tab", balance=Decimal("50"))
    farm = Supplier(supplier_id="SUP1", name="Green Farms", balance=Decimal("800"))
    prepaid = Supplier(supplier_id="SUP2", name="Prepaid Co", balance=Decimal("-20"))

    balances = reports.outstanding_balances([small, settled, regular_customer], [prepaid, farm])

    assert balances.receivables == (regular_customer, small)
    assert balances.payables == (farm,)
    assert balances.total_receivable == Decimal("250")
    assert balances.total_payable == Decimal("800")


def test_build_report_filters_sales_and_expenses(tomato, onion, regular_customer, ledger):
    """The bundled report limits sales and expenses to the window."""

    state = PosState(
        products=(tomato, onion),
        customers=(regular_customer,),
        sales=tuple(ledger),
        expenses=(
            make_expense("E1", "Rent", "50", NOW - timedelta(days=2)),
            make_expense("E2", "Rent", "999", NOW - timedelta(days=60)),
        ),
    )

    report = reports.build_report(state, ReportPeriod.WEEK, now=NOW)

    assert report.period is ReportPeriod.WEEK
    assert report.summary.revenue == Decimal("360")
    assert report.summary.total_expenses == Decimal("50")
    assert report.low_stock == (onion,)
    assert report.expenses_by_category == {"Rent": Decimal("50")}


def test_build_report_today_with_naive_expense(tomato):
    """An expense stored without a timezone still lands in 'today'."""

    now = datetime(2026, 10, 19, 15, 45).astimezone()
    state = PosState(
        products=(tomato,),
        expenses=(make_expense("E1", "Rent", "75", datetime(2026, 10, 19, 8, 0)),),
        supplier_payments=(
            SupplierPayment("SP1", "SUP1", Decimal("10"), PaymentMethod.CASH, datetime(2026, 10, 19, 9, 0)),
        ),
        suppliers=(Supplier(supplier_id="SUP1", name="Green Farms"),),
    )

    report = reports.build_report(state, ReportPeriod.TODAY, now=now)

    assert report.summary.total_expenses == Decimal("75")
    assert report.suppliers[0].total_paid == Decimal("10")
