"""Command-line entry points for the Veggie Market POS.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
results. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log, reports
from .constants import CustomerType, PaymentMethod, PurchaseOrderStatus, ReportPeriod, SyncDomain
from .errors import BusinessRuleViolation, IntegrationError, MissingReferenceError
from .models import Sale
from .sync import SyncDispatcher


ItemSpec = Tuple[str, Decimal, Optional[Decimal]]
OrderLineSpec = Tuple[str, Decimal, Decimal]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def decimal_arg(raw: str) -> Decimal:
    """argparse ``type`` for monetary values and quantities."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {raw!r}") from exc


def parse_item_spec(raw: str) -> ItemSpec:
    """Parse ``PRODUCT_ID:QTY[@PRICE]`` into its parts."""
    product_id, sep, rest = raw.partition(":")
    if not sep or not product_id or not rest:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY[@PRICE], got {raw!r}")
    quantity_raw, at, price_raw = rest.partition("@")
    quantity = decimal_arg(quantity_raw)
    price = decimal_arg(price_raw) if at else None
    return product_id, quantity, price


def parse_order_line(raw: str) -> OrderLineSpec:
    """Parse ``PRODUCT_ID:QTY@PRICE``; purchase lines always carry a price."""
    product_id, quantity, price = parse_item_spec(raw)
    if price is None:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY@PRICE, got {raw!r}")
    return product_id, quantity, price


def parse_report_date(raw: str) -> datetime:
    """Parse ``YYYY-MM-DD`` as local midnight."""
    try:
        return datetime.strptime(raw, "%Y-%m-%d").astimezone()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="veggie-pos",
        description="Point-of-sale tools for the Veggie Market workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    erp_specs = register_erp_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values(), *erp_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and catalog edits."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-stock": register_update_stock_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "pay-balance": register_pay_balance_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "pay-supplier": register_pay_supplier_command(subparsers),
        "add-purchase-order": register_add_purchase_order_command(subparsers),
        "set-purchase-order-status": register_set_purchase_order_status_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "report": register_report_command(subparsers),
        "sales": register_sales_command(subparsers),
        "debts": register_debts_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_erp_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that talk to the ERP system."""
    specs = {
        "erp-test": register_erp_test_command(subparsers),
        "erp-sync": register_erp_sync_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--price", required=True, type=decimal_arg)
        parser.add_argument("--unit", default="kg")
        parser.add_argument("--stock", required=True, type=decimal_arg)
        parser.add_argument("--min-stock", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--supplier", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-stock``."""
    name = "update-stock"
    help_text = "Set the stock level of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--stock", required=True, type=decimal_arg)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_stock)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a new customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")
        parser.add_argument("--address", default="")
        parser.add_argument(
            "--type",
            dest="customer_type",
            choices=[member.value for member in CustomerType],
            default=CustomerType.RETAIL.value,
        )
        parser.add_argument("--credit-limit", type=decimal_arg, default=Decimal("0"))
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""
    name = "delete-customer"
    help_text = "Remove a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_customer)


def register_pay_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-balance``."""
    name = "pay-balance"
    help_text = "Record a payment against a customer's outstanding balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True, type=decimal_arg)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_balance)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a new supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact-person", default="")
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")
        parser.add_argument("--address", default="")
        parser.add_argument("--product", dest="products", action="append", default=[])
        parser.add_argument("--payment-terms", default="")
        parser.add_argument("--credit-limit", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--balance", type=decimal_arg, default=Decimal("0"), help="Amount already owed.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record an operating expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--expense-id", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", required=True, type=decimal_arg)
        parser.add_argument(
            "--payment",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--reference", default=None)
        parser.add_argument("--supplier-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense)


def register_pay_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-supplier``."""
    name = "pay-supplier"
    help_text = "Record a payment to a supplier and reduce what is owed."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--payment-id", required=True)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--amount", required=True, type=decimal_arg)
        parser.add_argument(
            "--payment",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--reference", default="")
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_supplier)


def register_add_purchase_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-purchase-order``."""
    name = "add-purchase-order"
    help_text = "Place a purchase order with a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--order-number", default=None)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            type=parse_order_line,
            metavar="PRODUCT_ID:QTY@PRICE",
            help="Line to order; repeat for several products.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_purchase_order)


def register_set_purchase_order_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-purchase-order-status``."""
    name = "set-purchase-order-status"
    help_text = "Mark a pending purchase order as received or cancelled."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument(
            "--status",
            required=True,
            choices=[PurchaseOrderStatus.RECEIVED.value, PurchaseOrderStatus.CANCELLED.value],
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_purchase_order_status)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Ring up a bill and commit it as a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            type=parse_item_spec,
            metavar="PRODUCT_ID:QTY[@PRICE]",
            help="Line to add; repeat for several products.",
        )
        parser.add_argument(
            "--payment",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--tendered", type=decimal_arg, default=None)
        parser.add_argument("--customer-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None, help="Filter by name, category, or barcode.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display products at or below their minimum stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display revenue, product, customer, and expense summaries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--period",
            choices=[member.value for member in ReportPeriod],
            default=ReportPeriod.TODAY.value,
        )
        parser.add_argument("--start", type=parse_report_date, default=None, help="YYYY-MM-DD (custom period)")
        parser.add_argument("--end", type=parse_report_date, default=None, help="YYYY-MM-DD, inclusive (custom period)")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display the sales ledger, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_log)


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    name = "debts"
    help_text = "Display what customers owe the market and what it owes suppliers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debts)


def register_erp_test_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``erp-test``."""
    name = "erp-test"
    help_text = "Check that the ERP system is reachable."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_erp_test)


def register_erp_sync_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``erp-sync``."""
    name = "erp-sync"
    help_text = "Pull products, customers, and suppliers from the ERP, or push a sale again."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--domain",
            choices=["all", SyncDomain.PRODUCTS.value, SyncDomain.CUSTOMERS.value, SyncDomain.SUPPLIERS.value],
            default="all",
        )
        parser.add_argument("--sale-id", default=None, help="Push this sale again instead of pulling records.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_erp_sync)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-product keyword arguments."""
    return {
        "product_id": args.product_id,
        "name": args.name,
        "category": args.category,
        "price": args.price,
        "unit": args.unit,
        "stock": args.stock,
        "min_stock": args.min_stock,
        "barcode": args.barcode,
        "supplier": args.supplier,
    }


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-customer keyword arguments."""
    return {
        "customer_id": args.customer_id,
        "name": args.name,
        "phone": args.phone,
        "email": args.email,
        "address": args.address,
        "customer_type": CustomerType(args.customer_type),
        "credit_limit": args.credit_limit,
    }


def translate_add_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "supplier_id": args.supplier_id,
        "name": args.name,
        "contact_person": args.contact_person,
        "phone": args.phone,
        "email": args.email,
        "address": args.address,
        "products": tuple(args.products),
        "payment_terms": args.payment_terms,
        "credit_limit": args.credit_limit,
        "balance": args.balance,
    }


def translate_add_expense(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "expense_id": args.expense_id,
        "category": args.category,
        "description": args.description,
        "amount": args.amount,
        "payment_method": PaymentMethod(args.payment),
        "reference": args.reference,
        "supplier_id": args.supplier_id,
    }


def translate_pay_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "payment_id": args.payment_id,
        "supplier_id": args.supplier_id,
        "amount": args.amount,
        "payment_method": PaymentMethod(args.payment),
        "reference": args.reference,
        "notes": args.notes,
    }


def format_sale(sale: Sale) -> str:
    """Render a committed sale as a short plain-text receipt."""
    lines = [f"Receipt {sale.receipt_number}  ({sale.sale_id})"]
    for line in sale.lines:
        lines.append(f"  {line.product.name:<20} {line.quantity} {line.product.unit} x {line.unit_price} = {line.subtotal}")
    lines.append(f"  Total: {sale.total}  Paid by: {sale.payment_method.value}")
    if sale.amount_tendered is not None:
        lines.append(f"  Tendered: {sale.amount_tendered}  Change: {sale.change}")
    return "\n".join(lines)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    core_logic.add_product(context.store, **translate_add_product(args))
    return 0


def run_update_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.set_product_stock(context.store, args.product_id, args.stock)
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context.store, args.product_id)
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    core_logic.add_customer(context.store, **translate_add_customer(args))
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_customer(context.store, args.customer_id)
    return 0


def run_pay_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.record_customer_payment(context.store, args.customer_id, args.amount)
    print(f"{customer.name}: outstanding balance {customer.balance}")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.add_supplier(context.store, **translate_add_supplier(args))
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.add_expense(context.store, **translate_add_expense(args))
    return 0


def run_pay_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.record_supplier_payment(context.store, **translate_pay_supplier(args))
    print(f"{supplier.name}: still owed {supplier.balance}")
    return 0


def run_add_purchase_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.add_purchase_order(
        context.store,
        order_id=args.order_id,
        supplier_id=args.supplier_id,
        lines=args.items,
        order_number=args.order_number,
    )
    print(f"Purchase order {order.order_number}: {len(order.lines)} lines, total {order.total}")
    return 0


def run_set_purchase_order_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.set_purchase_order_status(context.store, args.order_id, args.status)
    print(f"Purchase order {order.order_number}: {order.status.value}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Fill the active bill from ``--item`` arguments and commit it.

    On any failure the bill is cleared again so no half-built lines linger in
    the session.
    """
    cart = context.cart
    tab_id = cart.active_tab_id
    try:
        for product_id, quantity, price in args.items:
            product = core_logic.get_product(context.store, product_id)
            cart.add_line(tab_id, product, quantity, price)
        if args.customer_id:
            core_logic.get_customer(context.store, args.customer_id)
            cart.bind_customer(tab_id, args.customer_id)
        sale = context.engine.commit(tab_id, PaymentMethod(args.payment), args.tendered)
    except Exception:
        cart.clear_tab(tab_id)
        raise
    print(format_sale(sale))
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the catalog with stock levels."""
    if args.search:
        products = core_logic.search_products(context.store, args.search)
    else:
        products = core_logic.list_products(context.store)
    for product in products:
        flag = "  LOW" if product.is_low_stock else ""
        print(f"{product.product_id:<10} {product.name:<20} {product.stock} {product.unit} @ {product.price}{flag}")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in reports.low_stock(context.store.state.products):
        print(f"{product.product_id:<10} {product.name:<20} {product.stock} (min {product.min_stock})")
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the reporting views for the requested period."""
    end = args.end + timedelta(days=1) - timedelta(microseconds=1) if args.end is not None else None
    report = reports.build_report(
        context.store.snapshot(),
        args.period,
        now=datetime.now().astimezone(),
        start=args.start,
        end=end,
    )
    summary = report.summary
    print(f"Period: {report.period.value}")
    print(f"Revenue: {summary.revenue}  Transactions: {summary.transaction_count}  Average: {summary.average_transaction:.2f}")
    print(f"Expenses: {summary.total_expenses}  Net profit: {summary.net_profit}  Margin: {summary.profit_margin:.1f}%")
    print("Top products:")
    for row in report.products:
        if row.units_sold:
            print(f"  {row.product.name:<20} {row.units_sold} sold, revenue {row.revenue}")
    print("Top customers:")
    for row in report.customers:
        if row.order_count:
            print(f"  {row.customer.name:<20} {row.order_count} orders, spent {row.total_spent}")
    print("Expenses by category:")
    for category, amount in report.expenses_by_category.items():
        print(f"  {category:<20} {amount}")
    return 0


def run_sales_log(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sales = core_logic.list_sales(context.store)
    if args.limit is not None:
        sales = sales[: args.limit]
    for sale in sales:
        print(
            f"{sale.timestamp:%Y-%m-%d %H:%M}  {sale.receipt_number}  {sale.total:>10}  "
            f"{sale.payment_method.value:<13} {sale.customer_id or '-'}"
        )
    return 0


def run_debts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print outstanding customer and supplier balances."""
    state = context.store.snapshot()
    balances = reports.outstanding_balances(state.customers, state.suppliers)
    print(f"Receivables: {balances.total_receivable}")
    for customer in balances.receivables:
        print(f"  {customer.customer_id:<10} {customer.name:<20} {customer.balance}")
    print(f"Payables: {balances.total_payable}")
    for supplier in balances.payables:
        print(f"  {supplier.supplier_id:<10} {supplier.name:<20} {supplier.balance}")
    return 0


def require_sync(context: core_logic.RuntimeContext) -> SyncDispatcher:
    if context.sync is None:
        raise IntegrationError("ERP integration is disabled; set [ERP] Enabled = true in config.ini")
    return context.sync


def run_erp_test(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = require_sync(context).test_connection()
    print(result.message)
    return 0 if result.success else 4


def run_erp_sync(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Pull catalog records from the ERP, or push one sale again."""
    sync = require_sync(context)
    if args.sale_id:
        sale = context.store.state.get_sale(args.sale_id)
        if sale is None:
            raise MissingReferenceError(f"Unknown sale id: {args.sale_id}")
        outcome = sync.resync_sale(sale)
        print(f"Sale {sale.sale_id}: {'synced' if outcome.success else outcome.error}")
        return 0 if outcome.success else 4

    if args.domain == "all":
        results = sync.sync_all()
    elif args.domain == SyncDomain.PRODUCTS.value:
        results = {SyncDomain.PRODUCTS: sync.sync_products()}
    elif args.domain == SyncDomain.CUSTOMERS.value:
        results = {SyncDomain.CUSTOMERS: sync.sync_customers()}
    else:
        results = {SyncDomain.SUPPLIERS: sync.sync_suppliers()}
    for domain, result in results.items():
        print(f"{domain.value}: {result.synced_count} records, {len(result.errors)} errors")
        for error in result.errors:
            print(f"  {error}")
    return 0 if all(result.success for result in results.values()) else 4


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, IntegrationError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    Write commands are persisted by the store as each change is applied, so
    there is no separate save step here.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:
        return handle_cli_error(error)
    finally:
        if context is not None:
            context.close()
