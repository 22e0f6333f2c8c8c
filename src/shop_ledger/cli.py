"""Command-line entry points for the Shop Ledger toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import (
    AdjustmentKind,
    BillCategory,
    CustomerType,
    EmployeeRole,
    PaymentMethod,
    PaymentStatus,
    RecurrencePeriod,
)
from .pricing import Adjustment


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-cli",
        description="Command-line tools for the Shop Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales, supplies, and payments."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "add-employee": register_add_employee_command(subparsers),
        "deactivate-employee": register_deactivate_employee_command(subparsers),
        "add-bill": register_add_bill_command(subparsers),
        "sale": register_sale_command(subparsers),
        "supply": register_supply_command(subparsers),
        "correct-stock": register_correct_stock_command(subparsers),
        "return": register_return_command(subparsers),
        "pay-customer": register_pay_customer_command(subparsers),
        "pay-invoice": register_pay_invoice_command(subparsers),
        "pay-bill": register_pay_bill_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": _report_spec("stock", "Display current stock levels.", run_stock_report),
        "sales": register_sales_report_command(subparsers),
        "debts": _report_spec("debts", "Display outstanding customer balances.", run_debts_report),
        "bills": register_bills_report_command(subparsers),
        "stock-history": register_stock_history_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _report_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=False)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--sale-price", required=True)
        parser.add_argument("--unit-cost", required=True)
        parser.add_argument("--stock", type=int, default=0, help="Opening stock level.")
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--employee-id", default=None)
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a credit or invoice customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--customer-name", required=True)
        parser.add_argument(
            "--customer-type",
            choices=[member.value for member in CustomerType],
            default=CustomerType.CREDIT.value,
        )
        parser.add_argument("--phone", default=None)
        parser.add_argument("--email", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "add-supplier"
    help_text = "Register a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--supplier-name", required=True)
        parser.add_argument("--contact-person", default=None)
        parser.add_argument("--phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_add_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-employee``."""
    name = "add-employee"
    help_text = "Register a new employee in the Employees sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", default=None)
        parser.add_argument("--employee-name", required=True)
        parser.add_argument(
            "--role",
            choices=[member.value for member in EmployeeRole],
            default=EmployeeRole.EMPLOYEE.value,
        )
        parser.add_argument("--inactive", action="store_true", help="Mark the employee as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_employee)


def register_deactivate_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "deactivate-employee"
    help_text = "Mark an employee inactive; their past sales are kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_deactivate_employee)


def register_add_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-bill``."""
    name = "add-bill"
    help_text = "Register a vendor bill, optionally recurring."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor", required=True)
        parser.add_argument("--description", default="")
        parser.add_argument("--amount", required=True)
        parser.add_argument("--due-date", required=True, help="ISO date, e.g. 2024-01-31.")
        parser.add_argument(
            "--category",
            choices=[member.value for member in BillCategory],
            default=BillCategory.OTHER.value,
        )
        parser.add_argument("--every", type=int, default=None, help="Recurrence frequency.")
        parser.add_argument(
            "--period",
            choices=[member.value for member in RecurrencePeriod],
            default=None,
            help="Recurrence period unit.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_bill)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="Cart line as PRODUCT_ID:QUANTITY[:DISCOUNT]; repeat for more lines.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument(
            "--payment-status",
            choices=[member.value for member in PaymentStatus],
            default=PaymentStatus.PAID.value,
        )
        parser.add_argument("--employee-id", default=None)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--invoice-number", default=None)
        parser.add_argument("--discount", default=None, help="Order discount, e.g. 10%% or 5.00.")
        parser.add_argument("--tax", default=None, help="Tax, e.g. 21%% or 3.50.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_supply_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``supply``."""
    name = "supply"
    help_text = "Record goods received from a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--unit-cost", required=True)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_supply)


def register_correct_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "correct-stock"
    help_text = "Apply a signed manual stock correction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--change", type=int, required=True, help="Signed quantity, e.g. -2.")
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_correct_stock)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "return"
    help_text = "Put returned goods back into stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--sale-id", default=None)
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_pay_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-customer``."""
    name = "pay-customer"
    help_text = "Record a payment against a customer's running balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_customer)


def register_pay_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-invoice``."""
    name = "pay-invoice"
    help_text = "Record a payment against a credit or invoice sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_invoice)


def register_pay_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "pay-bill"
    help_text = "Pay a vendor bill in full."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-id", required=True)
        parser.add_argument("--employee-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_bill)


def register_sales_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display revenue, profit, payments received, and bills paid."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="start", type=date.fromisoformat, default=None)
        parser.add_argument("--to", dest="end", type=date.fromisoformat, default=None)
        parser.add_argument("--daily", action="store_true", help="Also list totals per day.")
        parser.add_argument("--employee-id", default=None, help="Only count sales and payments by this employee.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report, mutates=False)


def register_bills_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "bills"
    help_text = "Display bills; use --overdue for unpaid bills past their due date."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--overdue", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bills_report, mutates=False)


def register_stock_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "stock-history"
    help_text = "List a product's stock movements and verify they add up."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_history, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


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


def parse_money(raw: str) -> Decimal:
    """Parse a monetary CLI argument.

    Raises:
        ValueError: If ``raw`` is not a number.
    """
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Not a valid amount: {raw!r}") from exc


def parse_adjustment(raw: Optional[str]) -> Optional[Adjustment]:
    """Parse ``"10%"`` as a percentage and ``"5.00"`` as a fixed amount."""
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith("%"):
        return Adjustment(kind=AdjustmentKind.PERCENTAGE, value=parse_money(text[:-1]))
    return Adjustment(kind=AdjustmentKind.FIXED, value=parse_money(text))


def parse_sale_line(raw: str) -> core_logic.SaleLine:
    """Parse ``PRODUCT_ID:QUANTITY[:DISCOUNT]`` into a cart line."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise ValueError(f"Cart lines look like PRODUCT_ID:QUANTITY[:DISCOUNT], got {raw!r}")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Quantity must be a whole number in {raw!r}") from exc
    discount = parse_adjustment(parts[2]) if len(parts) == 3 else None
    return core_logic.SaleLine(product_id=parts[0], quantity=quantity, discount=discount)


def _employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    return getattr(args, "employee_id", None) or context.settings.default_employee_id


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "product_name": args.product_name,
        "sale_price": parse_money(args.sale_price),
        "unit_cost": parse_money(args.unit_cost),
        "stock": args.stock,
        "supplier_id": args.supplier_id,
        "is_active": not getattr(args, "inactive", False),
    }


def translate_sale(args: argparse.Namespace, *, default_employee_id: str) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=[parse_sale_line(raw) for raw in args.items],
        payment_method=PaymentMethod(args.payment_method),
        payment_status=PaymentStatus(args.payment_status),
        employee_id=args.employee_id or default_employee_id,
        customer_id=args.customer_id,
        invoice_number=args.invoice_number,
        discount=parse_adjustment(args.discount),
        tax=parse_adjustment(args.tax),
    )


def translate_add_bill(args: argparse.Namespace) -> core_logic.NewBillCommand:
    return core_logic.NewBillCommand(
        vendor=args.vendor,
        description=args.description,
        amount=parse_money(args.amount),
        due_date=date.fromisoformat(args.due_date),
        category=BillCategory(args.category),
        recurrence_frequency=args.every,
        recurrence_period=RecurrencePeriod(args.period) if args.period else None,
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, employee_id=_employee(context, args), **payload)
    print(f"Added product {product.product_id}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.add_customer(
        context,
        customer_id=args.customer_id,
        customer_name=args.customer_name,
        customer_type=CustomerType(args.customer_type),
        phone=args.phone,
        email=args.email,
    )
    print(f"Added customer {customer.customer_id}")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.add_supplier(
        context,
        supplier_id=args.supplier_id,
        supplier_name=args.supplier_name,
        contact_person=args.contact_person,
        phone=args.phone,
    )
    print(f"Added supplier {supplier.supplier_id}")
    return 0


def run_add_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    employee = core_logic.add_employee(
        context,
        employee_id=args.employee_id,
        employee_name=args.employee_name,
        role=EmployeeRole(args.role),
        is_active=not args.inactive,
    )
    print(f"Added employee {employee.employee_id}")
    return 0


def run_deactivate_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    employee = core_logic.deactivate_employee(context, args.employee_id)
    print(f"Deactivated employee {employee.employee_id}")
    return 0


def run_add_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    bill = core_logic.add_bill(context, translate_add_bill(args))
    print(f"Added bill {bill.bill_id} due {bill.due_date.isoformat()}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL and print the receipt summary."""
    command = translate_sale(args, default_employee_id=context.settings.default_employee_id)
    record = core_logic.record_sale(context, command)
    print(f"{record.sale.receipt_number}  total {record.sale.total}  ({record.sale.payment_status})")
    return 0


def run_supply(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    update = core_logic.record_supply(
        context,
        core_logic.SupplyCommand(
            product_id=args.product_id,
            quantity=args.quantity,
            unit_cost=parse_money(args.unit_cost),
            employee_id=_employee(context, args),
            supplier_id=args.supplier_id,
        ),
    )
    print(f"{update.product_id}: {update.previous_stock} -> {update.new_stock}")
    return 0


def run_correct_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    update = core_logic.record_stock_correction(
        context,
        core_logic.StockCorrectionCommand(
            product_id=args.product_id,
            quantity_change=args.change,
            employee_id=_employee(context, args),
        ),
    )
    print(f"{update.product_id}: {update.previous_stock} -> {update.new_stock}")
    return 0


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    update = core_logic.record_return(
        context,
        core_logic.ReturnCommand(
            product_id=args.product_id,
            quantity=args.quantity,
            employee_id=_employee(context, args),
            sale_id=args.sale_id,
        ),
    )
    print(f"{update.product_id}: {update.previous_stock} -> {update.new_stock}")
    return 0


def run_pay_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer payment workflow via the BLL."""
    payment = core_logic.apply_customer_payment(
        context,
        core_logic.CustomerPaymentCommand(
            customer_id=args.customer_id,
            amount=parse_money(args.amount),
            employee_id=_employee(context, args),
        ),
    )
    print(f"Payment {payment.payment_id}; balance now {payment.balance_after_payment}")
    return 0


def run_pay_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice payment workflow via the BLL."""
    payment = core_logic.apply_invoice_payment(
        context,
        core_logic.InvoicePaymentCommand(
            sale_id=args.sale_id,
            amount=parse_money(args.amount),
            employee_id=_employee(context, args),
        ),
    )
    print(f"Payment {payment.payment_id}; balance now {payment.balance_after_payment}")
    return 0


def run_pay_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.apply_bill_payment(
        context,
        core_logic.BillPaymentCommand(bill_id=args.bill_id, employee_id=_employee(context, args)),
    )
    print(f"Paid bill {outcome.bill.bill_id} ({outcome.payment.amount})")
    if outcome.next_bill is not None:
        print(f"Next bill {outcome.next_bill.bill_id} due {outcome.next_bill.due_date.isoformat()}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    for product_id, stock in core_logic.calculate_inventory(context).items():
        print(f"{product_id}\t{stock}")
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales summary reporting workflow."""
    window = {"start": args.start, "end": args.end, "employee_id": args.employee_id}
    summary = core_logic.calculate_sales_summary(context, **window)
    summary.update(core_logic.calculate_payment_summary(context, **window))
    for key, value in summary.items():
        print(f"{key}\t{value}")
    if args.daily:
        for day, total in core_logic.calculate_daily_sales(context, **window).items():
            print(f"{day.isoformat()}\t{total}")
    return 0



def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the outstanding debts reporting workflow."""
    for customer_id, balance in core_logic.calculate_outstanding_debts(context).items():
        print(f"{customer_id}\t{balance}")
    return 0


def run_bills_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    bills = core_logic.list_overdue_bills(context) if args.overdue else core_logic.list_bills(context)
    for bill in bills:
        print(f"{bill.bill_id}\t{bill.vendor}\t{bill.amount}\t{bill.due_date.isoformat()}\t{bill.status}")
    return 0


def run_stock_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List a product's movements, then fail if they do not reproduce its stock."""
    for update in core_logic.list_stock_updates(context, args.product_id):
        print(f"{update.created_at}\t{update.reason}\t{update.quantity_change:+d}\t{update.new_stock}")
    core_logic.verify_stock_history(context, args.product_id)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, (core_logic.PersistenceError, core_logic.LedgerIntegrityError)):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
