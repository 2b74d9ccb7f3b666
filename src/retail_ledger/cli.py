"""Command-line entry points for the retail ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into engine requests, and persisting the ledger the
engine hands back. Keeping the CLI thin ensures the same parser configuration
can be reused by tests, scripts, or any alternative front end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, data_manager, drafts, expenses, inventory, log, returns, sales, staff, wholesale
from .constants import (
    AttendanceAction,
    EmployeeRole,
    PartnerType,
    SalaryType,
    SaleStatus,
    WholesaleType,
)
from .models import (
    Customer,
    Employee,
    Expense,
    Ledger,
    Product,
    WholesaleItem,
    WholesalePartner,
    WholesaleTransaction,
)


@dataclass
class RuntimeContext:
    """Configuration plus the ledger snapshot a command works on.

    Write commands replace ``ledger`` with the snapshot returned by the
    engine; :func:`main` persists it only when it changed.
    """

    settings: data_manager.ConfigSettings
    ledger: Ledger


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace], int]


def decimal_arg(text: str) -> Decimal:
    """argparse ``type`` for monetary amounts."""
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a valid amount: {text}") from exc


def item_arg(text: str) -> Tuple[str, int, Optional[Decimal]]:
    """argparse ``type`` for ``PRODUCT:QTY[:PRICE]`` line items."""
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"Expected PRODUCT:QTY[:PRICE], got '{text}'")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Quantity must be a whole number in '{text}'") from exc
    price = decimal_arg(parts[2]) if len(parts) == 3 else None
    return parts[0], quantity, price


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the retail ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
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


def _spec(
    name: str,
    help_text: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and returns."""
    specs = {
        "add-product": _spec("add-product", "Register a new product.", _add_product_arguments, run_add_product),
        "add-customer": _spec("add-customer", "Register a loyalty customer.", _add_customer_arguments, run_add_customer),
        "add-employee": _spec("add-employee", "Register a staff member.", _add_employee_arguments, run_add_employee),
        "add-partner": _spec("add-partner", "Register a wholesale partner.", _add_partner_arguments, run_add_partner),
        "sale": _spec("sale", "Record a retail sale.", _sale_arguments, run_sale),
        "set-status": _spec("set-status", "Change a sale's delivery status.", _set_status_arguments, run_set_status),
        "duplicate": _spec("duplicate", "Re-order a past sale.", _duplicate_arguments, run_duplicate),
        "return": _spec("return", "Return units of a sale.", _return_arguments, run_return),
        "wholesale": _spec("wholesale", "Record a wholesale sale or purchase.", _wholesale_arguments, run_wholesale),
        "pay-wholesale": _spec(
            "pay-wholesale", "Record a wholesale debt payment.", _pay_wholesale_arguments, run_pay_wholesale
        ),
        "stocktake": _spec("stocktake", "Set a product's stock to a counted quantity.", _stocktake_arguments, run_stocktake),
        "attendance": _spec("attendance", "Record an attendance action.", _attendance_arguments, run_attendance),
        "payroll": _spec("payroll", "Pay an employee.", _payroll_arguments, run_payroll),
        "expense": _spec("expense", "Record a general expense.", _expense_arguments, run_expense),
        "open-shift": _spec("open-shift", "Open the cash drawer.", _open_shift_arguments, run_open_shift),
        "close-shift": _spec("close-shift", "Close the open shift.", _close_shift_arguments, run_close_shift),
        "save-draft": _spec("save-draft", "Hold a cart as a draft invoice.", _save_draft_arguments, run_save_draft),
        "discard-draft": _spec("discard-draft", "Drop a held draft.", _draft_id_arguments, run_discard_draft),
        "checkout-draft": _spec(
            "checkout-draft", "Turn a held draft into a sale.", _checkout_draft_arguments, run_checkout_draft
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": _spec("stock", "Display current stock levels.", lambda parser: None, run_stock_report),
        "log": _spec("log", "Display the audit log.", _log_arguments, run_log_report),
        "drafts": _spec("drafts", "List held draft invoices.", lambda parser: None, run_drafts_report),
        "reconcile": _spec(
            "reconcile", "Compare customer aggregates with sales history.", lambda parser: None, run_reconcile_report
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_product_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--category", default="")
    parser.add_argument("--price", type=decimal_arg, required=True)
    parser.add_argument("--cost-price", type=decimal_arg, required=True)
    parser.add_argument("--stock", type=int, default=0)
    parser.add_argument("--min-stock", type=int, default=0)
    parser.add_argument("--barcode", default=None)


def _add_customer_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--phone", default="")


def _add_employee_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--employee-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--role", choices=[member.value for member in EmployeeRole], required=True)
    parser.add_argument("--base-salary", type=decimal_arg, required=True)
    parser.add_argument("--phone", default="")


def _add_partner_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--partner-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--contact", default="")
    parser.add_argument("--type", choices=[member.value for member in PartnerType], required=True)


def _sale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)
    parser.add_argument("--item", dest="items", type=item_arg, action="append", required=True,
                        help="PRODUCT:QTY[:PRICE]; repeat for each line. Price defaults to the list price.")
    parser.add_argument("--discount", type=decimal_arg, default=Decimal("0"))
    parser.add_argument("--delivery-fee", type=decimal_arg, default=Decimal("0"))
    parser.add_argument("--paid", type=decimal_arg, default=None)
    parser.add_argument("--customer-id", default=None)
    parser.add_argument("--driver-id", default=None)
    parser.add_argument("--delivery", action="store_true", help="Create the sale as a pending delivery order.")


def _set_status_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)
    parser.add_argument("--status", choices=[member.value for member in SaleStatus], required=True)


def _duplicate_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)
    parser.add_argument("--new-sale-id", required=True)


def _return_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--return-id", required=True)
    parser.add_argument("--sale-id", required=True)
    parser.add_argument("--item", dest="items", type=item_arg, action="append", required=True,
                        help="PRODUCT:QTY; repeat for each line.")


def _wholesale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transaction-id", required=True)
    parser.add_argument("--partner-id", required=True)
    parser.add_argument("--type", choices=[member.value for member in WholesaleType], required=True)
    parser.add_argument("--item", dest="items", type=item_arg, action="append", required=True,
                        help="PRODUCT:QTY[:UNIT_PRICE]; unit price defaults to the cost price.")
    parser.add_argument("--paid", type=decimal_arg, default=None)


def _pay_wholesale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transaction-id", required=True)
    parser.add_argument("--amount", type=decimal_arg, required=True)


def _stocktake_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--counted", type=int, required=True)
    parser.add_argument("--reason", default="Stocktake")
    parser.add_argument("--employee-id", required=True)


def _attendance_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--employee-id", required=True)
    parser.add_argument("--action", choices=[member.value for member in AttendanceAction], required=True)


def _payroll_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transaction-id", required=True)
    parser.add_argument("--employee-id", required=True)
    parser.add_argument("--amount", type=decimal_arg, required=True)
    parser.add_argument("--type", choices=[member.value for member in SalaryType], default=SalaryType.SALARY.value)
    parser.add_argument("--notes", default=None)


def _expense_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--expense-id", default=None, help="Defaults to a timestamp-based EXP id.")
    parser.add_argument("--description", required=True)
    parser.add_argument("--amount", type=decimal_arg, required=True)
    parser.add_argument("--employee-id", default=None)


def _open_shift_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--opened-by", required=True)
    parser.add_argument("--start-cash", type=decimal_arg, required=True)
    parser.add_argument("--shift-id", default=None)


def _close_shift_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--end-cash", type=decimal_arg, required=True)
    parser.add_argument("--notes", default=None)


def _save_draft_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--draft-id", required=True)
    parser.add_argument("--item", dest="items", type=item_arg, action="append", required=True,
                        help="PRODUCT:QTY[:PRICE]; repeat for each line. Price defaults to the list price.")
    parser.add_argument("--discount", type=decimal_arg, default=Decimal("0"))
    parser.add_argument("--delivery-fee", type=decimal_arg, default=Decimal("0"))
    parser.add_argument("--customer-id", default=None)
    parser.add_argument("--delivery", action="store_true")


def _draft_id_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--draft-id", required=True)


def _checkout_draft_arguments(parser: argparse.ArgumentParser) -> None:
    _draft_id_arguments(parser)
    parser.add_argument("--sale-id", default=None, help="Defaults to the draft id.")
    parser.add_argument("--paid", type=decimal_arg, default=None)
    parser.add_argument("--driver-id", default=None)


def _log_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=20)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve configuration and load the ledger workbook it points to."""
    located = data_manager.find_config_file(config_path)
    resolved = Path(located).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return RuntimeContext(settings=settings, ledger=data_manager.load_ledger(settings.data_file))


def dispatch_command(
    context: RuntimeContext,
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


def _priced_lines(context: RuntimeContext, items) -> Tuple[sales.SaleLine, ...]:
    lines = []
    for product_id, quantity, price in items:
        if price is None:
            price = core_logic.get_product(context.ledger, product_id).price
        lines.append(sales.SaleLine(product_id=product_id, quantity=quantity, price=price))
    return tuple(lines)


def translate_sale(context: RuntimeContext, args: argparse.Namespace) -> sales.SaleProposal:
    """Translate CLI args into a sale proposal, filling in list prices."""
    return sales.SaleProposal(
        sale_id=args.sale_id,
        lines=_priced_lines(context, args.items),
        discount=args.discount,
        delivery_fee=args.delivery_fee,
        paid_amount=args.paid,
        customer_id=args.customer_id,
        is_delivery=args.delivery,
        driver_id=args.driver_id,
    )


def translate_draft(context: RuntimeContext, args: argparse.Namespace) -> sales.SaleProposal:
    """Translate CLI args into the cart a draft holds."""
    return sales.SaleProposal(
        sale_id=args.draft_id,
        lines=_priced_lines(context, args.items),
        discount=args.discount,
        delivery_fee=args.delivery_fee,
        customer_id=args.customer_id,
        is_delivery=args.delivery,
    )


def translate_return(args: argparse.Namespace) -> returns.ReturnRequest:
    """Translate CLI args into a return request."""
    return returns.ReturnRequest(
        return_id=args.return_id,
        sale_id=args.sale_id,
        lines=tuple(returns.ReturnLine(product_id, quantity) for product_id, quantity, _ in args.items),
    )


def translate_wholesale(context: RuntimeContext, args: argparse.Namespace) -> WholesaleTransaction:
    """Translate CLI args into a priced wholesale transaction."""
    items = []
    for product_id, quantity, unit_price in args.items:
        product = core_logic.get_product(context.ledger, product_id)
        if unit_price is None:
            unit_price = product.cost_price
        items.append(WholesaleItem(product_id=product_id, name=product.name, quantity=quantity, unit_price=unit_price))
    total = sum((item.unit_price * item.quantity for item in items), Decimal("0"))
    return WholesaleTransaction(
        id=args.transaction_id,
        partner_id=args.partner_id,
        type=WholesaleType(args.type),
        items=tuple(items),
        total=total,
        paid_amount=args.paid if args.paid is not None else total,
        timestamp=core_logic.resolve_timestamp(None),
    )


def run_add_product(context: RuntimeContext, args: argparse.Namespace) -> int:
    product = Product(
        id=args.product_id,
        name=args.name,
        category=args.category,
        price=args.price,
        cost_price=args.cost_price,
        stock=args.stock,
        min_stock=args.min_stock,
        barcode=args.barcode,
    )
    context.ledger = core_logic.add_product(context.ledger, product)
    return 0


def run_add_customer(context: RuntimeContext, args: argparse.Namespace) -> int:
    customer = Customer(id=args.customer_id, name=args.name, phone=args.phone)
    context.ledger = core_logic.add_customer(context.ledger, customer)
    return 0


def run_add_employee(context: RuntimeContext, args: argparse.Namespace) -> int:
    employee = Employee(
        id=args.employee_id,
        name=args.name,
        role=EmployeeRole(args.role),
        base_salary=args.base_salary,
        phone=args.phone,
    )
    context.ledger = staff.add_employee(context.ledger, employee)
    return 0


def run_add_partner(context: RuntimeContext, args: argparse.Namespace) -> int:
    partner = WholesalePartner(id=args.partner_id, name=args.name, contact=args.contact, type=PartnerType(args.type))
    context.ledger = core_logic.add_partner(context.ledger, partner)
    return 0


def run_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the engine."""
    context.ledger = sales.create_sale(context.ledger, translate_sale(context, args))
    sale = context.ledger.sales[0]
    print(f"Sale {sale.id}: total {sale.total} {context.ledger.currency}, remaining {sale.remaining_amount}")
    return 0


def run_set_status(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = sales.update_delivery_status(context.ledger, args.sale_id, SaleStatus(args.status))
    return 0


def run_duplicate(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = sales.duplicate_sale(context.ledger, args.sale_id, args.new_sale_id)
    return 0


def run_return(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow via the engine."""
    context.ledger = returns.process_return(context.ledger, translate_return(args))
    print(f"Refund due: {context.ledger.returns[0].total_refund} {context.ledger.currency}")
    return 0


def run_wholesale(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = wholesale.process_wholesale_transaction(context.ledger, translate_wholesale(context, args))
    return 0


def run_pay_wholesale(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = wholesale.record_wholesale_payment(context.ledger, args.transaction_id, args.amount)
    return 0


def run_stocktake(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = inventory.adjust_stock(
        context.ledger, args.product_id, args.counted, args.reason, args.employee_id
    )
    return 0


def run_attendance(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = staff.record_attendance_action(context.ledger, args.employee_id, AttendanceAction(args.action))
    return 0


def run_payroll(context: RuntimeContext, args: argparse.Namespace) -> int:
    command = staff.SalaryCommand(
        transaction_id=args.transaction_id,
        employee_id=args.employee_id,
        amount=args.amount,
        type=SalaryType(args.type),
        notes=args.notes,
    )
    context.ledger = staff.process_salary_transaction(context.ledger, command)
    return 0


def run_expense(context: RuntimeContext, args: argparse.Namespace) -> int:
    when = core_logic.resolve_timestamp(None)
    expense = Expense(
        id=args.expense_id or core_logic.generate_record_id(prefix="EXP", when=when),
        description=args.description,
        amount=args.amount,
        timestamp=when,
        employee_id=args.employee_id,
    )
    context.ledger = expenses.record_expense(context.ledger, expense)
    return 0


def run_open_shift(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = staff.open_shift(context.ledger, args.opened_by, args.start_cash, shift_id=args.shift_id)
    print(f"Shift {context.ledger.shifts[-1].id} opened")
    return 0


def run_close_shift(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = staff.close_shift(context.ledger, args.end_cash, notes=args.notes)
    return 0


def run_save_draft(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = drafts.save_draft(context.ledger, translate_draft(context, args))
    draft = context.ledger.drafts[-1]
    print(f"Draft {draft.id} held: total {draft.total} {context.ledger.currency}")
    return 0


def run_discard_draft(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = drafts.discard_draft(context.ledger, args.draft_id)
    return 0


def run_checkout_draft(context: RuntimeContext, args: argparse.Namespace) -> int:
    context.ledger = drafts.checkout_draft(
        context.ledger, args.draft_id, sale_id=args.sale_id, paid_amount=args.paid, driver_id=args.driver_id
    )
    sale = context.ledger.sales[0]
    print(f"Sale {sale.id}: total {sale.total} {context.ledger.currency}, remaining {sale.remaining_amount}")
    return 0


def run_stock_report(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its stock, flagging low levels."""
    for product in context.ledger.products:
        flag = "  LOW" if product.stock <= product.min_stock else ""
        print(f"{product.id:<12} {product.name:<30} {product.stock:>6}{flag}")
    return 0


def run_log_report(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print the newest audit log entries."""
    for entry in context.ledger.audit_log[: args.limit]:
        print(f"{entry.timestamp.isoformat()} [{entry.category.value}] {entry.action}: {entry.details}")
    return 0


def run_drafts_report(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print held drafts, oldest first."""
    for draft in context.ledger.drafts:
        units = sum(item.quantity for item in draft.items)
        print(f"{draft.id:<12} {draft.timestamp.isoformat()} {units:>4} units  {draft.total} {context.ledger.currency}")
    if not context.ledger.drafts:
        print("No held drafts.")
    return 0


def run_reconcile_report(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print customer aggregate mismatches with sales history."""
    drift = core_logic.find_customer_drift(context.ledger)
    for customer_id, fields in drift.items():
        for name, (expected, actual) in fields.items():
            print(f"{customer_id}: {name} expected {expected}, recorded {actual}")
    if not drift:
        print("Customer aggregates are consistent with sales history.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_ledger(context: RuntimeContext) -> None:
    """Persist the current ledger to the configured workbook."""
    try:
        data_manager.save_ledger(context.ledger, context.settings.data_file)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        before = context.ledger
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and context.ledger is not before:
            persist_ledger(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
