"""Data access layer for the retail ledger.

This module loads and saves whole :class:`~retail_ledger.models.Ledger`
snapshots. Business logic belongs elsewhere: the engine hands back a new
``Ledger`` and the caller decides when to persist it through this module.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet codecs: turning each ledger collection into worksheet rows and back.
   Nested collections (sale items, breaks, payments) are stored as JSON text
   inside a single cell.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_DRAFT_EXPIRY_MINUTES,
    EXPECTED_SCHEMA_VERSION,
    AttendanceStatus,
    EmployeeRole,
    LogCategory,
    PartnerType,
    SalaryType,
    SaleChannel,
    SaleStatus,
    SheetName,
    ShiftStatus,
    WholesaleType,
)
from .models import (
    AttendanceRecord,
    AuditLogEntry,
    Break,
    Customer,
    DeliveryDetails,
    DraftInvoice,
    Employee,
    Expense,
    Ledger,
    Product,
    ReturnItem,
    SalaryTransaction,
    Sale,
    SaleItem,
    SaleReturn,
    Shift,
    StockAdjustmentLog,
    WholesaleItem,
    WholesalePartner,
    WholesalePayment,
    WholesaleTransaction,
)
from .drafts import prune_expired_drafts


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    initial_cash: Decimal = Decimal("0")
    draft_expiry_minutes: int = DEFAULT_DRAFT_EXPIRY_MINUTES


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` entries seed new
    ledgers and fall back to the package defaults when missing. Relative
    ``DataFile`` paths are anchored to ``base_path`` (or the current working
    directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required ``[System]`` option is missing.
        ValueError: If a ``[Defaults]`` value cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY)
    initial_cash = Decimal(parser.get("Defaults", "InitialCash", fallback="0"))
    draft_expiry = parser.getint("Defaults", "DraftExpiryMinutes", fallback=DEFAULT_DRAFT_EXPIRY_MINUTES)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        currency=currency,
        initial_cash=initial_cash,
        draft_expiry_minutes=draft_expiry,
    )


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def _money(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0")


def _opt_money(raw: object) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None else None


def _int(raw: object) -> int:
    return int(raw) if raw is not None else 0


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _opt_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _when(raw: object) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _opt_when(raw: object) -> Optional[datetime]:
    return _when(raw) if raw is not None else None


def _dump(payload: object) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _load(raw: object) -> Any:
    return json.loads(str(raw)) if raw else []


# ---------------------------------------------------------------------------
# Sheet codecs
# ---------------------------------------------------------------------------


def serialize_product(record: Product) -> list[object]:
    return [
        record.id,
        record.name,
        record.category,
        record.price,
        record.cost_price,
        record.stock,
        record.min_stock,
        record.barcode,
        record.expiry_date.isoformat() if record.expiry_date is not None else None,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    product_id, name, category, price, cost_price, stock, min_stock, barcode, expiry = raw_row[:9]
    return Product(
        id=str(product_id),
        name=_text(name),
        category=_text(category),
        price=_money(price),
        cost_price=_money(cost_price),
        stock=_int(stock),
        min_stock=_int(min_stock),
        barcode=_opt_text(barcode),
        expiry_date=date.fromisoformat(str(expiry)[:10]) if expiry is not None else None,
    )


def serialize_customer(record: Customer) -> list[object]:
    return [
        record.id,
        record.name,
        record.phone,
        record.total_purchases,
        record.invoice_count,
        record.total_points,
        _iso(record.last_order_timestamp),
    ]


def deserialize_customer(raw_row: Sequence[object]) -> Customer:
    customer_id, name, phone, purchases, invoices, points, last_order = raw_row[:7]
    return Customer(
        id=str(customer_id),
        name=_text(name),
        phone=_text(phone),
        total_purchases=_money(purchases),
        invoice_count=_int(invoices),
        total_points=_int(points),
        last_order_timestamp=_opt_when(last_order),
    )


def _dump_items(items: Sequence[SaleItem]) -> str:
    return _dump(
        [
            {
                "product_id": item.product_id,
                "name": item.name,
                "price": str(item.price),
                "quantity": item.quantity,
                "returned_quantity": item.returned_quantity,
            }
            for item in items
        ]
    )


def _load_items(raw: object) -> Tuple[SaleItem, ...]:
    return tuple(
        SaleItem(
            product_id=entry["product_id"],
            name=entry["name"],
            price=Decimal(entry["price"]),
            quantity=int(entry["quantity"]),
            returned_quantity=int(entry.get("returned_quantity", 0)),
        )
        for entry in _load(raw)
    )


def _dump_details(details: Optional[DeliveryDetails]) -> Optional[str]:
    if details is None:
        return None
    return _dump(
        {
            "customer_name": details.customer_name,
            "customer_phone": details.customer_phone,
            "address": details.address,
        }
    )


def _load_details(raw: object) -> Optional[DeliveryDetails]:
    return DeliveryDetails(**json.loads(str(raw))) if raw else None


def serialize_sale(record: Sale) -> list[object]:
    return [
        record.id,
        record.timestamp.isoformat(),
        _dump_items(record.items),
        record.subtotal,
        record.discount,
        record.delivery_fee,
        record.total,
        record.paid_amount,
        record.remaining_amount,
        record.total_cost,
        record.total_profit,
        record.points_earned,
        record.status.value,
        record.customer_id,
        record.driver_id,
        record.is_delivery,
        _dump_details(record.delivery_details),
        record.sale_channel.value,
        record.shift_id,
    ]


def deserialize_sale(raw_row: Sequence[object]) -> Sale:
    (
        sale_id,
        timestamp,
        items_raw,
        subtotal,
        discount,
        delivery_fee,
        total,
        paid,
        remaining,
        total_cost,
        total_profit,
        points,
        status,
        customer_id,
        driver_id,
        is_delivery,
        details_raw,
        channel,
        shift_id,
    ) = raw_row[:19]
    return Sale(
        id=str(sale_id),
        timestamp=_when(timestamp),
        items=_load_items(items_raw),
        subtotal=_money(subtotal),
        discount=_money(discount),
        delivery_fee=_money(delivery_fee),
        total=_money(total),
        paid_amount=_money(paid),
        remaining_amount=_money(remaining),
        total_cost=_money(total_cost),
        total_profit=_money(total_profit),
        points_earned=_int(points),
        status=SaleStatus(status),
        customer_id=_opt_text(customer_id),
        driver_id=_opt_text(driver_id),
        is_delivery=bool(is_delivery),
        delivery_details=_load_details(details_raw),
        sale_channel=SaleChannel(channel) if channel else SaleChannel.STORE,
        shift_id=_opt_text(shift_id),
    )


def serialize_draft(record: DraftInvoice) -> list[object]:
    return [
        record.id,
        record.timestamp.isoformat(),
        _dump_items(record.items),
        record.subtotal,
        record.discount,
        record.delivery_fee,
        record.total,
        record.sale_channel.value,
        record.customer_id,
        record.is_delivery,
        _dump_details(record.delivery_details),
    ]


def deserialize_draft(raw_row: Sequence[object]) -> DraftInvoice:
    (
        draft_id,
        timestamp,
        items_raw,
        subtotal,
        discount,
        delivery_fee,
        total,
        channel,
        customer_id,
        is_delivery,
        details_raw,
    ) = raw_row[:11]
    return DraftInvoice(
        id=str(draft_id),
        timestamp=_when(timestamp),
        items=_load_items(items_raw),
        subtotal=_money(subtotal),
        discount=_money(discount),
        total=_money(total),
        sale_channel=SaleChannel(channel) if channel else SaleChannel.STORE,
        customer_id=_opt_text(customer_id),
        is_delivery=bool(is_delivery),
        delivery_details=_load_details(details_raw),
        delivery_fee=_money(delivery_fee),
    )


def serialize_return(record: SaleReturn) -> list[object]:
    items = [
        {"product_id": item.product_id, "quantity": item.quantity, "refund_amount": str(item.refund_amount)}
        for item in record.items
    ]
    return [record.id, record.sale_id, record.timestamp.isoformat(), _dump(items), record.total_refund]


def deserialize_return(raw_row: Sequence[object]) -> SaleReturn:
    return_id, sale_id, timestamp, items_raw, total_refund = raw_row[:5]
    items = tuple(
        ReturnItem(
            product_id=entry["product_id"],
            quantity=int(entry["quantity"]),
            refund_amount=Decimal(entry["refund_amount"]),
        )
        for entry in _load(items_raw)
    )
    return SaleReturn(
        id=str(return_id),
        sale_id=str(sale_id),
        timestamp=_when(timestamp),
        items=items,
        total_refund=_money(total_refund),
    )


def serialize_partner(record: WholesalePartner) -> list[object]:
    return [record.id, record.name, record.contact, record.type.value]


def deserialize_partner(raw_row: Sequence[object]) -> WholesalePartner:
    partner_id, name, contact, partner_type = raw_row[:4]
    return WholesalePartner(id=str(partner_id), name=_text(name), contact=_text(contact), type=PartnerType(partner_type))


def serialize_wholesale(record: WholesaleTransaction) -> list[object]:
    items = [
        {
            "product_id": item.product_id,
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
        }
        for item in record.items
    ]
    payments = [
        {
            "amount": str(payment.amount),
            "timestamp": payment.timestamp.isoformat(),
            "remaining_after": str(payment.remaining_after),
        }
        for payment in record.payments
    ]
    return [
        record.id,
        record.partner_id,
        record.type.value,
        _dump(items),
        record.total,
        record.paid_amount,
        record.timestamp.isoformat(),
        _dump(payments),
    ]


def deserialize_wholesale(raw_row: Sequence[object]) -> WholesaleTransaction:
    transaction_id, partner_id, transaction_type, items_raw, total, paid, timestamp, payments_raw = raw_row[:8]
    items = tuple(
        WholesaleItem(
            product_id=entry["product_id"],
            name=entry["name"],
            quantity=int(entry["quantity"]),
            unit_price=Decimal(entry["unit_price"]),
        )
        for entry in _load(items_raw)
    )
    payments = tuple(
        WholesalePayment(
            amount=Decimal(entry["amount"]),
            timestamp=_when(entry["timestamp"]),
            remaining_after=Decimal(entry["remaining_after"]),
        )
        for entry in _load(payments_raw)
    )
    return WholesaleTransaction(
        id=str(transaction_id),
        partner_id=str(partner_id),
        type=WholesaleType(transaction_type),
        items=items,
        total=_money(total),
        paid_amount=_money(paid),
        timestamp=_when(timestamp),
        payments=payments,
    )


def serialize_employee(record: Employee) -> list[object]:
    return [record.id, record.name, record.role.value, record.base_salary, record.is_active, record.phone]


def deserialize_employee(raw_row: Sequence[object]) -> Employee:
    employee_id, name, role, base_salary, is_active, phone = raw_row[:6]
    return Employee(
        id=str(employee_id),
        name=_text(name),
        role=EmployeeRole(role),
        base_salary=_money(base_salary),
        is_active=bool(is_active),
        phone=_text(phone),
    )


def serialize_attendance(record: AttendanceRecord) -> list[object]:
    breaks = [{"start": entry.start.isoformat(), "end": _iso(entry.end)} for entry in record.breaks]
    return [
        record.id,
        record.employee_id,
        record.date,
        record.check_in.isoformat(),
        record.status.value,
        _iso(record.check_out),
        _dump(breaks),
    ]


def deserialize_attendance(raw_row: Sequence[object]) -> AttendanceRecord:
    record_id, employee_id, day, check_in, status, check_out, breaks_raw = raw_row[:7]
    breaks = tuple(
        Break(start=_when(entry["start"]), end=_opt_when(entry.get("end")))
        for entry in _load(breaks_raw)
    )
    return AttendanceRecord(
        id=str(record_id),
        employee_id=str(employee_id),
        date=str(day),
        check_in=_when(check_in),
        status=AttendanceStatus(status),
        check_out=_opt_when(check_out),
        breaks=breaks,
    )


def serialize_salary(record: SalaryTransaction) -> list[object]:
    return [record.id, record.employee_id, record.amount, record.type.value, record.timestamp.isoformat(), record.notes]


def deserialize_salary(raw_row: Sequence[object]) -> SalaryTransaction:
    transaction_id, employee_id, amount, salary_type, timestamp, notes = raw_row[:6]
    return SalaryTransaction(
        id=str(transaction_id),
        employee_id=str(employee_id),
        amount=_money(amount),
        type=SalaryType(salary_type),
        timestamp=_when(timestamp),
        notes=_opt_text(notes),
    )


def serialize_expense(record: Expense) -> list[object]:
    return [record.id, record.description, record.amount, record.timestamp.isoformat(), record.employee_id]


def deserialize_expense(raw_row: Sequence[object]) -> Expense:
    expense_id, description, amount, timestamp, employee_id = raw_row[:5]
    return Expense(
        id=str(expense_id),
        description=_text(description),
        amount=_money(amount),
        timestamp=_when(timestamp),
        employee_id=_opt_text(employee_id),
    )


def serialize_stock_log(record: StockAdjustmentLog) -> list[object]:
    return [
        record.id,
        record.product_id,
        record.old_stock,
        record.new_stock,
        record.reason,
        record.employee_id,
        record.timestamp.isoformat(),
    ]


def deserialize_stock_log(raw_row: Sequence[object]) -> StockAdjustmentLog:
    log_id, product_id, old_stock, new_stock, reason, employee_id, timestamp = raw_row[:7]
    return StockAdjustmentLog(
        id=str(log_id),
        product_id=str(product_id),
        old_stock=_int(old_stock),
        new_stock=_int(new_stock),
        reason=_text(reason),
        employee_id=_text(employee_id),
        timestamp=_when(timestamp),
    )


def serialize_shift(record: Shift) -> list[object]:
    return [
        record.id,
        record.opened_by,
        record.start_time.isoformat(),
        record.start_cash,
        record.status.value,
        _iso(record.end_time),
        record.end_cash,
        record.notes,
    ]


def deserialize_shift(raw_row: Sequence[object]) -> Shift:
    shift_id, opened_by, start_time, start_cash, status, end_time, end_cash, notes = raw_row[:8]
    return Shift(
        id=str(shift_id),
        opened_by=_text(opened_by),
        start_time=_when(start_time),
        start_cash=_money(start_cash),
        status=ShiftStatus(status),
        end_time=_opt_when(end_time),
        end_cash=_opt_money(end_cash),
        notes=_opt_text(notes),
    )


def serialize_audit_entry(record: AuditLogEntry) -> list[object]:
    return [record.id, record.timestamp.isoformat(), record.action, record.category.value, record.details]


def deserialize_audit_entry(raw_row: Sequence[object]) -> AuditLogEntry:
    entry_id, timestamp, action, category, details = raw_row[:5]
    return AuditLogEntry(
        id=str(entry_id),
        timestamp=_when(timestamp),
        action=_text(action),
        category=LogCategory(category),
        details=_text(details),
    )


@dataclass(frozen=True)
class SheetCodec:
    """Binds a ledger collection to its worksheet layout."""

    sheet: SheetName
    attribute: str
    columns: Tuple[str, ...]
    serialize: Callable[[Any], list[object]]
    deserialize: Callable[[Sequence[object]], Any]


SHEET_CODECS: Tuple[SheetCodec, ...] = (
    SheetCodec(
        SheetName.PRODUCTS,
        "products",
        ("ProductID", "Name", "Category", "Price", "CostPrice", "Stock", "MinStock", "Barcode", "ExpiryDate"),
        serialize_product,
        deserialize_product,
    ),
    SheetCodec(
        SheetName.CATEGORIES,
        "categories",
        ("Name",),
        lambda name: [name],
        lambda raw: str(raw[0]),
    ),
    SheetCodec(
        SheetName.CUSTOMERS,
        "customers",
        ("CustomerID", "Name", "Phone", "TotalPurchases", "InvoiceCount", "TotalPoints", "LastOrderTimestamp"),
        serialize_customer,
        deserialize_customer,
    ),
    SheetCodec(
        SheetName.SALES,
        "sales",
        (
            "SaleID",
            "Timestamp",
            "Items",
            "Subtotal",
            "Discount",
            "DeliveryFee",
            "Total",
            "PaidAmount",
            "RemainingAmount",
            "TotalCost",
            "TotalProfit",
            "PointsEarned",
            "Status",
            "CustomerID",
            "DriverID",
            "IsDelivery",
            "DeliveryDetails",
            "SaleChannel",
            "ShiftID",
        ),
        serialize_sale,
        deserialize_sale,
    ),
    SheetCodec(
        SheetName.DRAFTS,
        "drafts",
        (
            "DraftID",
            "Timestamp",
            "Items",
            "Subtotal",
            "Discount",
            "DeliveryFee",
            "Total",
            "SaleChannel",
            "CustomerID",
            "IsDelivery",
            "DeliveryDetails",
        ),
        serialize_draft,
        deserialize_draft,
    ),
    SheetCodec(
        SheetName.RETURNS,
        "returns",
        ("ReturnID", "SaleID", "Timestamp", "Items", "TotalRefund"),
        serialize_return,
        deserialize_return,
    ),
    SheetCodec(
        SheetName.PARTNERS,
        "partners",
        ("PartnerID", "Name", "Contact", "Type"),
        serialize_partner,
        deserialize_partner,
    ),
    SheetCodec(
        SheetName.WHOLESALE,
        "wholesale_transactions",
        ("TransactionID", "PartnerID", "Type", "Items", "Total", "PaidAmount", "Timestamp", "Payments"),
        serialize_wholesale,
        deserialize_wholesale,
    ),
    SheetCodec(
        SheetName.EMPLOYEES,
        "employees",
        ("EmployeeID", "Name", "Role", "BaseSalary", "IsActive", "Phone"),
        serialize_employee,
        deserialize_employee,
    ),
    SheetCodec(
        SheetName.ATTENDANCE,
        "attendance",
        ("RecordID", "EmployeeID", "Date", "CheckIn", "Status", "CheckOut", "Breaks"),
        serialize_attendance,
        deserialize_attendance,
    ),
    SheetCodec(
        SheetName.SALARIES,
        "salary_transactions",
        ("TransactionID", "EmployeeID", "Amount", "Type", "Timestamp", "Notes"),
        serialize_salary,
        deserialize_salary,
    ),
    SheetCodec(
        SheetName.EXPENSES,
        "expenses",
        ("ExpenseID", "Description", "Amount", "Timestamp", "EmployeeID"),
        serialize_expense,
        deserialize_expense,
    ),
    SheetCodec(
        SheetName.STOCK_LOGS,
        "stock_logs",
        ("AdjustmentID", "ProductID", "OldStock", "NewStock", "Reason", "EmployeeID", "Timestamp"),
        serialize_stock_log,
        deserialize_stock_log,
    ),
    SheetCodec(
        SheetName.SHIFTS,
        "shifts",
        ("ShiftID", "OpenedBy", "StartTime", "StartCash", "Status", "EndTime", "EndCash", "Notes"),
        serialize_shift,
        deserialize_shift,
    ),
    SheetCodec(
        SheetName.AUDIT_LOG,
        "audit_log",
        ("EntryID", "Timestamp", "Action", "Category", "Details"),
        serialize_audit_entry,
        deserialize_audit_entry,
    ),
)

SETTINGS_COLUMNS: Tuple[str, ...] = ("Key", "Value")

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SETTINGS.value: SETTINGS_COLUMNS,
    **{codec.sheet.value: codec.columns for codec in SHEET_CODECS},
}


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def build_workbook(ledger: Ledger, *, schema_version: str = EXPECTED_SCHEMA_VERSION) -> Workbook:
    """Render a ledger snapshot into a fresh ``openpyxl`` workbook.

    Every sheet receives a bold header row followed by one row per record in
    the collection's order, so most-recent-first histories stay that way on
    disk. Scalar ledger fields go to the ``Settings`` sheet as key/value rows.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in SHEET_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    settings_sheet = workbook[SheetName.SETTINGS.value]
    settings_sheet.append(["SchemaVersion", schema_version])
    settings_sheet.append(["Currency", ledger.currency])
    settings_sheet.append(["InitialCash", str(ledger.initial_cash)])
    settings_sheet.append(["DraftExpiryMinutes", ledger.draft_expiry_minutes])

    for codec in SHEET_CODECS:
        worksheet = workbook[codec.sheet.value]
        for record in getattr(ledger, codec.attribute):
            worksheet.append(codec.serialize(record))

    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    """Yield raw data rows of ``sheet_name``, skipping the header and blanks.

    Raises:
        KeyError: If the workbook lacks the sheet.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def read_settings(workbook: Workbook) -> Dict[str, object]:
    """Return the ``Settings`` sheet as a key/value mapping."""

    return {str(raw[0]): raw[1] for raw in iter_rows(workbook, SheetName.SETTINGS.value)}


def read_ledger(workbook: Workbook) -> Ledger:
    """Decode every sheet of ``workbook`` into a :class:`Ledger`.

    Raises:
        KeyError: If a required sheet is missing.
    """

    collections: Dict[str, Tuple[Any, ...]] = {}
    for codec in SHEET_CODECS:
        collections[codec.attribute] = tuple(
            codec.deserialize(raw) for raw in iter_rows(workbook, codec.sheet.value)
        )

    settings = read_settings(workbook)
    return Ledger(
        **collections,
        initial_cash=_money(settings.get("InitialCash")),
        currency=_text(settings.get("Currency")) or DEFAULT_CURRENCY,
        draft_expiry_minutes=_int(settings.get("DraftExpiryMinutes")) or DEFAULT_DRAFT_EXPIRY_MINUTES,
    )


def ensure_schema_version(workbook: Workbook) -> None:
    """Validate workbook compatibility before reading records.

    Raises:
        RuntimeError: If the ``SchemaVersion`` stored in the workbook does not
            match ``EXPECTED_SCHEMA_VERSION``.
    """

    found = _text(read_settings(workbook).get("SchemaVersion"))
    if found != EXPECTED_SCHEMA_VERSION:
        log.error("Workbook schema mismatch: expected %s, found %s", EXPECTED_SCHEMA_VERSION, found)
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s" % (EXPECTED_SCHEMA_VERSION, found)
        )


def load_ledger(data_file: Path, *, now: Optional[datetime] = None) -> Ledger:
    """Open ``data_file``, check its schema, and decode it into a ledger.

    Held drafts older than the ledger's ``draft_expiry_minutes`` at ``now``
    (default: the current time) are dropped from the returned snapshot.
    """

    workbook = open_workbook(data_file)
    missing = list_missing_sheets(workbook)
    if missing:
        log.error("Workbook '%s' is missing sheets: %s", data_file, ", ".join(missing))
        raise KeyError(f"Workbook is missing sheets: {', '.join(missing)}")
    ensure_schema_version(workbook)
    ledger = prune_expired_drafts(read_ledger(workbook), now=now)
    log.info(
        "Loaded ledger from '%s' (%d products, %d sales)",
        data_file,
        len(ledger.products),
        len(ledger.sales),
    )
    return ledger


def save_ledger(ledger: Ledger, destination: Path) -> None:
    """Render ``ledger`` into a workbook and write it to ``destination``."""

    save_workbook(build_workbook(ledger), destination)
    log.info("Persisted ledger to '%s'", destination)


def empty_ledger(settings: ConfigSettings) -> Ledger:
    """Return a ledger with no records, seeded from configuration defaults."""

    return Ledger(
        initial_cash=settings.initial_cash,
        currency=settings.currency,
        draft_expiry_minutes=settings.draft_expiry_minutes,
    )


def list_missing_sheets(workbook: Workbook) -> List[str]:
    """Return the sheet names this module expects but ``workbook`` lacks."""

    return [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]
