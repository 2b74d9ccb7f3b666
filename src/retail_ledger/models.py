"""Immutable records that make up a ledger snapshot.

Every entity is a frozen dataclass and every collection held by
:class:`Ledger` is a tuple. Engine operations never modify a record; they
build replacements with :func:`dataclasses.replace` and return a new
``Ledger``. Unchanged records are shared between the old and new snapshot,
which is safe because nothing can mutate them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_DRAFT_EXPIRY_MINUTES,
    AttendanceStatus,
    EmployeeRole,
    LogCategory,
    PartnerType,
    SalaryType,
    SaleChannel,
    SaleStatus,
    ShiftStatus,
    WholesaleType,
)


@dataclass(frozen=True)
class Product:
    """Catalogue entry with its on-hand stock."""

    id: str
    name: str
    category: str
    price: Decimal
    cost_price: Decimal
    stock: int
    min_stock: int = 0
    barcode: Optional[str] = None
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class SaleItem:
    """Line item snapshot captured when a sale is created."""

    product_id: str
    name: str
    price: Decimal
    quantity: int
    returned_quantity: int = 0

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity - self.returned_quantity


@dataclass(frozen=True)
class DeliveryDetails:
    customer_name: str
    customer_phone: str
    address: str


@dataclass(frozen=True)
class Sale:
    """A retail invoice, including delivery orders."""

    id: str
    timestamp: datetime
    items: Tuple[SaleItem, ...]
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    total: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    total_cost: Decimal
    total_profit: Decimal
    points_earned: int
    status: SaleStatus
    customer_id: Optional[str] = None
    driver_id: Optional[str] = None
    is_delivery: bool = False
    delivery_details: Optional[DeliveryDetails] = None
    sale_channel: SaleChannel = SaleChannel.STORE
    shift_id: Optional[str] = None


@dataclass(frozen=True)
class DraftInvoice:
    """A held cart. Priced like a sale but takes no stock and earns no points
    until it is checked out."""

    id: str
    timestamp: datetime
    items: Tuple[SaleItem, ...]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    sale_channel: SaleChannel = SaleChannel.STORE
    customer_id: Optional[str] = None
    is_delivery: bool = False
    delivery_details: Optional[DeliveryDetails] = None
    delivery_fee: Decimal = Decimal("0")


@dataclass(frozen=True)
class ReturnItem:
    product_id: str
    quantity: int
    refund_amount: Decimal


@dataclass(frozen=True)
class SaleReturn:
    """Append-only record of units handed back against a sale."""

    id: str
    sale_id: str
    timestamp: datetime
    items: Tuple[ReturnItem, ...]
    total_refund: Decimal


@dataclass(frozen=True)
class WholesalePartner:
    id: str
    name: str
    contact: str
    type: PartnerType


@dataclass(frozen=True)
class WholesaleItem:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class WholesalePayment:
    amount: Decimal
    timestamp: datetime
    remaining_after: Decimal


@dataclass(frozen=True)
class WholesaleTransaction:
    """Bulk sale to a buyer or purchase from a supplier.

    ``total`` and ``paid_amount`` are computed by the caller. Later debt
    payments only ever raise ``paid_amount`` and append to ``payments``.
    """

    id: str
    partner_id: str
    type: WholesaleType
    items: Tuple[WholesaleItem, ...]
    total: Decimal
    paid_amount: Decimal
    timestamp: datetime
    payments: Tuple[WholesalePayment, ...] = ()

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal("0"), self.total - self.paid_amount)


@dataclass(frozen=True)
class Customer:
    """Loyalty profile whose aggregates are maintained incrementally."""

    id: str
    name: str
    phone: str
    total_purchases: Decimal = Decimal("0")
    invoice_count: int = 0
    total_points: int = 0
    last_order_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Employee:
    id: str
    name: str
    role: EmployeeRole
    base_salary: Decimal
    is_active: bool = True
    phone: str = ""


@dataclass(frozen=True)
class Break:
    start: datetime
    end: Optional[datetime] = None


@dataclass(frozen=True)
class AttendanceRecord:
    """One employee's clock for one calendar day."""

    id: str
    employee_id: str
    date: str
    check_in: datetime
    status: AttendanceStatus
    check_out: Optional[datetime] = None
    breaks: Tuple[Break, ...] = ()


@dataclass(frozen=True)
class SalaryTransaction:
    id: str
    employee_id: str
    amount: Decimal
    type: SalaryType
    timestamp: datetime
    notes: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    id: str
    description: str
    amount: Decimal
    timestamp: datetime
    employee_id: Optional[str] = None


@dataclass(frozen=True)
class StockAdjustmentLog:
    id: str
    product_id: str
    old_stock: int
    new_stock: int
    reason: str
    employee_id: str
    timestamp: datetime


@dataclass(frozen=True)
class Shift:
    id: str
    opened_by: str
    start_time: datetime
    start_cash: Decimal
    status: ShiftStatus
    end_time: Optional[datetime] = None
    end_cash: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class AuditLogEntry:
    id: str
    timestamp: datetime
    action: str
    category: LogCategory
    details: str


@dataclass(frozen=True)
class Ledger:
    """The single aggregate every engine operation consumes and produces.

    Histories (sales, returns, wholesale transactions, stock logs, audit log)
    are ordered most-recent-first. Attendance, payroll, expenses and held
    drafts keep insertion order.
    """

    products: Tuple[Product, ...] = ()
    categories: Tuple[str, ...] = ()
    sales: Tuple[Sale, ...] = ()
    drafts: Tuple[DraftInvoice, ...] = ()
    returns: Tuple[SaleReturn, ...] = ()
    partners: Tuple[WholesalePartner, ...] = ()
    wholesale_transactions: Tuple[WholesaleTransaction, ...] = ()
    customers: Tuple[Customer, ...] = ()
    employees: Tuple[Employee, ...] = ()
    attendance: Tuple[AttendanceRecord, ...] = ()
    salary_transactions: Tuple[SalaryTransaction, ...] = ()
    expenses: Tuple[Expense, ...] = ()
    stock_logs: Tuple[StockAdjustmentLog, ...] = ()
    shifts: Tuple[Shift, ...] = ()
    audit_log: Tuple[AuditLogEntry, ...] = field(default=(), repr=False)
    initial_cash: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    draft_expiry_minutes: int = DEFAULT_DRAFT_EXPIRY_MINUTES


__all__ = [
    "AttendanceRecord",
    "AuditLogEntry",
    "Break",
    "Customer",
    "DeliveryDetails",
    "DraftInvoice",
    "Employee",
    "Expense",
    "Ledger",
    "Product",
    "ReturnItem",
    "SalaryTransaction",
    "Sale",
    "SaleItem",
    "SaleReturn",
    "Shift",
    "StockAdjustmentLog",
    "WholesaleItem",
    "WholesalePartner",
    "WholesalePayment",
    "WholesaleTransaction",
]
