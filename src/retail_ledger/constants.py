"""Enumerations shared across the retail ledger modules.

Centralises domain constants so that the persistence adapter, the transaction
engine, and the command-line front end rely on a single source of truth for
statuses, record types, and workbook sheet names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Newest entries win; older audit entries are dropped past this size.
AUDIT_LOG_LIMIT = 5000

# Refunds are truncated to this precision so they never exceed the sale total.
MONEY_QUANTUM = Decimal("0.01")

DEFAULT_CURRENCY = "EGP"
DEFAULT_DRAFT_EXPIRY_MINUTES = 120


class SaleStatus(str, Enum):
    """Lifecycle states of a retail sale or delivery order."""

    COMPLETED = "completed"
    PENDING = "pending"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class SaleChannel(str, Enum):
    """Where a retail sale originated."""

    STORE = "store"
    SOCIAL_MEDIA = "social_media"
    WEBSITE = "website"


class PartnerType(str, Enum):
    """Wholesale counterparty kinds."""

    BUYER = "buyer"
    SUPPLIER = "supplier"


class WholesaleType(str, Enum):
    """Direction of a wholesale transaction."""

    SALE = "sale"
    PURCHASE = "purchase"


class EmployeeRole(str, Enum):
    """Staff roles known to the HR module."""

    ADMIN = "admin"
    CASHIER = "cashier"
    DELIVERY = "delivery"


class AttendanceStatus(str, Enum):
    """Daily attendance states. ``absent`` is represented by a missing record."""

    PRESENT = "present"
    ON_BREAK = "on_break"
    COMPLETED = "completed"


class AttendanceAction(str, Enum):
    """Actions an employee can perform on the attendance clock."""

    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    BREAK_START = "break_start"
    BREAK_END = "break_end"


class SalaryType(str, Enum):
    """Kinds of payroll disbursement."""

    SALARY = "salary"
    ADVANCE = "advance"
    BONUS = "bonus"


class ShiftStatus(str, Enum):
    """Cash-drawer shift states."""

    OPEN = "open"
    CLOSED = "closed"


class LogCategory(str, Enum):
    """Audit log categories."""

    SALE = "sale"
    INVENTORY = "inventory"
    EXPENSE = "expense"
    RETURN = "return"
    SYSTEM = "system"
    CASH = "cash"
    WHOLESALE = "wholesale"
    DELIVERY = "delivery"
    HR = "hr"


WHOLESALE_DIRECTIONS: dict[WholesaleType, PartnerType] = {
    WholesaleType.SALE: PartnerType.BUYER,
    WholesaleType.PURCHASE: PartnerType.SUPPLIER,
}


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the persistence adapter."""

    SETTINGS = "Settings"
    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    CUSTOMERS = "Customers"
    SALES = "Sales"
    DRAFTS = "Drafts"
    RETURNS = "Returns"
    PARTNERS = "Partners"
    WHOLESALE = "WholesaleTransactions"
    EMPLOYEES = "Employees"
    ATTENDANCE = "Attendance"
    SALARIES = "SalaryTransactions"
    EXPENSES = "Expenses"
    STOCK_LOGS = "StockLogs"
    SHIFTS = "Shifts"
    AUDIT_LOG = "AuditLog"


__all__ = [
    "AUDIT_LOG_LIMIT",
    "DEFAULT_CURRENCY",
    "DEFAULT_DRAFT_EXPIRY_MINUTES",
    "EXPECTED_SCHEMA_VERSION",
    "MONEY_QUANTUM",
    "WHOLESALE_DIRECTIONS",
    "AttendanceAction",
    "AttendanceStatus",
    "EmployeeRole",
    "LogCategory",
    "PartnerType",
    "SaleChannel",
    "SaleStatus",
    "SalaryType",
    "SheetName",
    "ShiftStatus",
    "WholesaleType",
]
