"""General cash-out bookkeeping such as rent, utilities, and supplies.

Payroll and stocktake shrinkage book their own expenses through
:mod:`.staff` and :mod:`.inventory`; this module records everything else.
"""

from __future__ import annotations

from dataclasses import replace

from . import log
from .audit import record_audit_entry
from .constants import LogCategory
from .core_logic import ValidationError, get_employee, require_unique_id
from .models import Expense, Ledger


def record_expense(ledger: Ledger, expense: Expense) -> Ledger:
    """Append a general expense to the ledger.

    Args:
        ledger (Ledger): Current snapshot.
        expense (Expense): Fully populated expense. ``employee_id`` is
            optional and, when given, must name a rostered employee.

    Returns:
        Ledger: Snapshot with the expense appended and one audit entry.

    Raises:
        ValidationError: If the id is taken, the description is blank, or
            the amount is not greater than zero.
        EmployeeNotFoundError: If ``employee_id`` is unknown.
    """
    require_unique_id(ledger.expenses, expense.id, label="Expense")
    if not expense.description.strip():
        log.error("Expense '%s' rejected: blank description", expense.id)
        raise ValidationError("An expense needs a description")
    if expense.amount <= 0:
        log.error("Expense '%s' rejected: amount %s", expense.id, expense.amount)
        raise ValidationError("Expense amount must be greater than zero")
    if expense.employee_id is not None:
        get_employee(ledger, expense.employee_id)

    updated = replace(ledger, expenses=(*ledger.expenses, expense))
    return record_audit_entry(
        updated,
        "EXPENSE_RECORDED",
        LogCategory.EXPENSE,
        f"{expense.description}: {expense.amount:.2f}",
        timestamp=expense.timestamp,
    )
