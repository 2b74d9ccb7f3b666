"""HR and payroll processor: staff roster, attendance clock, payroll, shifts.

Attendance is a per-employee, per-day state machine::

    absent --check_in--> present --break_start--> on_break
                         present <--break_end---- on_break
                         present --check_out--> completed (terminal)

``absent`` has no record; the first ``check_in`` of the day creates one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from . import log
from .audit import record_audit_entry
from .constants import AttendanceAction, AttendanceStatus, LogCategory, SalaryType, ShiftStatus
from .core_logic import (
    AlreadyCheckedInError,
    BusinessRuleViolation,
    DayAlreadyClosedError,
    InvalidStateTransitionError,
    ValidationError,
    generate_record_id,
    get_employee,
    replace_at,
    require_nonnegative_money,
    require_unique_id,
    resolve_timestamp,
)
from .models import AttendanceRecord, Break, Employee, Expense, Ledger, SalaryTransaction, Shift


@dataclass(frozen=True)
class SalaryCommand:
    """User intent for paying an employee."""

    transaction_id: str
    employee_id: str
    amount: Decimal
    type: SalaryType = SalaryType.SALARY
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


def add_employee(ledger: Ledger, employee: Employee, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Register a staff member on the roster."""
    require_unique_id(ledger.employees, employee.id, label="Employee")
    require_nonnegative_money(employee.base_salary, label="Base salary")
    updated = replace(ledger, employees=(*ledger.employees, employee))
    return record_audit_entry(
        updated,
        "STAFF_ADDED",
        LogCategory.HR,
        f"Registered {employee.role.value}: {employee.name}",
        timestamp=resolve_timestamp(timestamp),
    )


def _next_attendance(
    record: Optional[AttendanceRecord],
    action: AttendanceAction,
    *,
    employee_id: str,
    day: str,
    when: datetime,
) -> AttendanceRecord:
    """Apply ``action`` to today's record, or raise if the move is illegal."""
    if record is not None and record.status == AttendanceStatus.COMPLETED:
        raise DayAlreadyClosedError("Attendance for today is already closed.")

    if action == AttendanceAction.CHECK_IN:
        if record is None:
            return AttendanceRecord(
                id=f"ATT-{employee_id}-{day}",
                employee_id=employee_id,
                date=day,
                check_in=when,
                status=AttendanceStatus.PRESENT,
            )
        if record.status == AttendanceStatus.PRESENT:
            raise AlreadyCheckedInError("Already checked in today.")
        raise InvalidStateTransitionError("End the current break before checking in again.")

    if record is None:
        raise InvalidStateTransitionError("No active session: check in first.")

    if action == AttendanceAction.BREAK_START:
        if record.status != AttendanceStatus.PRESENT:
            raise InvalidStateTransitionError("Already on a break.")
        return replace(record, status=AttendanceStatus.ON_BREAK, breaks=(*record.breaks, Break(start=when)))

    if action == AttendanceAction.BREAK_END:
        if record.status != AttendanceStatus.ON_BREAK:
            raise InvalidStateTransitionError("Not on a break.")
        closed = replace(record.breaks[-1], end=when)
        return replace(record, status=AttendanceStatus.PRESENT, breaks=(*record.breaks[:-1], closed))

    if action == AttendanceAction.CHECK_OUT:
        if record.status != AttendanceStatus.PRESENT:
            raise InvalidStateTransitionError("End the current break before checking out.")
        return replace(record, status=AttendanceStatus.COMPLETED, check_out=when)

    raise InvalidStateTransitionError(f"Unsupported attendance action: {action}")


def record_attendance_action(
    ledger: Ledger,
    employee_id: str,
    action: AttendanceAction,
    *,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Advance an employee's attendance clock for the day of ``timestamp``.

    Args:
        ledger (Ledger): Current snapshot.
        employee_id (str): Employee performing the action.
        action (AttendanceAction): ``check_in``, ``break_start``,
            ``break_end`` or ``check_out``.
        timestamp (datetime | None): Moment of the action; its calendar date
            selects the attendance record. Defaults to now.

    Returns:
        Ledger: Snapshot with the created or updated attendance record and
            one audit entry.

    Raises:
        EmployeeNotFoundError: If the employee is unknown.
        AlreadyCheckedInError: On a second check-in while present.
        DayAlreadyClosedError: On any action after checking out.
        InvalidStateTransitionError: On any other illegal move.
    """
    get_employee(ledger, employee_id)
    action = AttendanceAction(action)
    when = resolve_timestamp(timestamp)
    day = when.date().isoformat()

    index = next(
        (i for i, r in enumerate(ledger.attendance) if r.employee_id == employee_id and r.date == day),
        -1,
    )
    current = ledger.attendance[index] if index != -1 else None
    try:
        record = _next_attendance(current, action, employee_id=employee_id, day=day, when=when)
    except InvalidStateTransitionError as exc:
        log.warning("Attendance %s rejected for '%s' on %s: %s", action.value, employee_id, day, exc)
        raise

    if index == -1:
        attendance = (*ledger.attendance, record)
    else:
        attendance = replace_at(ledger.attendance, index, record)
    return record_audit_entry(
        replace(ledger, attendance=attendance),
        "ATTENDANCE",
        LogCategory.HR,
        f"Staff {employee_id} performed {action.value}",
        timestamp=when,
    )


def process_salary_transaction(ledger: Ledger, command: SalaryCommand) -> Ledger:
    """Pay an employee and book the payment as an expense.

    Every salary transaction produces exactly one :class:`Expense` with the
    same amount and timestamp and the id ``EXP-<transaction id>``, so payroll
    reduces reported cash once, through the expense ledger.

    Raises:
        EmployeeNotFoundError: If the employee is unknown.
        ValidationError: If the amount is not positive or the id is taken.
    """
    employee = get_employee(ledger, command.employee_id)
    require_unique_id(ledger.salary_transactions, command.transaction_id, label="Salary transaction")
    if command.amount <= Decimal("0"):
        log.error("Salary transaction '%s' rejected: amount %s", command.transaction_id, command.amount)
        raise ValidationError("Salary amount must be greater than zero")

    when = resolve_timestamp(command.timestamp)
    salary_type = SalaryType(command.type)
    transaction = SalaryTransaction(
        id=command.transaction_id,
        employee_id=employee.id,
        amount=command.amount,
        type=salary_type,
        timestamp=when,
        notes=command.notes,
    )
    expense = Expense(
        id=f"EXP-{command.transaction_id}",
        description=f"Payroll ({salary_type.value}): {employee.name}",
        amount=command.amount,
        timestamp=when,
        employee_id=employee.id,
    )
    updated = replace(
        ledger,
        salary_transactions=(*ledger.salary_transactions, transaction),
        expenses=(*ledger.expenses, expense),
    )
    return record_audit_entry(
        updated,
        "PAYROLL",
        LogCategory.HR,
        f"Paid {salary_type.value} of {command.amount} to {employee.name}",
        timestamp=when,
    )


def open_shift(
    ledger: Ledger,
    opened_by: str,
    start_cash: Decimal,
    *,
    shift_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Open the cash drawer. Only one shift may be open at a time.

    Raises:
        BusinessRuleViolation: If a shift is already open.
    """
    if any(shift.status == ShiftStatus.OPEN for shift in ledger.shifts):
        log.warning("Shift open rejected: a shift is already open")
        raise BusinessRuleViolation("A shift is already open. Please close it first.")
    require_nonnegative_money(start_cash, label="Start cash")

    when = resolve_timestamp(timestamp)
    shift_id = shift_id or generate_record_id(prefix="SH", when=when)
    require_unique_id(ledger.shifts, shift_id, label="Shift")
    shift = Shift(
        id=shift_id,
        opened_by=opened_by,
        start_time=when,
        start_cash=start_cash,
        status=ShiftStatus.OPEN,
    )
    return record_audit_entry(
        replace(ledger, shifts=(*ledger.shifts, shift)),
        "SHIFT_OPEN",
        LogCategory.SYSTEM,
        f"Shift opened by {opened_by} with {start_cash}",
        timestamp=when,
    )


def close_shift(
    ledger: Ledger,
    end_cash: Decimal,
    *,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Close the open shift with the counted drawer cash.

    Raises:
        BusinessRuleViolation: If no shift is open.
    """
    index = next((i for i, s in enumerate(ledger.shifts) if s.status == ShiftStatus.OPEN), -1)
    if index == -1:
        log.warning("Shift close rejected: no open shift")
        raise BusinessRuleViolation("No active shift to close.")
    require_nonnegative_money(end_cash, label="End cash")

    when = resolve_timestamp(timestamp)
    closed = replace(
        ledger.shifts[index],
        status=ShiftStatus.CLOSED,
        end_time=when,
        end_cash=end_cash,
        notes=notes,
    )
    return record_audit_entry(
        replace(ledger, shifts=replace_at(ledger.shifts, index, closed)),
        "SHIFT_CLOSE",
        LogCategory.SYSTEM,
        f"Shift closed. Counted: {end_cash}",
        timestamp=when,
    )
