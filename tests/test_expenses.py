"""Tests for general expense bookkeeping."""

from __future__ import annotations

from decimal import Decimal

import pytest

from retail_ledger import core_logic, expenses
from retail_ledger.constants import LogCategory
from retail_ledger.models import Expense


def test_record_expense_appends_and_audits(ledger, moment):
    """A general expense is appended with one EXPENSE audit entry."""

    rent = Expense("EXP-RENT", "Rent", Decimal("2500"), moment)
    updated = expenses.record_expense(ledger, rent)

    assert updated.expenses == (rent,)
    entry = updated.audit_log[0]
    assert (entry.action, entry.category) == ("EXPENSE_RECORDED", LogCategory.EXPENSE)
    assert entry.details == "Rent: 2500.00"
    assert entry.timestamp == moment
    assert ledger.expenses == ()


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
def test_expense_amount_must_be_positive(ledger, moment, amount):
    """Zero or negative amounts raise ValidationError."""

    with pytest.raises(core_logic.ValidationError):
        expenses.record_expense(ledger, Expense("X1", "Rent", amount, moment))


def test_expense_needs_a_description(ledger, moment):
    """A blank description raises ValidationError."""

    with pytest.raises(core_logic.ValidationError):
        expenses.record_expense(ledger, Expense("X1", "  ", Decimal("5"), moment))


def test_expense_ids_are_unique(ledger, moment):
    """Recording a second expense under an existing id is rejected."""

    once = expenses.record_expense(ledger, Expense("X1", "Water", Decimal("5"), moment))
    with pytest.raises(core_logic.ValidationError):
        expenses.record_expense(once, Expense("X1", "Power", Decimal("7"), moment))


def test_expense_employee_must_exist(ledger, moment):
    """An expense charged to an unknown employee is rejected."""

    with pytest.raises(core_logic.EmployeeNotFoundError):
        expenses.record_expense(ledger, Expense("X1", "Taxi", Decimal("5"), moment, employee_id="ghost"))
