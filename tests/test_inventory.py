"""Tests for stock movements and stocktake adjustments."""

from __future__ import annotations

from decimal import Decimal

import pytest

from retail_ledger import core_logic, inventory


def test_stock_count_below_record_books_shrinkage(ledger, moment):
    """Counting fewer units than recorded should post a shrinkage expense."""

    counted = inventory.adjust_stock(ledger, "P1", 5, "damaged", "E1", adjustment_id="ADJ1", timestamp=moment)

    assert core_logic.get_product(counted, "P1").stock == 5
    stock_log = counted.stock_logs[0]
    assert (stock_log.old_stock, stock_log.new_stock, stock_log.reason) == (10, 5, "damaged")
    expense = counted.expenses[-1]
    assert expense.id == "EXP-ADJ1"
    assert expense.amount == Decimal("300")
    assert expense.employee_id == "E1"
    assert "Kettle" in expense.description
    assert counted.audit_log[0].details == "Kettle: 10 -> 5"


def test_stock_count_above_record_posts_no_expense(ledger, moment):
    """Finding extra units only logs the adjustment."""

    counted = inventory.adjust_stock(ledger, "P1", 12, "found", "E1", timestamp=moment)

    assert core_logic.get_product(counted, "P1").stock == 12
    assert counted.expenses == ()
    assert len(counted.stock_logs) == 1
    assert counted.stock_logs[0].id.startswith("ADJ")


def test_down_then_up_posts_a_single_expense(ledger):
    """Stock 50 -> 45 books five units; 45 -> 50 books nothing."""

    down = inventory.adjust_stock(ledger, "P2", 45, "count", "E1", adjustment_id="A1")
    up = inventory.adjust_stock(down, "P2", 50, "recount", "E1", adjustment_id="A2")

    assert [e.amount for e in up.expenses] == [Decimal("60")]
    assert [entry.id for entry in up.stock_logs] == ["A2", "A1"]


@pytest.mark.parametrize("counted", [-1, 2.5, True])
def test_invalid_counts_are_rejected(ledger, counted):
    """Counts must be whole numbers of zero or more."""

    with pytest.raises(core_logic.ValidationError):
        inventory.adjust_stock(ledger, "P1", counted, "count", "E1")


def test_unknown_product_is_rejected(ledger):
    """Counting a missing product should raise ProductNotFoundError."""

    with pytest.raises(core_logic.ProductNotFoundError):
        inventory.adjust_stock(ledger, "P404", 1, "count", "E1")


def test_shift_stock_refuses_negative_levels(ledger):
    """shift_stock should never leave a product below zero."""

    with pytest.raises(core_logic.InsufficientStockError):
        inventory.shift_stock(ledger.products, {"P1": -11})


def test_shift_stock_skips_missing_products(ledger):
    """Movements for unknown products are ignored."""

    assert inventory.shift_stock(ledger.products, {"P404": 3}) == ledger.products


def test_total_by_product_merges_lines():
    """Repeated product ids should be summed."""

    assert inventory.total_by_product([("A", 1), ("B", 2), ("A", 3)]) == {"A": 4, "B": 2}


def test_reused_adjustment_id_is_rejected(ledger, moment):
    """A stocktake id may only be used once, so its expense id stays unique."""

    counted = inventory.adjust_stock(ledger, "P1", 8, "count", "E1", adjustment_id="ADJ1", timestamp=moment)
    with pytest.raises(core_logic.ValidationError):
        inventory.adjust_stock(counted, "P2", 40, "count", "E1", adjustment_id="ADJ1", timestamp=moment)
    assert [entry.id for entry in counted.stock_logs] == ["ADJ1"]


def test_generated_ids_from_one_instant_collide_loudly(ledger, moment):
    """Two counts stamped with the same instant cannot share a generated id."""

    counted = inventory.adjust_stock(ledger, "P1", 8, "count", "E1", timestamp=moment)
    with pytest.raises(core_logic.ValidationError):
        inventory.adjust_stock(counted, "P1", 7, "count", "E1", timestamp=moment)
