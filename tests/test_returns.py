"""Tests for partial returns and discount-weighted refunds."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from retail_ledger import core_logic, returns, sales
from retail_ledger.constants import SaleStatus


@pytest.fixture
def discounted_sale(ledger, moment):
    """Two units at 100 with a discount of 20, linked to customer C1."""

    proposal = sales.SaleProposal(
        sale_id="S1",
        lines=(sales.SaleLine("P1", 2, Decimal("100")),),
        discount=Decimal("20"),
        paid_amount=Decimal("100"),
        customer_id="C1",
        timestamp=moment,
    )
    return sales.create_sale(ledger, proposal)


def _request(return_id="R1", *lines):
    return returns.ReturnRequest(
        return_id=return_id,
        sale_id="S1",
        lines=tuple(returns.ReturnLine(product_id, quantity) for product_id, quantity in lines),
    )


def test_return_refunds_at_discounted_unit_price(discounted_sale):
    """Returning one of two units should refund price times the discount ratio."""

    updated = returns.process_return(discounted_sale, _request("R1", ("P1", 1)))
    sale_return = updated.returns[0]
    sale = updated.sales[0]

    assert sale_return.total_refund == Decimal("90.00")
    assert sale_return.items[0].refund_amount == Decimal("90.00")
    assert sale.remaining_amount == Decimal("0")
    assert sale.items[0].returned_quantity == 1
    assert core_logic.get_product(updated, "P1").stock == 9


def test_return_reduces_cost_profit_and_points(discounted_sale):
    """Cost, profit, and customer points shrink by the returned share."""

    before = core_logic.get_customer(discounted_sale, "C1").total_points
    updated = returns.process_return(discounted_sale, _request("R1", ("P1", 1)))
    sale = updated.sales[0]

    assert sale.total_cost == Decimal("60")
    # profit 60 - (refund 90 - cost 60)
    assert sale.total_profit == Decimal("30.00")
    assert core_logic.get_customer(updated, "C1").total_points == before - 90
    assert updated.audit_log[0].action == "RETURN_PROCESSED"


def test_remaining_amount_is_floored_at_zero(ledger):
    """A refund larger than the unpaid balance should leave zero remaining."""

    sold = sales.create_sale(
        ledger,
        sales.SaleProposal(sale_id="S1", lines=(sales.SaleLine("P1", 2, Decimal("100")),), paid_amount=Decimal("150")),
    )
    updated = returns.process_return(sold, _request("R1", ("P1", 1)))
    assert updated.sales[0].remaining_amount == Decimal("0")


def test_over_return_is_rejected(discounted_sale):
    """Returning more units than remain should raise OverReturnError."""

    once = returns.process_return(discounted_sale, _request("R1", ("P1", 1)))
    with pytest.raises(core_logic.OverReturnError):
        returns.process_return(once, _request("R2", ("P1", 2)))


def test_over_return_counts_repeated_lines_together(discounted_sale):
    """Split lines for one product are bounded by their combined quantity."""

    with pytest.raises(core_logic.OverReturnError):
        returns.process_return(discounted_sale, _request("R1", ("P1", 1), ("P1", 2)))


def test_invalid_line_rejects_the_whole_return(discounted_sale):
    """A bad line should prevent every other line from being applied."""

    with pytest.raises(core_logic.NotFoundError):
        returns.process_return(discounted_sale, _request("R1", ("P1", 1), ("P2", 1)))
    assert discounted_sale.returns == ()
    assert core_logic.get_product(discounted_sale, "P1").stock == 8


def test_refunds_never_exceed_product_revenue(ledger):
    """Returning every unit one at a time refunds at most subtotal minus discount."""

    sold = sales.create_sale(
        ledger,
        sales.SaleProposal(
            sale_id="S1",
            lines=(sales.SaleLine("P2", 3, Decimal("20")),),
            discount=Decimal("10"),
        ),
    )
    snapshot = sold
    for index in range(3):
        snapshot = returns.process_return(snapshot, _request(f"R{index}", ("P2", 1)))

    refunded = sum(r.total_refund for r in snapshot.returns)
    assert refunded <= Decimal("50")
    assert all(r.total_refund == Decimal("16.66") for r in snapshot.returns)


def test_return_against_cancelled_sale_is_rejected(discounted_sale):
    """Cancelled sales have already released their units."""

    cancelled = sales.update_delivery_status(discounted_sale, "S1", SaleStatus.CANCELLED)
    with pytest.raises(core_logic.ValidationError):
        returns.process_return(cancelled, _request("R1", ("P1", 1)))


def test_return_unknown_sale(ledger):
    """Returns against a missing sale should raise SaleNotFoundError."""

    with pytest.raises(core_logic.SaleNotFoundError):
        returns.process_return(ledger, _request("R1", ("P1", 1)))


def test_line_refund_without_discount_is_the_gross_amount(discounted_sale):
    """A zero discount leaves the refund at full price."""

    sale = discounted_sale.sales[0]
    undiscounted = replace(sale, discount=Decimal("0"))
    assert returns.line_refund(undiscounted, Decimal("200")) == Decimal("200.00")


# ---------------------------------------------------------------------------
# Repeated product lines
# ---------------------------------------------------------------------------


@pytest.fixture
def mixed_price_sale(ledger, moment):
    """One kettle at 100 followed by one kettle at 10 on the same invoice."""

    proposal = sales.SaleProposal(
        sale_id="S1",
        lines=(sales.SaleLine("P1", 1, Decimal("100")), sales.SaleLine("P1", 1, Decimal("10"))),
        customer_id="C1",
        timestamp=moment,
    )
    return sales.create_sale(ledger, proposal)


def test_repeated_lines_refund_at_their_own_prices(mixed_price_sale):
    """Returning both units should refund exactly what the two lines charged."""

    updated = returns.process_return(mixed_price_sale, _request("R1", ("P1", 2)))
    sale = updated.sales[0]

    assert sale.total == Decimal("110")
    assert updated.returns[0].total_refund == Decimal("110.00")
    assert [item.returned_quantity for item in sale.items] == [1, 1]


def test_repeated_lines_are_consumed_in_order(mixed_price_sale):
    """Single-unit returns take the first outstanding line, then the next."""

    first = returns.process_return(mixed_price_sale, _request("R1", ("P1", 1)))
    second = returns.process_return(first, _request("R2", ("P1", 1)))

    assert first.returns[0].total_refund == Decimal("100.00")
    assert second.returns[0].total_refund == Decimal("10.00")


@pytest.mark.parametrize(
    "lines, discount, batches",
    [
        ((("P1", 1, "100"), ("P1", 1, "10")), "0", (1, 1)),
        ((("P1", 2, "100"), ("P1", 3, "10")), "25", (2, 1, 2)),
        ((("P1", 1, "10"), ("P1", 2, "100"), ("P2", 2, "7.33")), "13.37", (3, 1)),
        ((("P2", 3, "20"), ("P2", 1, "0.01")), "10", (1, 1, 1, 1)),
    ],
)
def test_total_refunds_never_exceed_sale_total(ledger, lines, discount, batches):
    """However a sale's units are handed back, refunds stay within its total."""

    sold = sales.create_sale(
        ledger,
        sales.SaleProposal(
            sale_id="S1",
            lines=tuple(sales.SaleLine(pid, qty, Decimal(price)) for pid, qty, price in lines),
            discount=Decimal(discount),
        ),
    )
    snapshot = sold
    for index, batch in enumerate(batches):
        outstanding = [
            (item.product_id, item.outstanding_quantity) for item in snapshot.sales[0].items
        ]
        product_id = next(pid for pid, left in outstanding if left)
        available = sum(left for pid, left in outstanding if pid == product_id)
        snapshot = returns.process_return(
            snapshot, _request(f"R{index}", (product_id, min(batch, available)))
        )
        refunded = sum(r.total_refund for r in snapshot.returns)
        assert refunded <= sold.sales[0].total
