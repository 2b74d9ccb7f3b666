"""Tests for held draft invoices: saving, discarding, checkout, and expiry."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from retail_ledger import core_logic, drafts, sales
from retail_ledger.constants import SaleChannel


@pytest.fixture
def held(ledger, moment):
    """Two kettles for C1 held as draft D1 with a discount of 20."""

    proposal = sales.SaleProposal(
        sale_id="D1",
        lines=(sales.SaleLine("P1", 2, Decimal("100")),),
        discount=Decimal("20"),
        customer_id="C1",
        sale_channel=SaleChannel.WEBSITE,
        timestamp=moment,
    )
    return drafts.save_draft(ledger, proposal)


# ---------------------------------------------------------------------------
# Saving and discarding
# ---------------------------------------------------------------------------


def test_saved_draft_is_priced_but_takes_no_stock(ledger, held, moment):
    """A held cart carries totals but leaves stock and customers alone."""

    draft = held.drafts[0]
    assert (draft.subtotal, draft.discount, draft.total) == (Decimal("200"), Decimal("20"), Decimal("180"))
    assert draft.timestamp == moment
    assert draft.sale_channel == SaleChannel.WEBSITE
    assert draft.items[0].name == "Kettle"
    assert held.products == ledger.products
    assert held.customers == ledger.customers
    assert held.sales == ()
    assert held.audit_log[0].action == "DRAFT_SAVED"


def test_draft_may_exceed_current_stock(ledger):
    """Stock is only checked at checkout."""

    big = sales.SaleProposal(sale_id="D9", lines=(sales.SaleLine("P1", 99, Decimal("100")),))
    assert drafts.save_draft(ledger, big).drafts[0].items[0].quantity == 99


@pytest.mark.parametrize(
    "proposal",
    [
        sales.SaleProposal(sale_id="D2", lines=()),
        sales.SaleProposal(sale_id="D2", lines=(sales.SaleLine("P1", 0, Decimal("1")),)),
        sales.SaleProposal(sale_id="D2", lines=(sales.SaleLine("P1", 1, Decimal("5")),), discount=Decimal("6")),
        sales.SaleProposal(sale_id="D1", lines=(sales.SaleLine("P1", 1, Decimal("5")),)),
    ],
)
def test_malformed_drafts_are_rejected(held, proposal):
    """Empty carts, bad quantities, oversized discounts and taken ids fail."""

    with pytest.raises(core_logic.ValidationError):
        drafts.save_draft(held, proposal)


def test_draft_with_unknown_product_is_rejected(ledger):
    """Every line must reference a catalogue product."""

    with pytest.raises(core_logic.ProductNotFoundError):
        drafts.save_draft(ledger, sales.SaleProposal(sale_id="D1", lines=(sales.SaleLine("P404", 1, Decimal("1")),)))


def test_discard_draft(held):
    """Discarding drops the draft and writes one audit entry."""

    discarded = drafts.discard_draft(held, "D1")
    assert discarded.drafts == ()
    assert discarded.audit_log[0].action == "DRAFT_DISCARDED"


def test_discard_unknown_draft(ledger):
    """Discarding a draft that is not held raises DraftNotFoundError."""

    with pytest.raises(core_logic.DraftNotFoundError):
        drafts.discard_draft(ledger, "D404")


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


def test_checkout_turns_the_draft_into_a_sale(held, moment):
    """Checkout creates the sale at the held prices and releases the draft."""

    sold = drafts.checkout_draft(held, "D1", paid_amount=Decimal("180"), timestamp=moment + timedelta(minutes=5))
    sale = sold.sales[0]

    assert sold.drafts == ()
    assert sale.id == "D1"
    assert sale.total == Decimal("180")
    assert sale.sale_channel == SaleChannel.WEBSITE
    assert core_logic.get_product(sold, "P1").stock == 8
    assert core_logic.get_customer(sold, "C1").total_points == 180


def test_checkout_can_use_a_new_sale_id(held):
    """The sale id defaults to the draft id but may be overridden."""

    assert drafts.checkout_draft(held, "D1", sale_id="S77").sales[0].id == "S77"


def test_failed_checkout_keeps_the_draft(held):
    """When stock has run out the draft survives for a later attempt."""

    empty = replace(held, products=tuple(replace(p, stock=1) if p.id == "P1" else p for p in held.products))
    with pytest.raises(core_logic.OutOfStockError):
        drafts.checkout_draft(empty, "D1")
    assert len(empty.drafts) == 1


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def test_prune_keeps_drafts_inside_the_window(held, moment):
    """A draft younger than the expiry window is kept and nothing changes."""

    window = timedelta(minutes=held.draft_expiry_minutes)
    assert drafts.prune_expired_drafts(held, now=moment + window - timedelta(seconds=1)) is held


def test_prune_drops_drafts_at_the_window_edge(held, moment):
    """A draft exactly as old as the expiry window is dropped."""

    window = timedelta(minutes=held.draft_expiry_minutes)
    assert drafts.prune_expired_drafts(held, now=moment + window).drafts == ()


def test_prune_only_drops_old_drafts(held, moment):
    """Fresh drafts survive next to expired ones."""

    later = moment + timedelta(minutes=held.draft_expiry_minutes)
    fresher = drafts.save_draft(
        held,
        sales.SaleProposal(sale_id="D2", lines=(sales.SaleLine("P2", 1, Decimal("20")),), timestamp=later),
    )
    assert [d.id for d in drafts.prune_expired_drafts(fresher, now=later).drafts] == ["D2"]
