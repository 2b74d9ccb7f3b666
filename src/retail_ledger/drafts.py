"""Held carts: draft invoices parked at the register and checked out later.

A draft prices its lines like a sale but does not touch stock, customer
aggregates, or the sales history. Drafts older than the ledger's
``draft_expiry_minutes`` are dropped by :func:`prune_expired_drafts`, which
:func:`retail_ledger.data_manager.load_ledger` runs on every load.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from . import log
from .audit import record_audit_entry, short_ref
from .constants import LogCategory
from .core_logic import (
    ValidationError,
    get_customer,
    get_draft,
    get_product,
    require_nonnegative_money,
    require_positive_quantity,
    require_unique_id,
    resolve_timestamp,
)
from .models import DraftInvoice, Ledger, SaleItem
from .sales import SaleLine, SaleProposal, create_sale


def save_draft(ledger: Ledger, proposal: SaleProposal) -> Ledger:
    """Hold a cart as a draft invoice under ``proposal.sale_id``.

    Lines, discount, delivery settings and customer are validated the way
    :func:`~retail_ledger.sales.create_sale` validates them, except that stock
    is not checked: a held cart reserves nothing. ``paid_amount`` and
    ``driver_id`` are settled at checkout and are not stored.

    Raises:
        ValidationError: If the draft id is taken, no lines are given, a
            quantity or amount is malformed, or the discount exceeds the
            subtotal.
        ProductNotFoundError: If a line references an unknown product.
        CustomerNotFoundError: If ``customer_id`` is unknown.
    """
    require_unique_id(ledger.drafts, proposal.sale_id, label="Draft")
    if not proposal.lines:
        log.error("Draft '%s' rejected: no line items", proposal.sale_id)
        raise ValidationError("A draft needs at least one line item")
    items = []
    for line in proposal.lines:
        product = get_product(ledger, line.product_id)
        require_positive_quantity(line.quantity)
        require_nonnegative_money(line.price, label="Unit price")
        items.append(SaleItem(product_id=product.id, name=product.name, price=line.price, quantity=line.quantity))
    require_nonnegative_money(proposal.discount, label="Discount")
    require_nonnegative_money(proposal.delivery_fee, label="Delivery fee")
    if proposal.customer_id is not None:
        get_customer(ledger, proposal.customer_id)

    subtotal = sum((item.price * item.quantity for item in items), Decimal("0"))
    if proposal.discount > subtotal:
        log.error("Draft '%s' rejected: discount %s exceeds subtotal %s", proposal.sale_id, proposal.discount, subtotal)
        raise ValidationError("Discount cannot exceed the subtotal")

    when = resolve_timestamp(proposal.timestamp)
    draft = DraftInvoice(
        id=proposal.sale_id,
        timestamp=when,
        items=tuple(items),
        subtotal=subtotal,
        discount=proposal.discount,
        total=subtotal - proposal.discount + proposal.delivery_fee,
        sale_channel=proposal.sale_channel,
        customer_id=proposal.customer_id,
        is_delivery=proposal.is_delivery,
        delivery_details=proposal.delivery_details,
        delivery_fee=proposal.delivery_fee,
    )
    return record_audit_entry(
        replace(ledger, drafts=(*ledger.drafts, draft)),
        "DRAFT_SAVED",
        LogCategory.SALE,
        f"Held draft #{short_ref(draft.id)} for {draft.total:.2f}",
        timestamp=when,
    )


def _without_draft(ledger: Ledger, draft_id: str) -> Ledger:
    return replace(ledger, drafts=tuple(d for d in ledger.drafts if d.id != draft_id))


def discard_draft(ledger: Ledger, draft_id: str, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Drop a held draft.

    Raises:
        DraftNotFoundError: If ``draft_id`` is not held.
    """
    draft = get_draft(ledger, draft_id)
    return record_audit_entry(
        _without_draft(ledger, draft_id),
        "DRAFT_DISCARDED",
        LogCategory.SALE,
        f"Discarded draft #{short_ref(draft.id)}",
        timestamp=resolve_timestamp(timestamp),
    )


def checkout_draft(
    ledger: Ledger,
    draft_id: str,
    *,
    sale_id: Optional[str] = None,
    paid_amount: Optional[Decimal] = None,
    driver_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Turn a held draft into a sale and release the draft.

    The sale is created through :func:`~retail_ledger.sales.create_sale` at
    the draft's prices, so stock is checked now rather than when the cart was
    held. ``sale_id`` defaults to the draft id.

    Raises:
        DraftNotFoundError: If ``draft_id`` is not held.
        BusinessRuleViolation: Anything :func:`create_sale` raises. The draft
            is kept in that case.
    """
    draft = get_draft(ledger, draft_id)
    proposal = SaleProposal(
        sale_id=sale_id or draft.id,
        lines=tuple(SaleLine(item.product_id, item.quantity, item.price) for item in draft.items),
        discount=draft.discount,
        delivery_fee=draft.delivery_fee,
        paid_amount=paid_amount,
        customer_id=draft.customer_id,
        is_delivery=draft.is_delivery,
        delivery_details=draft.delivery_details,
        driver_id=driver_id,
        sale_channel=draft.sale_channel,
        timestamp=timestamp,
    )
    return _without_draft(create_sale(ledger, proposal), draft_id)


def prune_expired_drafts(ledger: Ledger, *, now: Optional[datetime] = None) -> Ledger:
    """Drop drafts held for ``draft_expiry_minutes`` or longer.

    Returns the same ``Ledger`` object when nothing expired.
    """
    now = resolve_timestamp(now)
    expiry = timedelta(minutes=ledger.draft_expiry_minutes)
    active = tuple(draft for draft in ledger.drafts if now - draft.timestamp < expiry)
    if len(active) == len(ledger.drafts):
        return ledger
    log.info("Discarded %d expired draft(s)", len(ledger.drafts) - len(active))
    return replace(ledger, drafts=active)
