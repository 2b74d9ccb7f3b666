"""Sale lifecycle manager: creation, delivery status changes, duplication.

A sale consumes stock and, when linked to a customer, feeds the customer's
loyalty aggregates. Cancelling a sale releases exactly what it still holds
(units already returned are not restocked twice) and reactivating a cancelled
sale consumes it again with the mirror-image customer deltas.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from . import log
from .audit import record_audit_entry, short_ref
from .constants import LogCategory, SaleChannel, SaleStatus, ShiftStatus
from .core_logic import (
    OutOfStockError,
    RestoreOutOfStockError,
    ValidationError,
    adjust_customer_totals,
    find_index,
    floor_points,
    get_customer,
    get_product,
    get_sale,
    replace_at,
    require_nonnegative_money,
    require_positive_quantity,
    require_unique_id,
    resolve_timestamp,
)
from .inventory import ensure_available, shift_stock, total_by_product
from .models import DeliveryDetails, Ledger, Sale, SaleItem


@dataclass(frozen=True)
class SaleLine:
    """Requested product, quantity, and agreed unit price."""

    product_id: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class SaleProposal:
    """User intent for creating a retail sale or delivery order.

    ``paid_amount`` defaults to the computed total when omitted.
    """

    sale_id: str
    lines: Tuple[SaleLine, ...]
    discount: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    paid_amount: Optional[Decimal] = None
    customer_id: Optional[str] = None
    is_delivery: bool = False
    delivery_details: Optional[DeliveryDetails] = None
    driver_id: Optional[str] = None
    sale_channel: SaleChannel = SaleChannel.STORE
    timestamp: Optional[datetime] = None


def _validate_proposal(ledger: Ledger, proposal: SaleProposal) -> None:
    require_unique_id(ledger.sales, proposal.sale_id, label="Sale")
    if not proposal.lines:
        log.error("Sale '%s' rejected: no line items", proposal.sale_id)
        raise ValidationError("A sale needs at least one line item")
    for line in proposal.lines:
        get_product(ledger, line.product_id)
        require_positive_quantity(line.quantity)
        require_nonnegative_money(line.price, label="Unit price")
    require_nonnegative_money(proposal.discount, label="Discount")
    require_nonnegative_money(proposal.delivery_fee, label="Delivery fee")
    if proposal.paid_amount is not None:
        require_nonnegative_money(proposal.paid_amount, label="Paid amount")
    if proposal.customer_id is not None:
        get_customer(ledger, proposal.customer_id)

    subtotal = sum((line.price * line.quantity for line in proposal.lines), Decimal("0"))
    if proposal.discount > subtotal:
        log.error("Sale '%s' rejected: discount %s exceeds subtotal %s", proposal.sale_id, proposal.discount, subtotal)
        raise ValidationError("Discount cannot exceed the subtotal")

    requested = total_by_product((line.product_id, line.quantity) for line in proposal.lines)
    ensure_available(ledger, requested, error=OutOfStockError)


def _active_shift_id(ledger: Ledger) -> Optional[str]:
    for shift in ledger.shifts:
        if shift.status == ShiftStatus.OPEN:
            return shift.id
    return None


def create_sale(ledger: Ledger, proposal: SaleProposal) -> Ledger:
    """Validate a sale proposal and commit it to the ledger.

    Totals are derived as follows::

        subtotal       = sum(price * quantity)
        total          = subtotal - discount + delivery_fee
        remaining      = max(0, total - paid)
        total_cost     = sum(cost_price * quantity)
        total_profit   = (subtotal - discount) - total_cost + delivery_fee
        points_earned  = floor(total)

    Args:
        ledger (Ledger): Current snapshot.
        proposal (SaleProposal): Structured sale intent.

    Returns:
        Ledger: Snapshot with the sale prepended to the history, stock
            decremented, customer aggregates updated, and one audit entry.

    Raises:
        ValidationError: If the id is taken, no lines are given, or any
            quantity or amount is malformed.
        ProductNotFoundError: If a line references an unknown product.
        CustomerNotFoundError: If ``customer_id`` is unknown.
        OutOfStockError: If any product cannot cover its requested units.
    """
    _validate_proposal(ledger, proposal)
    when = resolve_timestamp(proposal.timestamp)

    items = []
    total_cost = Decimal("0")
    for line in proposal.lines:
        product = get_product(ledger, line.product_id)
        items.append(SaleItem(product_id=product.id, name=product.name, price=line.price, quantity=line.quantity))
        total_cost += product.cost_price * line.quantity

    subtotal = sum((item.price * item.quantity for item in items), Decimal("0"))
    product_revenue = subtotal - proposal.discount
    total = product_revenue + proposal.delivery_fee
    paid = proposal.paid_amount if proposal.paid_amount is not None else total
    points = max(0, floor_points(total))

    sale = Sale(
        id=proposal.sale_id,
        timestamp=when,
        items=tuple(items),
        subtotal=subtotal,
        discount=proposal.discount,
        delivery_fee=proposal.delivery_fee,
        total=total,
        paid_amount=paid,
        remaining_amount=max(Decimal("0"), total - paid),
        total_cost=total_cost,
        total_profit=product_revenue - total_cost + proposal.delivery_fee,
        points_earned=points,
        status=SaleStatus.PENDING if proposal.is_delivery else SaleStatus.COMPLETED,
        customer_id=proposal.customer_id,
        driver_id=proposal.driver_id,
        is_delivery=proposal.is_delivery,
        delivery_details=proposal.delivery_details,
        sale_channel=proposal.sale_channel,
        shift_id=_active_shift_id(ledger),
    )

    deductions = total_by_product((item.product_id, -item.quantity) for item in sale.items)
    updated = replace(
        ledger,
        products=shift_stock(ledger.products, deductions),
        customers=adjust_customer_totals(
            ledger.customers,
            sale.customer_id,
            purchases=total,
            invoices=1,
            points=points,
            last_order=when,
        ),
        sales=(sale, *ledger.sales),
    )
    return record_audit_entry(
        updated,
        "SALE_COMPLETED",
        LogCategory.SALE,
        f"INV #{short_ref(sale.id)} for {total}",
        timestamp=when,
    )


def _outstanding_units(sale: Sale) -> dict:
    return total_by_product((item.product_id, item.outstanding_quantity) for item in sale.items)


def update_delivery_status(
    ledger: Ledger,
    sale_id: str,
    status: SaleStatus,
    *,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Move a sale to a new status, reversing or reapplying its effects.

    Cancelling restocks every unit the customer still holds and removes the
    sale's contribution from the customer aggregates (each floored at zero).
    Leaving ``cancelled`` re-validates and re-deducts the same units and adds
    the same contribution back. Any other change only rewrites the status.
    Requesting the status the sale already has returns ``ledger`` unchanged.

    Raises:
        SaleNotFoundError: If ``sale_id`` is unknown.
        RestoreOutOfStockError: If a cancelled sale cannot be reactivated
            because stock has since been consumed.
    """
    status = SaleStatus(status)
    sale = get_sale(ledger, sale_id)
    if sale.status == status:
        log.debug("Sale '%s' already has status '%s'; nothing to do", sale_id, status.value)
        return ledger

    when = resolve_timestamp(timestamp)
    products = ledger.products
    customers = ledger.customers
    outstanding = _outstanding_units(sale)

    if status == SaleStatus.CANCELLED:
        products = shift_stock(products, outstanding)
        customers = adjust_customer_totals(
            customers,
            sale.customer_id,
            purchases=-sale.total,
            invoices=-1,
            points=-sale.points_earned,
        )
    elif sale.status == SaleStatus.CANCELLED:
        # Units for deleted products were never restocked, so they are not re-deducted either.
        ensure_available(
            ledger,
            {pid: qty for pid, qty in outstanding.items() if find_index(products, pid) != -1},
            error=RestoreOutOfStockError,
        )
        products = shift_stock(products, {pid: -qty for pid, qty in outstanding.items()})
        customers = adjust_customer_totals(
            customers,
            sale.customer_id,
            purchases=sale.total,
            invoices=1,
            points=sale.points_earned,
        )

    index = find_index(ledger.sales, sale_id)
    updated = replace(
        ledger,
        products=products,
        customers=customers,
        sales=replace_at(ledger.sales, index, replace(sale, status=status)),
    )
    return record_audit_entry(
        updated,
        "STATUS_UPDATE",
        LogCategory.DELIVERY,
        f"Order #{short_ref(sale_id)} set to {status.value.upper()}",
        timestamp=when,
    )


def duplicate_sale(
    ledger: Ledger,
    source_sale_id: str,
    new_sale_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Re-order a past sale as a brand new, unpaid sale.

    The new proposal copies the source's products, quantities, unit prices,
    discount, delivery settings, and customer. Return history is not carried
    over and ``paid_amount`` is zero.

    Raises:
        SaleNotFoundError: If ``source_sale_id`` is unknown.
        OutOfStockError: If current stock cannot cover the copied lines.
    """
    source = get_sale(ledger, source_sale_id)
    proposal = SaleProposal(
        sale_id=new_sale_id,
        lines=tuple(SaleLine(item.product_id, item.quantity, item.price) for item in source.items),
        discount=source.discount,
        delivery_fee=source.delivery_fee,
        paid_amount=Decimal("0"),
        customer_id=source.customer_id,
        is_delivery=source.is_delivery,
        delivery_details=source.delivery_details,
        driver_id=source.driver_id,
        sale_channel=source.sale_channel,
        timestamp=timestamp,
    )
    log.info("Duplicating sale '%s' as '%s'", source_sale_id, new_sale_id)
    return create_sale(ledger, proposal)
