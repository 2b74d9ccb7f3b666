"""Return processor: partial returns against an existing sale."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Tuple

from . import log
from .audit import record_audit_entry, short_ref
from .constants import MONEY_QUANTUM, LogCategory, SaleStatus
from .core_logic import (
    NotFoundError,
    OverReturnError,
    ValidationError,
    adjust_customer_totals,
    find_index,
    floor_points,
    get_sale,
    replace_at,
    require_positive_quantity,
    require_unique_id,
    resolve_timestamp,
)
from .inventory import shift_stock, total_by_product
from .models import Ledger, ReturnItem, Sale, SaleReturn


@dataclass(frozen=True)
class ReturnLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ReturnRequest:
    """User intent for handing units of a sale back to the store."""

    return_id: str
    sale_id: str
    lines: Tuple[ReturnLine, ...]
    timestamp: Optional[datetime] = None


def line_refund(sale: Sale, gross_amount: Decimal) -> Decimal:
    """Refund owed for units charged ``gross_amount`` before the sale discount.

    ``gross_amount`` is the sum of ``price * quantity`` over the sale lines the
    returned units are taken from. The result is weighted by the discount ratio
    and truncated to :data:`MONEY_QUANTUM`, so refunds summed over every unit
    of a sale never exceed what was charged for its products.
    """
    if sale.subtotal == 0:
        raw = gross_amount
    else:
        raw = gross_amount * (sale.subtotal - sale.discount) / sale.subtotal
    return raw.quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


def _validate_request(ledger: Ledger, request: ReturnRequest) -> Sale:
    require_unique_id(ledger.returns, request.return_id, label="Return")
    sale = get_sale(ledger, request.sale_id)
    if sale.status == SaleStatus.CANCELLED:
        log.error("Return '%s' rejected: sale '%s' is cancelled", request.return_id, sale.id)
        raise ValidationError("Cannot process a return for a cancelled order")
    if not request.lines:
        raise ValidationError("A return needs at least one line item")

    sold = total_by_product((item.product_id, item.quantity) for item in sale.items)
    returned = total_by_product((item.product_id, item.returned_quantity) for item in sale.items)
    requested: Dict[str, int] = {}
    for line in request.lines:
        require_positive_quantity(line.quantity)
        if line.product_id not in sold:
            log.warning("Product '%s' is not part of sale '%s'", line.product_id, sale.id)
            raise NotFoundError(f"Product {line.product_id} not found in invoice {short_ref(sale.id)}")
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        remaining = sold[line.product_id] - returned[line.product_id]
        if requested[line.product_id] > remaining:
            log.warning(
                "Over-return on sale '%s' for '%s': requested %s, remaining %s",
                sale.id,
                line.product_id,
                requested[line.product_id],
                remaining,
            )
            raise OverReturnError(
                f"Cannot return {line.quantity} of {line.product_id}. Only {remaining} remaining."
            )
    return sale


def _mark_returned(items, product_id: str, quantity: int) -> Tuple[tuple, Decimal]:
    """Spread returned units over the sale's lines for ``product_id`` in order.

    Returns the updated lines and the gross value of the units taken, each
    unit priced at the line it was taken from.
    """
    updated = list(items)
    gross = Decimal("0")
    for index, item in enumerate(updated):
        if quantity == 0:
            break
        if item.product_id != product_id or item.outstanding_quantity == 0:
            continue
        taken = min(quantity, item.outstanding_quantity)
        updated[index] = replace(item, returned_quantity=item.returned_quantity + taken)
        gross += item.price * taken
        quantity -= taken
    return tuple(updated), gross


def process_return(ledger: Ledger, request: ReturnRequest) -> Ledger:
    """Validate a return request and apply it atomically.

    Each returned unit is restocked and refunded at the price of the sale line
    it is taken from (lines are consumed in order), weighted by the sale's
    discount ratio ``(subtotal - discount) / subtotal``. The sale's
    ``remaining_amount``, ``total_cost``, and ``total_profit`` shrink
    accordingly (each floored at zero), the linked customer loses
    ``floor(total_refund)`` points, and an append-only :class:`SaleReturn` is
    recorded. If any line fails validation nothing is applied.

    Args:
        ledger (Ledger): Current snapshot.
        request (ReturnRequest): Lines to return against ``request.sale_id``.

    Returns:
        Ledger: Snapshot with the return recorded and one audit entry.

    Raises:
        SaleNotFoundError: If the sale does not exist.
        NotFoundError: If a line names a product absent from the sale.
        OverReturnError: If a line exceeds the units still outstanding.
        ValidationError: If the sale is cancelled, the id is taken, or a
            quantity is not positive.
    """
    sale = _validate_request(ledger, request)
    when = resolve_timestamp(request.timestamp)

    items = sale.items
    return_items: List[ReturnItem] = []
    total_refund = Decimal("0")
    returned_cost = Decimal("0")
    restock: Dict[str, int] = {}
    for line in request.lines:
        items, gross = _mark_returned(items, line.product_id, line.quantity)
        refund = line_refund(sale, gross)
        return_items.append(ReturnItem(product_id=line.product_id, quantity=line.quantity, refund_amount=refund))
        total_refund += refund
        restock[line.product_id] = restock.get(line.product_id, 0) + line.quantity
        product_index = find_index(ledger.products, line.product_id)
        if product_index != -1:
            returned_cost += ledger.products[product_index].cost_price * line.quantity

    updated_sale = replace(
        sale,
        items=items,
        remaining_amount=max(Decimal("0"), sale.remaining_amount - total_refund),
        total_cost=max(Decimal("0"), sale.total_cost - returned_cost),
        total_profit=max(Decimal("0"), sale.total_profit - (total_refund - returned_cost)),
    )
    sale_return = SaleReturn(
        id=request.return_id,
        sale_id=sale.id,
        timestamp=when,
        items=tuple(return_items),
        total_refund=total_refund,
    )

    sale_index = find_index(ledger.sales, sale.id)
    updated = replace(
        ledger,
        products=shift_stock(ledger.products, restock),
        sales=replace_at(ledger.sales, sale_index, updated_sale),
        customers=adjust_customer_totals(ledger.customers, sale.customer_id, points=-floor_points(total_refund)),
        returns=(sale_return, *ledger.returns),
    )
    return record_audit_entry(
        updated,
        "RETURN_PROCESSED",
        LogCategory.RETURN,
        f"Refund of {total_refund:.2f} for INV #{short_ref(sale.id)}",
        timestamp=when,
    )
