"""Inventory adjuster: stock movements and stocktaking.

The stock helpers in this module are the only code that changes
``Product.stock``. Sales, returns, and wholesale transactions route their
movements through :func:`ensure_available` and :func:`shift_stock` so the
non-negative stock invariant is enforced in one place.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Tuple, Type

from . import log
from .audit import record_audit_entry
from .constants import LogCategory
from .core_logic import (
    InsufficientStockError,
    ValidationError,
    find_index,
    generate_record_id,
    get_product,
    replace_at,
    require_unique_id,
    resolve_timestamp,
)
from .models import Expense, Ledger, Product, StockAdjustmentLog


def total_by_product(movements: Iterable[Tuple[str, int]]) -> Dict[str, int]:
    """Sum quantities per product so repeated lines are validated together."""
    totals: Dict[str, int] = {}
    for product_id, quantity in movements:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def ensure_available(
    ledger: Ledger,
    requested: Mapping[str, int],
    *,
    error: Type[InsufficientStockError] = InsufficientStockError,
) -> None:
    """Check that every product can cover the requested deduction.

    Args:
        ledger (Ledger): Snapshot whose stock levels are consulted.
        requested (Mapping[str, int]): Units to deduct keyed by product id.
        error (type[InsufficientStockError]): Error kind raised on shortage so
            callers can report sale, wholesale, and reactivation failures
            distinctly.

    Raises:
        ProductNotFoundError: If a product id is unknown.
        InsufficientStockError: If any product holds fewer units than asked.
    """
    for product_id, quantity in requested.items():
        product = get_product(ledger, product_id)
        if product.stock < quantity:
            log.warning(
                "Insufficient stock for '%s': requested %s, available %s",
                product_id,
                quantity,
                product.stock,
            )
            raise error(f"Insufficient stock for {product.name}. Available: {product.stock}")


def shift_stock(products: Tuple[Product, ...], deltas: Mapping[str, int]) -> Tuple[Product, ...]:
    """Apply signed stock deltas and return the new product collection.

    Products missing from the catalogue are skipped with a warning; this only
    happens when restoring units of a product deleted after it was sold.

    Raises:
        InsufficientStockError: If a delta would leave a product below zero.
    """
    for product_id, delta in deltas.items():
        if delta == 0:
            continue
        index = find_index(products, product_id)
        if index == -1:
            log.warning("Product '%s' missing from ledger; stock movement of %s skipped", product_id, delta)
            continue
        product = products[index]
        new_stock = product.stock + delta
        if new_stock < 0:
            raise InsufficientStockError(f"Insufficient stock for {product.name}. Available: {product.stock}")
        products = replace_at(products, index, replace(product, stock=new_stock))
    return products


def adjust_stock(
    ledger: Ledger,
    product_id: str,
    counted_quantity: int,
    reason: str,
    employee_id: str,
    *,
    adjustment_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Reconcile a product's recorded stock with a physical count.

    The product's stock is set to ``counted_quantity`` and a
    :class:`StockAdjustmentLog` is always appended. When fewer units were found
    than recorded, the missing units are booked as a shrinkage
    :class:`Expense` valued at cost price. Finding more units, or the same
    number, posts no expense.

    Args:
        ledger (Ledger): Current snapshot.
        product_id (str): Product being counted.
        counted_quantity (int): Units physically present.
        reason (str): Operator supplied explanation, such as ``"damaged"``.
        employee_id (str): Employee who performed the count.
        adjustment_id (str | None): Pre-assigned id for the adjustment log;
            generated from the timestamp when omitted.
        timestamp (datetime | None): Moment of the count; defaults to now.

    Returns:
        Ledger: Snapshot with the new stock level, the adjustment log, the
            optional shrinkage expense, and one audit entry.

    Raises:
        ProductNotFoundError: If ``product_id`` is unknown.
        ValidationError: If ``counted_quantity`` is negative or not an integer,
            or ``adjustment_id`` (or its shrinkage expense id) is taken.
    """
    product = get_product(ledger, product_id)
    if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int) or counted_quantity < 0:
        log.error("Stock count for '%s' rejected: %s", product_id, counted_quantity)
        raise ValidationError("Counted quantity must be a whole number of zero or more")

    when = resolve_timestamp(timestamp)
    adjustment_id = adjustment_id or generate_record_id(prefix="ADJ", when=when)
    require_unique_id(ledger.stock_logs, adjustment_id, label="Stock adjustment")
    require_unique_id(ledger.expenses, f"EXP-{adjustment_id}", label="Expense")
    old_stock = product.stock
    diff = old_stock - counted_quantity

    index = find_index(ledger.products, product_id)
    products = replace_at(ledger.products, index, replace(product, stock=counted_quantity))
    stock_log = StockAdjustmentLog(
        id=adjustment_id,
        product_id=product_id,
        old_stock=old_stock,
        new_stock=counted_quantity,
        reason=reason,
        employee_id=employee_id,
        timestamp=when,
    )

    expenses = ledger.expenses
    if diff > 0:
        shrinkage = Expense(
            id=f"EXP-{adjustment_id}",
            description=f"Shrinkage: {product.name} ({reason})",
            amount=product.cost_price * diff,
            timestamp=when,
            employee_id=employee_id,
        )
        expenses = (*expenses, shrinkage)
        log.info("Booked shrinkage of %s units (%s) for '%s'", diff, shrinkage.amount, product_id)

    updated = replace(
        ledger,
        products=products,
        stock_logs=(stock_log, *ledger.stock_logs),
        expenses=expenses,
    )
    return record_audit_entry(
        updated,
        "STOCK_ADJUSTED",
        LogCategory.INVENTORY,
        f"{product.name}: {old_stock} -> {counted_quantity}",
        timestamp=when,
    )
