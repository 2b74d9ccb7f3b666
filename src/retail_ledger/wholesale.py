"""Wholesale transaction processor: bulk sales, bulk purchases, partner debt."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from . import log
from .audit import record_audit_entry, short_ref
from .constants import WHOLESALE_DIRECTIONS, LogCategory, WholesaleType
from .core_logic import (
    ValidationError,
    WholesaleTransactionNotFoundError,
    find_index,
    get_partner,
    get_product,
    replace_at,
    require_nonnegative_money,
    require_positive_quantity,
    require_unique_id,
    resolve_timestamp,
)
from .inventory import ensure_available, shift_stock, total_by_product
from .models import Ledger, WholesalePayment, WholesaleTransaction


def _validate_transaction(ledger: Ledger, transaction: WholesaleTransaction) -> None:
    require_unique_id(ledger.wholesale_transactions, transaction.id, label="Wholesale transaction")
    partner = get_partner(ledger, transaction.partner_id)
    expected = WHOLESALE_DIRECTIONS[WholesaleType(transaction.type)]
    if partner.type != expected:
        log.error(
            "Wholesale '%s' rejected: %s partner '%s' cannot take part in a %s",
            transaction.id,
            partner.type.value,
            partner.id,
            transaction.type.value,
        )
        raise ValidationError(f"A {transaction.type.value} requires a {expected.value} partner")
    if not transaction.items:
        raise ValidationError("A wholesale transaction needs at least one line item")
    for item in transaction.items:
        get_product(ledger, item.product_id)
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.unit_price, label="Unit price")
    require_nonnegative_money(transaction.total, label="Total")
    require_nonnegative_money(transaction.paid_amount, label="Paid amount")


def process_wholesale_transaction(ledger: Ledger, transaction: WholesaleTransaction) -> Ledger:
    """Record a bulk transaction with a partner and move stock accordingly.

    Purchases from a supplier add units to stock; sales to a buyer remove
    them, after every line has been checked for sufficient stock. The
    transaction is stored as given, since ``total`` and ``paid_amount`` are
    computed by the caller.

    Args:
        ledger (Ledger): Current snapshot.
        transaction (WholesaleTransaction): Fully priced transaction.

    Returns:
        Ledger: Snapshot with the transaction prepended and one audit entry.

    Raises:
        PartnerNotFoundError: If the partner is unknown.
        ProductNotFoundError: If a line references an unknown product.
        InsufficientStockError: If a sale line exceeds available stock.
        ValidationError: If the partner type does not match the direction or
            a quantity or amount is malformed.
    """
    _validate_transaction(ledger, transaction)
    is_purchase = transaction.type == WholesaleType.PURCHASE
    quantities = total_by_product((item.product_id, item.quantity) for item in transaction.items)
    if not is_purchase:
        ensure_available(ledger, quantities)

    sign = 1 if is_purchase else -1
    updated = replace(
        ledger,
        products=shift_stock(ledger.products, {pid: sign * qty for pid, qty in quantities.items()}),
        wholesale_transactions=(transaction, *ledger.wholesale_transactions),
    )
    return record_audit_entry(
        updated,
        "WHOLESALE_PURCHASE" if is_purchase else "WHOLESALE_SALE",
        LogCategory.WHOLESALE,
        f"Bulk {transaction.type.value} #{short_ref(transaction.id)} finalized for {transaction.total}",
        timestamp=transaction.timestamp,
    )


def record_wholesale_payment(
    ledger: Ledger,
    transaction_id: str,
    amount: Decimal,
    *,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Settle part of a wholesale debt.

    Payments only ever increase ``paid_amount`` and can never push it past
    ``total``. Items and totals are left untouched.

    Raises:
        WholesaleTransactionNotFoundError: If ``transaction_id`` is unknown.
        ValidationError: If ``amount`` is not positive or exceeds the
            outstanding balance.
    """
    index = find_index(ledger.wholesale_transactions, transaction_id)
    if index == -1:
        log.warning("Wholesale transaction lookup failed for id '%s'", transaction_id)
        raise WholesaleTransactionNotFoundError(f"Unknown wholesale transaction id: {transaction_id}")
    transaction = ledger.wholesale_transactions[index]
    if amount <= Decimal("0"):
        log.error("Wholesale payment rejected: amount %s", amount)
        raise ValidationError("Payment amount must be greater than zero")
    if amount > transaction.outstanding:
        log.error(
            "Wholesale payment of %s exceeds outstanding %s on '%s'",
            amount,
            transaction.outstanding,
            transaction_id,
        )
        raise ValidationError(f"Payment exceeds the outstanding balance of {transaction.outstanding}")

    when = resolve_timestamp(timestamp)
    paid = transaction.paid_amount + amount
    payment = WholesalePayment(amount=amount, timestamp=when, remaining_after=transaction.total - paid)
    settled = replace(transaction, paid_amount=paid, payments=(*transaction.payments, payment))
    updated = replace(
        ledger,
        wholesale_transactions=replace_at(ledger.wholesale_transactions, index, settled),
    )
    return record_audit_entry(
        updated,
        "WHOLESALE_PAYMENT",
        LogCategory.CASH,
        f"Received {amount} against #{short_ref(transaction_id)}, {payment.remaining_after} remaining",
        timestamp=when,
    )
