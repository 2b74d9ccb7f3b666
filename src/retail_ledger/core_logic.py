"""Shared business rules for the retail ledger engine.

This module owns the domain error taxonomy, the lookup and validation helpers
used by every engine component, the single helper allowed to touch customer
loyalty aggregates, and the reference-data operations (products, customers,
partners, categories). The transactional components live in sibling modules:
:mod:`.sales`, :mod:`.returns`, :mod:`.wholesale`, :mod:`.inventory`, and
:mod:`.staff`.

Every public operation follows the same contract: it receives a
:class:`~retail_ledger.models.Ledger`, validates the request completely, and
either raises a :class:`BusinessRuleViolation` or returns a brand new
``Ledger``. The input snapshot is never modified.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple, Type, TypeVar

from . import log
from .audit import record_audit_entry
from .constants import LogCategory, SaleStatus
from .models import Customer, DraftInvoice, Employee, Ledger, Product, Sale, WholesalePartner


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when a request carries malformed values."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced record is absent from the ledger."""


class SaleNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class CustomerNotFoundError(NotFoundError):
    pass


class EmployeeNotFoundError(NotFoundError):
    pass


class PartnerNotFoundError(NotFoundError):
    pass


class WholesaleTransactionNotFoundError(NotFoundError):
    pass


class DraftNotFoundError(NotFoundError):
    pass


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a deduction would drive a product's stock below zero."""


class OutOfStockError(InsufficientStockError):
    """Raised when a retail sale asks for more units than are on hand."""


class RestoreOutOfStockError(InsufficientStockError):
    """Raised when a cancelled order cannot be reactivated for lack of stock."""


class InvalidQuantityError(BusinessRuleViolation):
    """Raised when a quantity exceeds what remains available."""


class OverReturnError(InvalidQuantityError):
    """Raised when a return exceeds the units still held by the customer."""


class InvalidStateTransitionError(BusinessRuleViolation):
    """Raised when an attendance action is illegal for the current state."""


class AlreadyCheckedInError(InvalidStateTransitionError):
    pass


class DayAlreadyClosedError(InvalidStateTransitionError):
    pass


RecordT = TypeVar("RecordT")


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp, usually sourced
            from a command object.

    Returns:
        datetime: ``candidate`` as-is when provided, otherwise the current UTC
            datetime.
    """

    return candidate if candidate is not None else datetime.now(UTC)


def find_index(records: Sequence[RecordT], record_id: str) -> int:
    """Return the position of the record whose ``id`` matches, or ``-1``."""
    for index, record in enumerate(records):
        if getattr(record, "id") == record_id:
            return index
    return -1


def replace_at(records: Tuple[RecordT, ...], index: int, record: RecordT) -> Tuple[RecordT, ...]:
    """Return a copy of ``records`` with the element at ``index`` swapped."""
    return (*records[:index], record, *records[index + 1 :])


def _lookup(records: Sequence[RecordT], record_id: str, error: Type[NotFoundError], label: str) -> RecordT:
    index = find_index(records, record_id)
    if index == -1:
        log.warning("%s lookup failed for id '%s'", label, record_id)
        raise error(f"Unknown {label.lower()} id: {record_id}")
    return records[index]


def get_product(ledger: Ledger, product_id: str) -> Product:
    """Resolve a product by identifier.

    Raises:
        ProductNotFoundError: If ``product_id`` is absent from the ledger.
    """
    return _lookup(ledger.products, product_id, ProductNotFoundError, "Product")


def get_sale(ledger: Ledger, sale_id: str) -> Sale:
    """Resolve a sale by identifier.

    Raises:
        SaleNotFoundError: If ``sale_id`` is absent from the sales history.
    """
    return _lookup(ledger.sales, sale_id, SaleNotFoundError, "Sale")


def get_customer(ledger: Ledger, customer_id: str) -> Customer:
    return _lookup(ledger.customers, customer_id, CustomerNotFoundError, "Customer")


def get_partner(ledger: Ledger, partner_id: str) -> WholesalePartner:
    return _lookup(ledger.partners, partner_id, PartnerNotFoundError, "Partner")


def get_employee(ledger: Ledger, employee_id: str) -> Employee:
    """Resolve an employee by identifier.

    Raises:
        EmployeeNotFoundError: If ``employee_id`` is not on the roster.
    """
    return _lookup(ledger.employees, employee_id, EmployeeNotFoundError, "Employee")


def get_draft(ledger: Ledger, draft_id: str) -> DraftInvoice:
    return _lookup(ledger.drafts, draft_id, DraftNotFoundError, "Draft")


def require_positive_quantity(quantity: int) -> None:
    """Validate that a unit quantity is a strictly positive integer.

    Raises:
        ValidationError: If ``quantity`` is zero, negative, or not an integer.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_unique_id(records: Sequence[RecordT], record_id: str, *, label: str) -> None:
    if find_index(records, record_id) != -1:
        log.error("Duplicate %s id '%s'", label.lower(), record_id)
        raise ValidationError(f"{label} id already exists: {record_id}")


def floor_points(amount: Decimal) -> int:
    """Convert a monetary amount into whole loyalty points."""
    return int(math.floor(amount))


def adjust_customer_totals(
    customers: Tuple[Customer, ...],
    customer_id: Optional[str],
    *,
    purchases: Decimal = Decimal("0"),
    invoices: int = 0,
    points: int = 0,
    last_order: Optional[datetime] = None,
) -> Tuple[Customer, ...]:
    """Apply signed deltas to a customer's running loyalty aggregates.

    This is the only place where ``total_purchases``, ``invoice_count`` and
    ``total_points`` change. Each aggregate is floored at zero after the delta
    is applied. Customers that have since been removed from the ledger are
    skipped with a warning so historical sales remain operable.

    Args:
        customers (tuple[Customer, ...]): Current customer collection.
        customer_id (str | None): Customer linked to the sale; ``None`` means
            the sale was anonymous and nothing changes.
        purchases (Decimal): Signed change to ``total_purchases``.
        invoices (int): Signed change to ``invoice_count``.
        points (int): Signed change to ``total_points``.
        last_order (datetime | None): When given, replaces
            ``last_order_timestamp``.

    Returns:
        tuple[Customer, ...]: Collection with the updated customer in place.
    """
    if customer_id is None:
        return customers
    index = find_index(customers, customer_id)
    if index == -1:
        log.warning("Customer '%s' no longer exists; aggregates left untouched", customer_id)
        return customers

    customer = customers[index]
    updated = replace(
        customer,
        total_purchases=max(Decimal("0"), customer.total_purchases + purchases),
        invoice_count=max(0, customer.invoice_count + invoices),
        total_points=max(0, customer.total_points + points),
        last_order_timestamp=last_order if last_order is not None else customer.last_order_timestamp,
    )
    return replace_at(customers, index, updated)


def find_customer_drift(ledger: Ledger) -> Dict[str, Dict[str, Tuple[object, object]]]:
    """Recompute customer aggregates from history and report mismatches.

    Expected values count every sale that is not cancelled: its ``total`` and
    one invoice, and its ``points_earned`` minus the whole points of every
    refund issued against it. Aggregates clamped at zero by earlier operations
    can legitimately differ, so this is a consistency check rather than an
    invariant enforced at runtime.

    Returns:
        dict[str, dict[str, tuple]]: ``{customer_id: {field: (expected,
            actual)}}`` for every field that disagrees. An empty mapping means
            the ledger is consistent.
    """
    refunded_points: Dict[str, int] = {}
    for sale_return in ledger.returns:
        refunded_points[sale_return.sale_id] = (
            refunded_points.get(sale_return.sale_id, 0) + floor_points(sale_return.total_refund)
        )

    expected: Dict[str, Dict[str, object]] = {
        customer.id: {"total_purchases": Decimal("0"), "invoice_count": 0, "total_points": 0}
        for customer in ledger.customers
    }
    for sale in ledger.sales:
        if sale.customer_id not in expected or sale.status == SaleStatus.CANCELLED:
            continue
        bucket = expected[sale.customer_id]
        bucket["total_purchases"] += sale.total
        bucket["invoice_count"] += 1
        bucket["total_points"] += sale.points_earned - refunded_points.get(sale.id, 0)

    drift: Dict[str, Dict[str, Tuple[object, object]]] = {}
    for customer in ledger.customers:
        bucket = expected[customer.id]
        bucket["total_points"] = max(0, bucket["total_points"])
        mismatches = {
            name: (value, getattr(customer, name))
            for name, value in bucket.items()
            if value != getattr(customer, name)
        }
        if mismatches:
            drift[customer.id] = mismatches
    if drift:
        log.warning("Customer aggregate drift detected for %d customers", len(drift))
    return drift


def add_product(ledger: Ledger, product: Product, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Register a new product in the catalogue.

    Raises:
        ValidationError: If the id is taken, stock is negative, or a price is
            negative.
    """
    require_unique_id(ledger.products, product.id, label="Product")
    if product.stock < 0:
        log.error("Product '%s' registered with negative stock %s", product.id, product.stock)
        raise ValidationError("Opening stock must be zero or positive")
    require_nonnegative_money(product.price, label="Price")
    require_nonnegative_money(product.cost_price, label="Cost price")

    categories = ledger.categories
    if product.category and product.category not in categories:
        categories = (*categories, product.category)
    updated = replace(ledger, products=(*ledger.products, product), categories=categories)
    return record_audit_entry(
        updated,
        "PRODUCT_ADDED",
        LogCategory.INVENTORY,
        f"Registered {product.name} with {product.stock} units",
        timestamp=resolve_timestamp(timestamp),
    )


def add_customer(ledger: Ledger, customer: Customer, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Register a loyalty customer."""
    require_unique_id(ledger.customers, customer.id, label="Customer")
    updated = replace(ledger, customers=(*ledger.customers, customer))
    return record_audit_entry(
        updated,
        "CUSTOMER_ADDED",
        LogCategory.SALE,
        f"Registered customer {customer.name}",
        timestamp=resolve_timestamp(timestamp),
    )


def add_partner(ledger: Ledger, partner: WholesalePartner, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Register a wholesale buyer or supplier."""
    require_unique_id(ledger.partners, partner.id, label="Partner")
    updated = replace(ledger, partners=(*ledger.partners, partner))
    return record_audit_entry(
        updated,
        "PARTNER_ADDED",
        LogCategory.WHOLESALE,
        f"Registered {partner.type.value} {partner.name}",
        timestamp=resolve_timestamp(timestamp),
    )


def add_category(ledger: Ledger, name: str, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Add a product category; existing names are a silent no-op."""
    if name in ledger.categories:
        log.debug("Category '%s' already exists", name)
        return ledger
    updated = replace(ledger, categories=(*ledger.categories, name))
    return record_audit_entry(
        updated,
        "CATEGORY_ADDED",
        LogCategory.INVENTORY,
        f"New category: {name}",
        timestamp=resolve_timestamp(timestamp),
    )


def remove_category(ledger: Ledger, name: str, *, timestamp: Optional[datetime] = None) -> Ledger:
    """Remove a product category; unknown names are a silent no-op."""
    if name not in ledger.categories:
        log.debug("Category '%s' does not exist", name)
        return ledger
    updated = replace(ledger, categories=tuple(c for c in ledger.categories if c != name))
    return record_audit_entry(
        updated,
        "CATEGORY_REMOVED",
        LogCategory.INVENTORY,
        f"Category deleted: {name}",
        timestamp=resolve_timestamp(timestamp),
    )


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier from a UTC timestamp.

    Used when a caller does not pre-assign an id. The format
    ``{prefix}{YYYYMMDDHHMMSSffffff}`` preserves chronological ordering.
    Two records stamped with the same instant get the same id, so callers
    still pass the result through :func:`require_unique_id`.
    """
    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"
