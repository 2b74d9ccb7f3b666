"""Audit log recorder shared by every mutating ledger operation."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Optional

from . import log
from .constants import AUDIT_LOG_LIMIT, LogCategory
from .models import AuditLogEntry, Ledger


def build_audit_entry(action: str, category: LogCategory, details: str, *, timestamp: Optional[datetime] = None) -> AuditLogEntry:
    """Create a single audit entry with a fresh identifier."""
    return AuditLogEntry(
        id=uuid.uuid4().hex,
        timestamp=timestamp if timestamp is not None else datetime.now(UTC),
        action=action,
        category=LogCategory(category),
        details=details,
    )


def record_audit_entry(
    ledger: Ledger,
    action: str,
    category: LogCategory,
    details: str,
    *,
    timestamp: Optional[datetime] = None,
) -> Ledger:
    """Prepend an audit entry and trim the log to its newest entries.

    Engine operations call this exactly once, after every validation has
    passed, so a rejected operation never leaves a trace in the log.

    Args:
        ledger (Ledger): Snapshot that already carries the operation's effects.
        action (str): Upper-case action code such as ``SALE_COMPLETED``.
        category (LogCategory): Functional area the action belongs to.
        details (str): Human readable summary shown to the operator.
        timestamp (datetime | None): Moment of the action; defaults to now.

    Returns:
        Ledger: Copy of ``ledger`` whose ``audit_log`` starts with the new
            entry and holds at most :data:`AUDIT_LOG_LIMIT` entries.
    """
    entry = build_audit_entry(action, category, details, timestamp=timestamp)
    audit_log = (entry, *ledger.audit_log[: AUDIT_LOG_LIMIT - 1])
    log.info("[%s] %s: %s", entry.category.value, action, details)
    return replace(ledger, audit_log=audit_log)


def short_ref(identifier: str) -> str:
    """Return the leading segment of an identifier for log messages."""
    return identifier.split("-")[0]
