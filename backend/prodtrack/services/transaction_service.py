# Overview: Transaction log: append-only movement records with guarded status transitions.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Transaction, TransactionLine
from ..models.transactions import (
    STATUS_PENDING,
    TERMINAL_STATUSES,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPES,
)
from ..locations import normalize_location
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    normalize_sku,
    optional_text,
    require_actor,
    require_text,
)
from prodtrack.time_utils import utcnow
from .concurrency import conditional_update
from . import change_feed
"""
Transaction Log Invariants (authoritative)

- Ids are assigned by the database and strictly increase with append order.
- Status moves only pending -> completed or pending -> cancelled.
- The transition is a compare-and-set on status='pending'; of two racing
  writers exactly one wins and the other gets ConflictError.
- After append only status, approved_by, notes, concluded_at and updated_at
  change. Everything else is audit record.
"""

DEFAULT_QUERY_LIMIT = 500


@dataclass
class LineInput:
    sku: str
    item_name: str
    amount: int
    previous_amount: Optional[int] = None
    new_amount: Optional[int] = None
    bom_code: Optional[str] = None
    component_quantity: Optional[int] = None


@dataclass
class TransactionFilter:
    sku: Optional[str] = None
    location: Optional[str] = None
    transaction_type: Optional[str] = None
    status: Optional[str] = None
    performed_by: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search_term: Optional[str] = None
    include_rectifications: bool = True
    limit: int = DEFAULT_QUERY_LIMIT


def _require_type(transaction_type: str) -> str:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"Invalid transaction_type {transaction_type!r}. Must be one of: {', '.join(TRANSACTION_TYPES)}"
        )
    return transaction_type


def _require_status(status: str) -> str:
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(
            f"Invalid status {status!r}. Must be one of: {', '.join(TRANSACTION_STATUSES)}"
        )
    return status


def _publish(transaction: Transaction, action: str) -> None:
    change_feed.publish(
        change_feed.CHANNEL_TRANSACTIONS,
        action,
        transaction.id,
        transaction.to_dict(),
    )


def append_transaction(
    *,
    sku: str,
    item_name: str,
    amount: int,
    location: str,
    transaction_type: str,
    status: str,
    performed_by: str,
    from_location: str | None = None,
    to_location: str | None = None,
    previous_amount: int | None = None,
    new_amount: int | None = None,
    approved_by: str | None = None,
    notes: str | None = None,
    reference: str | None = None,
    bom_code: str | None = None,
    bom_quantity: int | None = None,
    parent_transaction_id: int | None = None,
    is_rectification: bool = False,
    lines: Iterable[LineInput] = (),
    timestamp: datetime | None = None,
) -> Transaction:
    """
    Append a transaction (with its embedded lines) and flush to get its id.

    Terminal rows are stamped updated_at = timestamp; the row is written once
    and never touched again except by mark_concluded.
    """
    now = timestamp or utcnow()
    txn = Transaction(
        sku=require_text(sku, "sku", max_length=64),
        item_name=require_text(item_name, "item_name", max_length=255),
        amount=coerce_int(amount, "amount"),
        previous_amount=previous_amount,
        new_amount=new_amount,
        location=normalize_location(location),
        from_location=normalize_location(from_location) if from_location else None,
        to_location=normalize_location(to_location) if to_location else None,
        transaction_type=_require_type(transaction_type),
        status=_require_status(status),
        performed_by=require_actor(performed_by),
        approved_by=require_actor(approved_by) if approved_by else None,
        timestamp=now,
        updated_at=now,
        notes=optional_text(notes),
        reference=optional_text(reference),
        bom_code=bom_code,
        bom_quantity=bom_quantity,
        parent_transaction_id=parent_transaction_id,
        is_rectification=is_rectification,
    )
    for number, line in enumerate(lines, start=1):
        txn.lines.append(TransactionLine(
            line_number=number,
            sku=line.sku,
            item_name=line.item_name,
            amount=line.amount,
            previous_amount=line.previous_amount,
            new_amount=line.new_amount,
            bom_code=line.bom_code,
            component_quantity=line.component_quantity,
        ))

    db.session.add(txn)
    db.session.flush()

    current_app.logger.info(
        "Transaction %s appended: %s %s x%s (%s) by %s",
        txn.id, txn.transaction_type, txn.sku, txn.amount, txn.status, txn.performed_by,
    )
    _publish(txn, "created")
    return txn


def get_transaction(transaction_id) -> Transaction:
    txn_id = coerce_int(transaction_id, "transaction_id")
    txn = db.session.get(Transaction, txn_id, populate_existing=True)
    if txn is None:
        raise NotFoundError(f"Transaction {txn_id} not found")
    return txn


def set_status(
    transaction_id,
    status: str,
    *,
    approved_by: str | None = None,
    notes: str | None = None,
) -> Transaction:
    """
    Move a pending transaction to a terminal status.

    Compare-and-set: the UPDATE only matches while the row is still pending.
    Zero matched rows means either the id does not exist (NotFoundError) or
    somebody else resolved it first (ConflictError).
    """
    txn_id = coerce_int(transaction_id, "transaction_id")
    _require_status(status)
    if status not in TERMINAL_STATUSES:
        raise ValidationError(f"Cannot move a transaction to {status!r}")

    now = utcnow()
    values = {"status": status, "concluded_at": now, "updated_at": now}
    if approved_by:
        values["approved_by"] = require_actor(approved_by)
    if notes is not None:
        values["notes"] = optional_text(notes)

    stmt = (
        update(Transaction)
        .where(Transaction.id == txn_id, Transaction.status == STATUS_PENDING)
        .values(**values)
    )
    if conditional_update(stmt) == 0:
        existing = db.session.get(Transaction, txn_id, populate_existing=True)
        if existing is None:
            raise NotFoundError(f"Transaction {txn_id} not found")
        raise ConflictError(f"Transaction {txn_id} already resolved ({existing.status})")

    txn = db.session.get(Transaction, txn_id)
    db.session.refresh(txn)

    current_app.logger.info("Transaction %s -> %s", txn_id, status)
    _publish(txn, "updated")
    return txn


def query_transactions(criteria: TransactionFilter | None = None) -> list[Transaction]:
    """Transactions matching every given criterion, newest first."""
    criteria = criteria or TransactionFilter()
    q = db.session.query(Transaction)

    if criteria.sku:
        q = q.filter(Transaction.sku == normalize_sku(criteria.sku))
    if criteria.location:
        loc = normalize_location(criteria.location)
        q = q.filter(or_(
            Transaction.location == loc,
            Transaction.from_location == loc,
            Transaction.to_location == loc,
        ))
    if criteria.transaction_type:
        q = q.filter(Transaction.transaction_type == _require_type(criteria.transaction_type))
    if criteria.status:
        q = q.filter(Transaction.status == _require_status(criteria.status))
    if criteria.performed_by:
        q = q.filter(Transaction.performed_by == require_actor(criteria.performed_by))
    if criteria.date_from:
        q = q.filter(Transaction.timestamp >= criteria.date_from)
    if criteria.date_to:
        q = q.filter(Transaction.timestamp <= criteria.date_to)
    if criteria.search_term:
        pattern = f"%{criteria.search_term.strip()}%"
        q = q.filter(or_(
            Transaction.sku.ilike(pattern),
            Transaction.item_name.ilike(pattern),
            Transaction.notes.ilike(pattern),
            Transaction.reference.ilike(pattern),
        ))
    if not criteria.include_rectifications:
        q = q.filter(Transaction.is_rectification.is_(False))

    limit = coerce_int(criteria.limit, "limit")
    if limit <= 0:
        raise ValidationError("limit must be positive")

    return (
        q.order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .limit(limit)
        .populate_existing()
        .all()
    )


def list_pending_for_location(location: str) -> list[Transaction]:
    """Pending transfers waiting for the receiver at `location`."""
    loc = normalize_location(location)
    return (
        db.session.query(Transaction)
        .filter(Transaction.status == STATUS_PENDING, Transaction.to_location == loc)
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .populate_existing()
        .all()
    )


def mark_concluded(transaction_ids: Iterable, at: datetime | None = None) -> int:
    """
    Period conclusion: stamp concluded_at on terminal rows.

    Pending rows are skipped, they are concluded when resolved. Returns the
    number of rows stamped.
    """
    ids = [coerce_int(value, "transaction_id") for value in transaction_ids]
    if not ids:
        return 0
    when = at or utcnow()
    stmt = (
        update(Transaction)
        .where(Transaction.id.in_(ids), Transaction.status.in_(TERMINAL_STATUSES))
        .values(concluded_at=when, updated_at=when)
    )
    count = conditional_update(stmt)
    current_app.logger.info("Concluded %s of %s transactions", count, len(ids))
    return count


@change_feed.snapshot_provider(change_feed.CHANNEL_TRANSACTIONS)
def _transactions_snapshot() -> list:
    return [txn.to_dict() for txn in query_transactions()]
