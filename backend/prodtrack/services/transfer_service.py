# backend/prodtrack/services/transfer_service.py
"""
Stock transfers between logistics and production zones, plus the other
ledger-moving operations that leave an audit row (adjustments, counts,
waste reports, rectifications).

LIFECYCLE (transfers):
1. PENDING: sender dispatched; source already debited, OTP issued
2. COMPLETED: receiver confirmed with the OTP; destination credited
3. CANCELLED: receiver rejected with a reason; source re-credited

Each operation here runs inside the caller's DB transaction and leaves
committing to it. If any step raises, the caller rolls back and nothing
(ledger delta, transaction row, OTP) survives, so there is never a partial
pending state.

Oversend is allowed: a send may drive the source negative. It is reported
as a warning on the result, not rejected.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from prodtrack.extensions import db
from prodtrack.models import Transaction
from prodtrack.models.transactions import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    TYPE_ADJUSTMENT,
    TYPE_COUNT,
    TYPE_INITIAL_STOCK,
    TYPE_TRANSFER_IN,
    TYPE_TRANSFER_OUT,
)
from prodtrack.locations import (
    LOGISTICS,
    is_zone_location,
    normalize_location,
    waste_location,
    zone_location,
)
from prodtrack.validation import (
    ConflictError,
    ValidationError,
    coerce_int,
    normalize_sku,
    optional_text,
    require_actor,
    require_positive_int,
    require_text,
)
from prodtrack.services import bom_service, otp_service, quantity_service, transaction_service
from prodtrack.services.transaction_service import LineInput


WASTE_TYPES = ("WASTE", "LOST", "DEFECT")


@dataclass
class TransferItem:
    """One requested entry: a SKU, or a BOM code expanded into its components."""
    code: str
    amount: int
    item_name: Optional[str] = None


@dataclass
class TransferResult:
    transaction: Transaction
    otp: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "otp": self.otp,
            "warnings": list(self.warnings),
        }


def _collect(warnings: list[str], change: quantity_service.QuantityChange) -> None:
    message = change.warning()
    if message:
        warnings.append(message)


def _require_transfer_location(value) -> str:
    location = normalize_location(value)
    if location != LOGISTICS and not is_zone_location(location):
        raise ValidationError(f"Cannot transfer from or to {location}")
    return location


def _plan_lines(items: list[TransferItem]) -> tuple[list[LineInput], Optional[str], Optional[int]]:
    """
    Resolve requested items into ledger lines.

    Returns (lines, bom_code, bom_quantity); the BOM fields are set only for
    a single-BOM send.
    """
    lines: list[LineInput] = []
    bom_code = None
    bom_quantity = None
    for item in items:
        amount = require_positive_int(item.amount, "amount")
        bom = bom_service.find_bom(item.code)
        if bom is not None:
            for expanded in bom_service.expand_bom(bom, amount):
                lines.append(LineInput(
                    sku=expanded.sku,
                    item_name=expanded.name,
                    amount=expanded.quantity,
                    bom_code=expanded.bom_code,
                    component_quantity=expanded.component_quantity,
                ))
            if len(items) == 1:
                bom_code, bom_quantity = bom.bom_code, amount
            continue
        sku = normalize_sku(item.code)
        lines.append(LineInput(
            sku=sku,
            item_name=quantity_service.resolve_item_name(sku, item.item_name),
            amount=amount,
        ))
    return lines, bom_code, bom_quantity


def _apply_lines(lines: list[LineInput], location: str, sign: int, actor: str, warnings: list[str]) -> None:
    for line in lines:
        change = quantity_service.apply_delta(
            line.sku, location, sign * line.amount, actor, item_name=line.item_name,
        )
        line.previous_amount = change.previous_amount
        line.new_amount = change.new_amount
        _collect(warnings, change)


def _credit_lines(txn: Transaction, location: str, actor: str, warnings: list[str]) -> None:
    for line in txn.lines:
        change = quantity_service.apply_delta(
            line.sku, location, line.amount, actor, item_name=line.item_name,
        )
        _collect(warnings, change)


def send_transfer(
    code: str | None,
    amount,
    destination_zone,
    actor: str,
    *,
    source_location: str = LOGISTICS,
    items: Iterable[TransferItem] | None = None,
    notes: str | None = None,
    reference: str | None = None,
    skip_otp: bool = False,
) -> TransferResult:
    """
    Dispatch stock from a source location to a production zone.

    Steps, in order: resolve lines (BOM codes expand), debit the source per
    line, append the pending transaction with source snapshots, and only
    then issue the OTP.

    With skip_otp (allowed only when ALLOW_OTP_BYPASS is set) the transfer is
    completed immediately and no OTP exists.
    """
    actor = require_actor(actor)
    source = _require_transfer_location(source_location)
    destination = zone_location(destination_zone)
    if source == destination:
        raise ValidationError("Source and destination must differ")
    if skip_otp and not current_app.config.get("ALLOW_OTP_BYPASS"):
        raise ValidationError("OTP bypass is disabled")

    requested = list(items) if items else [TransferItem(code=require_text(code, "sku"), amount=amount)]
    lines, bom_code, bom_quantity = _plan_lines(requested)

    warnings: list[str] = []
    _apply_lines(lines, source, -1, actor, warnings)

    if bom_code is not None:
        head_sku, head_name, head_amount = bom_code, bom_service.get_bom(bom_code).name, bom_quantity
    elif len(lines) == 1:
        head_sku, head_name, head_amount = lines[0].sku, lines[0].item_name, lines[0].amount
    else:
        head_sku = lines[0].sku
        head_name = f"{len(lines)} items"
        head_amount = sum(line.amount for line in lines)

    single = lines[0] if len(lines) == 1 and bom_code is None else None
    txn = transaction_service.append_transaction(
        sku=head_sku,
        item_name=head_name,
        amount=head_amount,
        location=source,
        from_location=source,
        to_location=destination,
        previous_amount=single.previous_amount if single else None,
        new_amount=single.new_amount if single else None,
        transaction_type=TYPE_TRANSFER_OUT,
        status=STATUS_PENDING,
        performed_by=actor,
        notes=notes,
        reference=reference,
        bom_code=bom_code,
        bom_quantity=bom_quantity,
        lines=lines,
    )

    if skip_otp:
        txn = transaction_service.set_status(txn.id, STATUS_COMPLETED, approved_by=actor)
        _credit_lines(txn, destination, actor, warnings)
        current_app.logger.info("Transfer %s sent and completed without OTP by %s", txn.id, actor)
        return TransferResult(transaction=txn, otp=None, warnings=warnings)

    code_issued = otp_service.issue_otp(txn.id)
    current_app.logger.info(
        "Transfer %s sent %s -> %s (%s lines) by %s", txn.id, source, destination, len(lines), actor,
    )
    return TransferResult(transaction=txn, otp=code_issued, warnings=warnings)


def confirm_transfer(transaction_id, otp, actor: str | None = None) -> TransferResult:
    """
    Receiver side: confirm with the OTP and credit the destination.

    A wrong code raises ConflictError and changes nothing; the transfer stays
    pending and the receiver can try again.
    """
    txn = transaction_service.get_transaction(transaction_id)
    if txn.status != STATUS_PENDING:
        raise ConflictError(f"Transaction {txn.id} already resolved ({txn.status})")
    if not otp_service.verify_otp(txn.id, otp):
        current_app.logger.info("Transfer %s: OTP mismatch", txn.id)
        raise ConflictError("Invalid OTP")

    approver = require_actor(actor) if actor else None
    txn = transaction_service.set_status(txn.id, STATUS_COMPLETED, approved_by=approver)

    warnings: list[str] = []
    _credit_lines(txn, txn.to_location, approver or txn.performed_by, warnings)
    otp_service.revoke_otp(txn.id)

    current_app.logger.info("Transfer %s confirmed by %s", txn.id, approver or "receiver")
    return TransferResult(transaction=txn, warnings=warnings)


def reject_transfer(transaction_id, reason, actor: str) -> TransferResult:
    """Receiver side: refuse the transfer and re-credit the source."""
    reason = require_text(reason, "reason")
    actor = require_actor(actor)

    txn = transaction_service.set_status(
        transaction_id,
        STATUS_CANCELLED,
        approved_by=actor,
        notes=f"Rejected: {reason}",
    )

    warnings: list[str] = []
    _credit_lines(txn, txn.from_location or txn.location, actor, warnings)
    otp_service.revoke_otp(txn.id)

    current_app.logger.info("Transfer %s rejected by %s: %s", txn.id, actor, reason)
    return TransferResult(transaction=txn, warnings=warnings)


def rectify_transfer(transaction_id, actor: str, reason) -> TransferResult:
    """
    Reverse a completed transfer: take the stock back out of the destination
    and return it to the source, recorded as a new completed row pointing at
    the original. Each transfer can be rectified once.
    """
    actor = require_actor(actor)
    reason = require_text(reason, "reason")
    original = transaction_service.get_transaction(transaction_id)

    if original.transaction_type != TYPE_TRANSFER_OUT or original.is_rectification:
        raise ValidationError(f"Transaction {original.id} is not a transfer")
    if original.status != STATUS_COMPLETED:
        raise ConflictError(f"Only completed transfers can be rectified (transaction {original.id} is {original.status})")
    if not original.to_location:
        raise ValidationError(f"Transaction {original.id} has no destination")
    existing = db.session.query(Transaction).filter_by(parent_transaction_id=original.id).first()
    if existing is not None:
        raise ConflictError(f"Transaction {original.id} already rectified by {existing.id}")

    back_from = original.to_location
    back_to = original.from_location or original.location

    lines = [
        LineInput(
            sku=line.sku,
            item_name=line.item_name,
            amount=line.amount,
            bom_code=line.bom_code,
            component_quantity=line.component_quantity,
        )
        for line in original.lines
    ]
    warnings: list[str] = []
    # Line snapshots record the destination being emptied; location matches back_from
    _apply_lines(lines, back_from, -1, actor, warnings)
    for line in lines:
        _collect(warnings, quantity_service.apply_delta(line.sku, back_to, line.amount, actor, item_name=line.item_name))

    single = lines[0] if len(lines) == 1 else None
    try:
        with db.session.begin_nested():
            txn = transaction_service.append_transaction(
                sku=original.sku,
                item_name=original.item_name,
                amount=original.amount,
                location=back_from,
                from_location=back_from,
                to_location=back_to,
                previous_amount=single.previous_amount if single else None,
                new_amount=single.new_amount if single else None,
                transaction_type=TYPE_TRANSFER_IN,
                status=STATUS_COMPLETED,
                performed_by=actor,
                approved_by=actor,
                notes=f"Rectification of #{original.id}: {reason}",
                reference=original.reference,
                bom_code=original.bom_code,
                bom_quantity=original.bom_quantity,
                parent_transaction_id=original.id,
                is_rectification=True,
                lines=lines,
            )
    except IntegrityError:
        raise ConflictError(f"Transaction {original.id} already rectified")

    current_app.logger.info("Transfer %s rectified by %s as %s", original.id, actor, txn.id)
    return TransferResult(transaction=txn, warnings=warnings)


def adjust_stock(sku, location, delta, actor: str, reason, *, notes: str | None = None) -> TransferResult:
    """Manual correction of one (sku, location) by a signed, non-zero delta."""
    actor = require_actor(actor)
    reason = require_text(reason, "reason")
    delta = quantity_service.require_nonzero_delta(delta)
    location = normalize_location(location)

    change = quantity_service.apply_delta(sku, location, delta, actor)
    warnings: list[str] = []
    _collect(warnings, change)

    extra = optional_text(notes)
    txn = transaction_service.append_transaction(
        sku=change.sku,
        item_name=quantity_service.resolve_item_name(change.sku),
        amount=delta,
        location=location,
        previous_amount=change.previous_amount,
        new_amount=change.new_amount,
        transaction_type=TYPE_ADJUSTMENT,
        status=STATUS_COMPLETED,
        performed_by=actor,
        notes=f"{reason} - {extra}" if extra else reason,
    )
    return TransferResult(transaction=txn, warnings=warnings)


def record_count(sku, location, counted_amount, actor: str, *, initial: bool = False, notes: str | None = None) -> TransferResult:
    """
    Record a physical count. The ledger moves by (counted - current), so
    concurrent deltas landing before the count are overridden by it, while
    those landing after it still accumulate.
    """
    actor = require_actor(actor)
    counted = coerce_int(counted_amount, "counted_amount")
    if counted < 0:
        raise ValidationError("counted_amount must not be negative")
    location = normalize_location(location)
    code = normalize_sku(sku)

    delta = counted - quantity_service.get_quantity(code, location)
    change = quantity_service.apply_delta(code, location, delta, actor)

    txn = transaction_service.append_transaction(
        sku=code,
        item_name=quantity_service.resolve_item_name(code),
        amount=counted,
        location=location,
        previous_amount=change.previous_amount,
        new_amount=change.new_amount,
        transaction_type=TYPE_INITIAL_STOCK if initial else TYPE_COUNT,
        status=STATUS_COMPLETED,
        performed_by=actor,
        notes=notes,
    )
    current_app.logger.info("Count %s at %s: %s (delta %+d) by %s", code, location, counted, delta, actor)
    return TransferResult(transaction=txn)


def report_waste(zone_id, sku, quantity, actor: str, waste_type, reason) -> TransferResult:
    """Move waste, lost or defective stock out of a zone into its waste location."""
    actor = require_actor(actor)
    kind = require_text(waste_type, "waste_type").upper()
    if kind not in WASTE_TYPES:
        raise ValidationError(f"waste_type must be one of: {', '.join(WASTE_TYPES)}")
    reason = require_text(reason, "reason")
    amount = require_positive_int(quantity, "quantity")
    source = zone_location(zone_id)
    sink = waste_location(zone_id)
    code = normalize_sku(sku)

    warnings: list[str] = []
    change = quantity_service.apply_delta(code, source, -amount, actor)
    _collect(warnings, change)
    _collect(warnings, quantity_service.apply_delta(code, sink, amount, actor))

    txn = transaction_service.append_transaction(
        sku=code,
        item_name=quantity_service.resolve_item_name(code),
        amount=-amount,
        location=source,
        from_location=source,
        to_location=sink,
        previous_amount=change.previous_amount,
        new_amount=change.new_amount,
        transaction_type=TYPE_ADJUSTMENT,
        status=STATUS_COMPLETED,
        performed_by=actor,
        notes=f"{kind}: {reason}",
        reference=kind,
    )
    current_app.logger.info("%s reported in zone %s: %s x%s by %s", kind, zone_id, code, amount, actor)
    return TransferResult(transaction=txn, warnings=warnings)
