# Overview: Quantity ledger: per-(SKU, location) stock mutated by signed deltas.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryQuantity, Item
from ..locations import normalize_location
from ..validation import ValidationError, coerce_int, normalize_sku, require_actor
from prodtrack.time_utils import utcnow
from . import change_feed
"""
Quantity Ledger Invariants (authoritative)

- Every change is a signed delta applied as quantity = quantity + delta in a
  single UPDATE statement. Concurrent deltas on one key commute: the final
  quantity is the sum of all deltas regardless of interleaving.
- Rows are created on first touch and never deleted.
- A negative result is allowed (stock corrections in flight, oversend) and
  reported to the caller as a ConsistencyWarning, never rejected.
- Display metadata (item_name, updated_by, updated_at) is last-writer-wins.
"""


@dataclass(frozen=True)
class QuantityChange:
    sku: str
    location: str
    delta: int
    previous_amount: int
    new_amount: int

    @property
    def is_negative(self) -> bool:
        return self.new_amount < 0

    def warning(self) -> str | None:
        if not self.is_negative:
            return None
        return (
            f"Negative inventory for {self.sku} at {self.location}: "
            f"{self.previous_amount} {self.delta:+d} = {self.new_amount}"
        )


def resolve_item_name(sku: str, fallback: str | None = None) -> str:
    """Item master name, then the provided fallback, then the SKU itself."""
    item = db.session.query(Item).filter_by(sku=sku).first()
    if item:
        return item.name
    return fallback or sku


def _increment(sku: str, location: str, delta: int, item_name: str, actor: str, now) -> int:
    stmt = (
        update(InventoryQuantity)
        .where(InventoryQuantity.sku == sku, InventoryQuantity.location == location)
        .values(
            quantity=InventoryQuantity.quantity + delta,
            item_name=item_name,
            updated_by=actor,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def _read_quantity(sku: str, location: str) -> int:
    value = db.session.execute(
        select(InventoryQuantity.quantity).where(
            InventoryQuantity.sku == sku,
            InventoryQuantity.location == location,
        )
    ).scalar()
    return int(value or 0)


def apply_delta(
    sku: str,
    location: str,
    delta,
    actor: str,
    *,
    item_name: str | None = None,
) -> QuantityChange:
    """
    Apply a signed delta to one (sku, location) and return before/after.

    The increment happens in the database, not in Python, so two writers
    reading the same stale value can never overwrite each other. The first
    touch of a key inserts the row inside a SAVEPOINT; if a concurrent writer
    inserted it first, the unique constraint fires and we fall back to the
    increment.
    """
    sku = normalize_sku(sku)
    location = normalize_location(location)
    actor = require_actor(actor)
    delta = coerce_int(delta, "delta")
    name = item_name or resolve_item_name(sku)
    now = utcnow()

    if _increment(sku, location, delta, name, actor, now) == 0:
        try:
            with db.session.begin_nested():
                db.session.add(InventoryQuantity(
                    sku=sku,
                    location=location,
                    item_name=name,
                    quantity=delta,
                    updated_by=actor,
                    updated_at=now,
                ))
        except IntegrityError:
            if _increment(sku, location, delta, name, actor, now) == 0:
                raise

    new_amount = _read_quantity(sku, location)
    change = QuantityChange(
        sku=sku,
        location=location,
        delta=delta,
        previous_amount=new_amount - delta,
        new_amount=new_amount,
    )

    if change.is_negative:
        current_app.logger.warning("ConsistencyWarning: %s (actor=%s)", change.warning(), actor)

    change_feed.publish(
        change_feed.CHANNEL_INVENTORY,
        "updated",
        f"{sku}_{location}",
        {
            "sku": sku,
            "location": location,
            "item_name": name,
            "quantity": new_amount,
            "delta": delta,
            "updated_by": actor,
        },
    )
    return change


def get_quantity(sku: str, location: str) -> int:
    """Current quantity; a key that was never touched reads as 0."""
    return _read_quantity(normalize_sku(sku), normalize_location(location))


def list_quantities(
    *,
    location: str | None = None,
    sku: str | None = None,
    include_zero: bool = True,
) -> list[InventoryQuantity]:
    q = db.session.query(InventoryQuantity)
    if location is not None:
        q = q.filter(InventoryQuantity.location == normalize_location(location))
    if sku is not None:
        q = q.filter(InventoryQuantity.sku == normalize_sku(sku))
    if not include_zero:
        q = q.filter(InventoryQuantity.quantity != 0)
    return q.order_by(InventoryQuantity.sku.asc(), InventoryQuantity.location.asc()).populate_existing().all()


def get_sku_totals(sku: str) -> dict:
    """Quantities of one SKU by location, plus the system-wide total."""
    rows = list_quantities(sku=sku)
    by_location = {row.location: row.quantity for row in rows}
    return {
        "sku": normalize_sku(sku),
        "locations": by_location,
        "total": sum(by_location.values()),
    }


def require_nonzero_delta(delta) -> int:
    value = coerce_int(delta, "delta")
    if value == 0:
        raise ValidationError("delta must not be zero")
    return value


@change_feed.snapshot_provider(change_feed.CHANNEL_INVENTORY)
def _inventory_snapshot() -> list:
    return [row.to_dict() for row in list_quantities()]
