from __future__ import annotations

from ..extensions import db
from prodtrack.time_utils import to_utc_z


class Item(db.Model):
    """
    Item master: the catalog of SKUs that may appear in the ledger or a BOM.

    The ledger does not require an Item row (counts may arrive before the
    catalog is maintained); names are resolved from here when present.
    """
    __tablename__ = "items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    category = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Item sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "category": self.category,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryQuantity(db.Model):
    """
    Per-(SKU, location) quantity.

    INVARIANTS:
    - Mutated only through signed deltas (quantity = quantity + delta), never
      by assigning an absolute value, so concurrent writers both land.
    - Never deleted; a drained location is kept at zero.
    - Quantity may go negative during corrections; that state is reported
      as a ConsistencyWarning by the service, not rejected.
    """
    __tablename__ = "inventory_quantities"
    __table_args__ = (
        db.UniqueConstraint("sku", "location", name="uq_inventory_quantities_sku_location"),
        db.Index("ix_inventory_quantities_location", "location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, index=True)
    location = db.Column(db.String(64), nullable=False)
    item_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Last writer wins for display metadata only
    updated_by = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def __repr__(self) -> str:
        return f"<InventoryQuantity sku={self.sku!r} location={self.location!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "location": self.location,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
