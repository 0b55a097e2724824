from __future__ import annotations

from ..extensions import db
from prodtrack.time_utils import to_utc_z


class BOM(db.Model):
    """
    Bill of Materials: a named recipe expanding one code into component SKUs.

    Read-only from the transfer core's point of view; transactions reference a
    BOM by code and copy the expanded lines, they never own the definition.
    """
    __tablename__ = "boms"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Sum of per-unit component quantities
    total_components = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    components = db.relationship(
        "BOMComponent",
        backref="bom",
        lazy=True,
        order_by="BOMComponent.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<BOM code={self.bom_code!r} components={len(self.components)}>"

    def to_dict(self) -> dict:
        return {
            "bom_code": self.bom_code,
            "name": self.name,
            "description": self.description,
            "total_components": self.total_components,
            "components": [c.to_dict() for c in self.components],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BOMComponent(db.Model):
    __tablename__ = "bom_components"
    __table_args__ = (
        db.UniqueConstraint("bom_id", "sku", name="uq_bom_components_bom_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("boms.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # per BOM unit
    unit = db.Column(db.String(32), nullable=True)

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "quantity_per_unit": self.quantity,
            "unit": self.unit,
        }


class ZoneBOMMapping(db.Model):
    """Which BOMs a zone consumes when a car of a given type leaves it."""
    __tablename__ = "zone_bom_mappings"
    __table_args__ = (
        db.UniqueConstraint("zone_id", "car_type", "bom_code", name="uq_zone_bom_mappings_zone_type_bom"),
        db.Index("ix_zone_bom_mappings_zone_type", "zone_id", "car_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    zone_id = db.Column(db.Integer, nullable=False)
    car_type = db.Column(db.String(64), nullable=False)
    bom_code = db.Column(db.String(64), nullable=False)
    consume_on_completion = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "car_type": self.car_type,
            "bom_code": self.bom_code,
            "consume_on_completion": self.consume_on_completion,
        }
