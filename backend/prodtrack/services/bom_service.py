# Overview: BOM definitions, expansion into component lines, and zone/car-type consumption mappings.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import BOM, BOMComponent, Item, ZoneBOMMapping
from ..locations import validate_zone_id
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    normalize_sku,
    optional_text,
    require_positive_int,
    require_text,
)
"""
BOM Invariants (authoritative)

- A BOM code expands to its components, each multiplied by the requested
  number of units. Expansion is pure: it reads the definition and never
  writes.
- Every component references a SKU known to the item master and carries a
  positive per-unit quantity; a BOM without components is rejected.
- total_components is the sum of per-unit component quantities.
- Transactions copy expanded lines; later edits to a BOM never change
  recorded history.
"""


@dataclass(frozen=True)
class ExpandedLine:
    sku: str
    name: str
    quantity: int
    unit: Optional[str]
    component_quantity: int
    bom_code: str

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "component_quantity": self.component_quantity,
            "bom_code": self.bom_code,
        }


@dataclass
class ComponentInput:
    sku: str
    quantity: int
    name: Optional[str] = None
    unit: Optional[str] = None


def expand_bom(bom: BOM, requested_units) -> list[ExpandedLine]:
    """
    Expand `requested_units` of a BOM into one line per component.

    Example: per-unit quantity 2, requested_units 3 -> line quantity 6.
    """
    units = require_positive_int(requested_units, "units")
    if not bom.components:
        raise ValidationError(f"BOM {bom.bom_code} has no components")
    return [
        ExpandedLine(
            sku=component.sku,
            name=component.name,
            quantity=component.quantity * units,
            unit=component.unit,
            component_quantity=component.quantity,
            bom_code=bom.bom_code,
        )
        for component in bom.components
    ]


def find_bom(bom_code) -> BOM | None:
    code = normalize_sku(bom_code, "bom_code")
    return db.session.query(BOM).filter_by(bom_code=code).first()


def get_bom(bom_code) -> BOM:
    bom = find_bom(bom_code)
    if bom is None:
        raise NotFoundError(f"BOM {bom_code!r} not found")
    return bom


def list_boms() -> list[BOM]:
    return db.session.query(BOM).order_by(BOM.bom_code.asc()).all()


def preview_expansion(bom_code, units=1) -> dict:
    bom = get_bom(bom_code)
    lines = expand_bom(bom, units)
    return {
        "bom": bom.to_dict(),
        "units": coerce_int(units, "units"),
        "lines": [line.to_dict() for line in lines],
        "total_lines": len(lines),
    }


def search_boms(term: str, limit: int = 20) -> list[BOM]:
    """Case-insensitive match on code or name, for pickers."""
    text = require_text(term, "term")
    pattern = f"%{text}%"
    return (
        db.session.query(BOM)
        .filter(or_(BOM.bom_code.ilike(pattern), BOM.name.ilike(pattern)))
        .order_by(BOM.bom_code.asc())
        .limit(require_positive_int(limit, "limit"))
        .all()
    )


def get_boms_containing_sku(sku) -> list[BOM]:
    code = normalize_sku(sku)
    return (
        db.session.query(BOM)
        .join(BOMComponent, BOMComponent.bom_id == BOM.id)
        .filter(BOMComponent.sku == code)
        .order_by(BOM.bom_code.asc())
        .all()
    )


# ----------------------------
# Item master
# ----------------------------

def get_item(sku) -> Item | None:
    return db.session.query(Item).filter_by(sku=normalize_sku(sku)).first()


def upsert_item(sku, name, *, unit=None, category=None) -> Item:
    code = normalize_sku(sku)
    item = db.session.query(Item).filter_by(sku=code).first()
    if item is None:
        item = Item(sku=code)
        db.session.add(item)
    item.name = require_text(name, "name", max_length=255)
    item.unit = optional_text(unit)
    item.category = optional_text(category)
    db.session.flush()
    return item


# ----------------------------
# Definitions
# ----------------------------

def _build_components(components: Iterable[ComponentInput]) -> list[BOMComponent]:
    components = list(components)
    if not components:
        raise ValidationError("A BOM needs at least one component")

    errors: list[str] = []
    rows: list[BOMComponent] = []
    seen: set[str] = set()
    for position, component in enumerate(components):
        try:
            sku = normalize_sku(component.sku)
        except ValidationError as exc:
            errors.append(str(exc))
            continue
        if sku in seen:
            errors.append(f"Component {sku!r} listed twice")
            continue
        seen.add(sku)

        item = db.session.query(Item).filter_by(sku=sku).first()
        if item is None:
            errors.append(f"Component SKU {sku!r} not found in item master")
            continue
        try:
            quantity = require_positive_int(component.quantity, f"quantity for {sku}")
        except ValidationError as exc:
            errors.append(str(exc))
            continue

        rows.append(BOMComponent(
            position=position,
            sku=sku,
            name=optional_text(component.name) or item.name,
            quantity=quantity,
            unit=optional_text(component.unit) or item.unit,
        ))

    if errors:
        raise ValidationError("BOM validation failed: " + "; ".join(errors))
    return rows


def create_bom(bom_code, name, components: Iterable[ComponentInput], *, description=None) -> BOM:
    code = normalize_sku(bom_code, "bom_code")
    if find_bom(code) is not None:
        raise ConflictError(f"BOM {code!r} already exists")

    rows = _build_components(components)
    bom = BOM(
        bom_code=code,
        name=require_text(name, "name", max_length=255),
        description=optional_text(description),
        total_components=sum(row.quantity for row in rows),
    )
    bom.components = rows
    db.session.add(bom)
    db.session.flush()

    current_app.logger.info("BOM %s created with %s components", code, len(rows))
    return bom


def update_bom(bom_code, *, name=None, description=None, components: Iterable[ComponentInput] | None = None) -> BOM:
    bom = get_bom(bom_code)
    if name is not None:
        bom.name = require_text(name, "name", max_length=255)
    if description is not None:
        bom.description = optional_text(description)
    if components is not None:
        rows = _build_components(components)
        bom.components.clear()
        # Old rows must be gone before new ones reuse (bom_id, sku)
        db.session.flush()
        bom.components.extend(rows)
        bom.total_components = sum(row.quantity for row in rows)
    db.session.flush()

    current_app.logger.info("BOM %s updated", bom.bom_code)
    return bom


def delete_bom(bom_code) -> None:
    bom = get_bom(bom_code)
    db.session.query(ZoneBOMMapping).filter_by(bom_code=bom.bom_code).delete()
    db.session.delete(bom)
    db.session.flush()
    current_app.logger.info("BOM %s deleted", bom.bom_code)


# ----------------------------
# Zone / car-type mappings
# ----------------------------

def set_zone_mapping(zone_id, car_type, bom_code, *, consume_on_completion: bool = True) -> ZoneBOMMapping:
    zone = validate_zone_id(zone_id)
    kind = require_text(car_type, "car_type", max_length=64)
    bom = get_bom(bom_code)

    mapping = (
        db.session.query(ZoneBOMMapping)
        .filter_by(zone_id=zone, car_type=kind, bom_code=bom.bom_code)
        .first()
    )
    if mapping is None:
        mapping = ZoneBOMMapping(zone_id=zone, car_type=kind, bom_code=bom.bom_code)
        db.session.add(mapping)
    mapping.consume_on_completion = bool(consume_on_completion)
    db.session.flush()
    return mapping


def get_zone_mappings(zone_id, car_type=None, *, consuming_only: bool = False) -> list[ZoneBOMMapping]:
    q = db.session.query(ZoneBOMMapping).filter_by(zone_id=validate_zone_id(zone_id))
    if car_type is not None:
        q = q.filter_by(car_type=require_text(car_type, "car_type"))
    if consuming_only:
        q = q.filter(ZoneBOMMapping.consume_on_completion.is_(True))
    return q.order_by(ZoneBOMMapping.car_type.asc(), ZoneBOMMapping.bom_code.asc()).all()
