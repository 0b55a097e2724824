# Overview: Work completion: release the car from its zone, then consume mapped BOM components from zone stock.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Transaction, ZoneEntry
from ..models.transactions import STATUS_COMPLETED, TYPE_ADJUSTMENT
from ..locations import validate_zone_id, zone_location
from ..validation import normalize_vin, require_actor, require_text
from . import bom_service, change_feed, quantity_service, transaction_service, zone_service
from .transaction_service import LineInput


@dataclass
class ConsumptionResult:
    transactions: list[Transaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transactions": [txn.to_dict() for txn in self.transactions],
            "warnings": list(self.warnings),
        }


@dataclass
class CompletionResult:
    entry: ZoneEntry
    consumption: Optional[ConsumptionResult] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "zone_entry": self.entry.to_dict(),
            "consumption": self.consumption.to_dict() if self.consumption else None,
            "warnings": list(self.warnings),
        }


def consumption_reference(vin: str, zone_id: int) -> str:
    return f"CAR_{vin}_ZONE_{zone_id}"


def consume_for_completion(vin, zone_id, car_type, actor: str) -> ConsumptionResult:
    """
    Decrement the zone's stock by one unit of every BOM mapped to
    (zone, car_type) with consume_on_completion set.

    One completed adjustment row per BOM records the consumed lines. A
    mapping whose BOM no longer exists is skipped with a warning.
    """
    code = normalize_vin(vin)
    zone = validate_zone_id(zone_id)
    kind = require_text(car_type, "car_type")
    actor = require_actor(actor)
    location = zone_location(zone)

    result = ConsumptionResult()
    mappings = bom_service.get_zone_mappings(zone, kind, consuming_only=True)
    if not mappings:
        current_app.logger.info("No BOM mappings for zone %s / %s", zone, kind)
        return result

    for mapping in mappings:
        bom = bom_service.find_bom(mapping.bom_code)
        if bom is None:
            message = f"BOM {mapping.bom_code} mapped to zone {zone} / {kind} not found"
            current_app.logger.warning("ConsistencyWarning: %s", message)
            result.warnings.append(message)
            continue

        lines: list[LineInput] = []
        for expanded in bom_service.expand_bom(bom, 1):
            change = quantity_service.apply_delta(
                expanded.sku, location, -expanded.quantity, actor, item_name=expanded.name,
            )
            if change.warning():
                result.warnings.append(change.warning())
            lines.append(LineInput(
                sku=expanded.sku,
                item_name=expanded.name,
                amount=expanded.quantity,
                previous_amount=change.previous_amount,
                new_amount=change.new_amount,
                bom_code=expanded.bom_code,
                component_quantity=expanded.component_quantity,
            ))

        txn = transaction_service.append_transaction(
            sku=bom.bom_code,
            item_name=bom.name,
            amount=-1,
            location=location,
            transaction_type=TYPE_ADJUSTMENT,
            status=STATUS_COMPLETED,
            performed_by=actor,
            notes=f"Consumed on completion of car {code} in zone {zone}",
            reference=consumption_reference(code, zone),
            bom_code=bom.bom_code,
            bom_quantity=1,
            lines=lines,
        )
        result.transactions.append(txn)

    current_app.logger.info(
        "Car %s zone %s: consumed %s BOM(s) from %s", code, zone, len(result.transactions), location,
    )
    return result


def complete_car_work(vin, zone_id, actor: str, *, notes: str | None = None) -> CompletionResult:
    """
    Release the car from the zone, then consume its BOM components.

    Consumption runs in a SAVEPOINT. If it fails, only the consumption is
    rolled back and the failure comes back as a warning: the car leaves the
    zone regardless.
    """
    entry = zone_service.complete_work(zone_id, vin, actor, notes=notes)
    car = zone_service.get_car(vin)
    outcome = CompletionResult(entry=entry)

    position = change_feed.mark()
    try:
        with db.session.begin_nested():
            outcome.consumption = consume_for_completion(car.vin, entry.zone_id, car.type, actor)
    except Exception as exc:
        change_feed.discard_since(position)
        current_app.logger.exception(
            "BOM consumption failed for car %s in zone %s", car.vin, entry.zone_id,
        )
        outcome.warnings.append(f"BOM consumption failed: {exc}")
    else:
        outcome.warnings.extend(outcome.consumption.warnings)

    return outcome
