"""
Location keys used by the quantity ledger and the transaction log.

- "logistics": the central logistics pool
- "production_zone_N": stock held at production zone N
- "waste_lost_zone_N": pseudo-location collecting waste/lost/defect items from zone N
"""
from __future__ import annotations

import re

from flask import current_app

from .validation import ValidationError, coerce_int

LOGISTICS = "logistics"
ZONE_PREFIX = "production_zone_"
WASTE_PREFIX = "waste_lost_zone_"

_LOCATION_PATTERN = re.compile(r"^(production_zone|waste_lost_zone)_(\d+)$")


def zone_count() -> int:
    return int(current_app.config["PRODUCTION_ZONE_COUNT"])


def validate_zone_id(value) -> int:
    zone_id = coerce_int(value, "zone_id")
    if zone_id < 1 or zone_id > zone_count():
        raise ValidationError(f"Unknown zone {zone_id}: zones are numbered 1..{zone_count()}")
    return zone_id


def zone_location(zone_id) -> str:
    return f"{ZONE_PREFIX}{validate_zone_id(zone_id)}"


def waste_location(zone_id) -> str:
    return f"{WASTE_PREFIX}{validate_zone_id(zone_id)}"


def normalize_location(value) -> str:
    """Return the canonical location key or raise ValidationError."""
    if value is None:
        raise ValidationError("location is required")
    key = str(value).strip().lower()
    if key == LOGISTICS:
        return key
    match = _LOCATION_PATTERN.match(key)
    if not match:
        raise ValidationError(f"Unknown location {value!r}")
    return f"{match.group(1)}_{validate_zone_id(int(match.group(2)))}"


def is_zone_location(location: str) -> bool:
    return location.startswith(ZONE_PREFIX)
