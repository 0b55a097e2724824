from __future__ import annotations

import re
from typing import Any


# VINs never contain I, O or Q (ISO 3779)
VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")

MAX_SKU_LENGTH = 64


class ValidationError(ValueError):
    """400-level input problem, raised before any write happens."""


class NotFoundError(ValidationError):
    """404-level: the referenced transaction, car, BOM or zone does not exist."""


class ConflictError(ValueError):
    """409-level: the request is well-formed but loses against current state."""


class ConsistencyWarning(UserWarning):
    """
    Bookkeeping anomaly that must not block a physical workflow.

    Never raised to callers: services log it and return the message in the
    `warnings` list of their result objects.
    """


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON/form input.

    Rejects bools, floats, decimals and scientific notation so "1e3" or 2.5
    never silently become stock quantities.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be positive")
    return number


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_sku(value: Any, field: str = "sku") -> str:
    return require_text(value, field, max_length=MAX_SKU_LENGTH).upper()


def normalize_vin(value: Any) -> str:
    vin = require_text(value, "vin").upper()
    if not VIN_PATTERN.match(vin):
        raise ValidationError(f"Invalid VIN {vin!r}: expected 17 characters without I, O or Q")
    return vin


def require_actor(value: Any) -> str:
    """The acting user's email; supplied by the caller and not authenticated here."""
    return require_text(value, "actor", max_length=255).lower()
