# Overview: Flask API routes for the quantity ledger: reads, adjustments, counts, waste reports, item master.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_errors, require_actor
from ..services import bom_service, quantity_service, transfer_service
from ..services.concurrency import run_in_transaction
from ..validation import NotFoundError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@json_errors("list inventory")
def list_inventory():
    """
    Ledger rows, optionally filtered.

    Query params:
    - location: location key (optional)
    - sku: str (optional)
    - include_zero: bool (default true)
    """
    include_zero = request.args.get("include_zero", "true").strip().lower() not in {"0", "false", "no"}
    rows = quantity_service.list_quantities(
        location=request.args.get("location"),
        sku=request.args.get("sku"),
        include_zero=include_zero,
    )
    return jsonify({"items": [row.to_dict() for row in rows]}), 200


@inventory_bp.get("/<sku>")
@json_errors("load inventory")
def get_inventory(sku: str):
    return jsonify(quantity_service.get_sku_totals(sku)), 200


@inventory_bp.post("/adjust")
@require_actor
@json_errors("adjust stock")
def adjust_stock():
    """
    Request body:
    {
        "sku": str,
        "location": str,
        "delta": int (non-zero, signed),
        "reason": str,
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(lambda: transfer_service.adjust_stock(
        data.get("sku"),
        data.get("location"),
        data.get("delta"),
        g.actor,
        data.get("reason"),
        notes=data.get("notes"),
    ))
    return jsonify(result.to_dict()), 201


@inventory_bp.post("/count")
@require_actor
@json_errors("record count")
def record_count():
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(lambda: transfer_service.record_count(
        data.get("sku"),
        data.get("location"),
        data.get("counted_amount"),
        g.actor,
        initial=bool(data.get("initial", False)),
        notes=data.get("notes"),
    ))
    return jsonify(result.to_dict()), 201


@inventory_bp.post("/waste")
@require_actor
@json_errors("report waste")
def report_waste():
    """
    Request body:
    {
        "zone_id": int,
        "sku": str,
        "quantity": int,
        "waste_type": "WASTE" | "LOST" | "DEFECT",
        "reason": str
    }
    """
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(lambda: transfer_service.report_waste(
        data.get("zone_id"),
        data.get("sku"),
        data.get("quantity"),
        g.actor,
        data.get("waste_type"),
        data.get("reason"),
    ))
    return jsonify(result.to_dict()), 201


@inventory_bp.get("/items/<sku>")
@json_errors("load item")
def get_item(sku: str):
    item = bom_service.get_item(sku)
    if item is None:
        raise NotFoundError(f"Item {sku!r} not found")
    return jsonify(item.to_dict()), 200


@inventory_bp.put("/items/<sku>")
@require_actor
@json_errors("save item")
def put_item(sku: str):
    """Create or update an item master entry: {"name": str, "unit": str, "category": str}."""
    data = request.get_json(silent=True) or {}
    item = run_in_transaction(lambda: bom_service.upsert_item(
        sku,
        data.get("name"),
        unit=data.get("unit"),
        category=data.get("category"),
    ))
    return jsonify(item.to_dict()), 200
