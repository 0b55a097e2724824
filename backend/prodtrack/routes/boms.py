# Overview: Flask API routes for BOM definitions, expansion previews and zone mappings.

from flask import Blueprint, jsonify, request

from ..decorators import json_errors, require_actor
from ..services import bom_service
from ..services.bom_service import ComponentInput
from ..services.concurrency import run_in_transaction
from ..validation import ValidationError

boms_bp = Blueprint("boms", __name__, url_prefix="/api/boms")


def _parse_components(raw) -> list[ComponentInput]:
    if not isinstance(raw, list):
        raise ValidationError("components must be a list")
    components = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("each component must be an object")
        components.append(ComponentInput(
            sku=entry.get("sku"),
            quantity=entry.get("quantity_per_unit", entry.get("quantity")),
            name=entry.get("name"),
            unit=entry.get("unit"),
        ))
    return components


@boms_bp.get("")
@json_errors("list BOMs")
def list_boms():
    """All BOMs, or those matching ?search= / containing ?sku=."""
    search = request.args.get("search")
    sku = request.args.get("sku")
    if search:
        rows = bom_service.search_boms(search, request.args.get("limit", 20))
    elif sku:
        rows = bom_service.get_boms_containing_sku(sku)
    else:
        rows = bom_service.list_boms()
    return jsonify({"boms": [bom.to_dict() for bom in rows]}), 200


@boms_bp.post("")
@require_actor
@json_errors("create BOM")
def create_bom():
    """
    Request body:
    {
        "bom_code": str,
        "name": str,
        "description": str (optional),
        "components": [{"sku": str, "quantity_per_unit": int, "name": str, "unit": str}]
    }
    """
    data = request.get_json(silent=True) or {}
    components = _parse_components(data.get("components"))
    bom = run_in_transaction(lambda: bom_service.create_bom(
        data.get("bom_code"),
        data.get("name"),
        components,
        description=data.get("description"),
    ))
    return jsonify(bom.to_dict()), 201


@boms_bp.put("/mappings")
@require_actor
@json_errors("save zone BOM mapping")
def put_mapping():
    """
    Request body:
    {"zone_id": int, "car_type": str, "bom_code": str, "consume_on_completion": bool}
    """
    data = request.get_json(silent=True) or {}
    mapping = run_in_transaction(lambda: bom_service.set_zone_mapping(
        data.get("zone_id"),
        data.get("car_type"),
        data.get("bom_code"),
        consume_on_completion=bool(data.get("consume_on_completion", True)),
    ))
    return jsonify(mapping.to_dict()), 200


@boms_bp.get("/mappings")
@json_errors("list zone BOM mappings")
def list_mappings():
    zone_id = request.args.get("zone_id")
    if zone_id is None:
        raise ValidationError("zone_id is required")
    rows = bom_service.get_zone_mappings(zone_id, request.args.get("car_type"))
    return jsonify({"mappings": [row.to_dict() for row in rows]}), 200


@boms_bp.get("/<bom_code>")
@json_errors("load BOM")
def get_bom(bom_code: str):
    return jsonify(bom_service.get_bom(bom_code).to_dict()), 200


@boms_bp.put("/<bom_code>")
@require_actor
@json_errors("update BOM")
def update_bom(bom_code: str):
    data = request.get_json(silent=True) or {}
    components = _parse_components(data["components"]) if "components" in data else None
    bom = run_in_transaction(lambda: bom_service.update_bom(
        bom_code,
        name=data.get("name"),
        description=data.get("description"),
        components=components,
    ))
    return jsonify(bom.to_dict()), 200


@boms_bp.delete("/<bom_code>")
@require_actor
@json_errors("delete BOM")
def delete_bom(bom_code: str):
    run_in_transaction(lambda: bom_service.delete_bom(bom_code))
    return jsonify({"deleted": bom_code.upper()}), 200


@boms_bp.get("/<bom_code>/preview")
@json_errors("preview BOM expansion")
def preview_bom(bom_code: str):
    """Expansion of ?units=N (default 1) without writing anything."""
    return jsonify(bom_service.preview_expansion(bom_code, request.args.get("units", 1))), 200
