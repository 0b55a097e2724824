# Overview: Flask API routes for zone occupancy, workers and car tracking.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_errors, require_actor
from ..services import completion_service, zone_service
from ..services.concurrency import run_in_transaction
from ..time_utils import to_utc_z

zones_bp = Blueprint("zones", __name__, url_prefix="/api/zones")
cars_bp = Blueprint("cars", __name__, url_prefix="/api/cars")


@zones_bp.get("")
@json_errors("list zones")
def list_zones():
    stations = zone_service.list_work_stations()
    return jsonify({"zones": [station.to_dict() for station in stations]}), 200


@zones_bp.get("/<int:zone_id>")
@json_errors("load zone")
def get_zone(zone_id: int):
    return jsonify(zone_service.get_work_station(zone_id).to_dict()), 200


@zones_bp.post("/<int:zone_id>/scan")
@require_actor
@json_errors("scan car into zone")
def scan_car(zone_id: int):
    """
    Scan a car into an empty zone.

    Request body:
    {"vin": str, "type": str (optional), "color": str (optional), "series": str (optional)}

    Returns:
        200: Car now in the zone
        400: Invalid VIN or zone
        409: Zone occupied, or the car is already in a zone
    """
    data = request.get_json(silent=True) or {}
    car = run_in_transaction(lambda: zone_service.scan_car_into_zone(
        data.get("vin"),
        zone_id,
        g.actor,
        car_type=data.get("type"),
        color=data.get("color"),
        series=data.get("series"),
    ))
    return jsonify(car.to_dict()), 200


@zones_bp.post("/<int:zone_id>/complete")
@require_actor
@json_errors("complete car work")
def complete_car(zone_id: int):
    """
    Finish work on the zone's car. The car leaves the zone even when BOM
    consumption fails; such failures are reported in "warnings".
    """
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(lambda: completion_service.complete_car_work(
        data.get("vin"),
        zone_id,
        g.actor,
        notes=data.get("notes"),
    ))
    return jsonify(result.to_dict()), 200


@zones_bp.post("/<int:zone_id>/check-in")
@require_actor
@json_errors("check in worker")
def check_in(zone_id: int):
    data = request.get_json(silent=True) or {}
    station = run_in_transaction(
        lambda: zone_service.check_in_worker(zone_id, g.actor, data.get("display_name"))
    )
    return jsonify(station.to_dict()), 200


@zones_bp.post("/<int:zone_id>/check-out")
@require_actor
@json_errors("check out worker")
def check_out(zone_id: int):
    station = run_in_transaction(lambda: zone_service.check_out_worker(zone_id, g.actor))
    return jsonify(station.to_dict()), 200


@cars_bp.get("/flying")
@json_errors("list flying cars")
def flying_cars():
    rows = zone_service.list_flying_cars()
    for row in rows:
        row["completed_at"] = to_utc_z(row["completed_at"])
    return jsonify({"cars": rows}), 200


@cars_bp.get("/movements")
@json_errors("list car movements")
def car_movements():
    """Movements newest first; filter with ?vin= and/or ?zone_id=, cap with ?limit=."""
    rows = zone_service.get_car_movements(
        vin=request.args.get("vin"),
        zone_id=request.args.get("zone_id"),
        limit=request.args.get("limit", 100),
    )
    return jsonify({"movements": [row.to_dict() for row in rows]}), 200


@cars_bp.get("/<vin>")
@json_errors("load car")
def get_car(vin: str):
    return jsonify(zone_service.get_car(vin).to_dict()), 200


@cars_bp.post("/<vin>/complete-production")
@require_actor
@json_errors("complete car production")
def complete_production(vin: str):
    car = run_in_transaction(lambda: zone_service.complete_car_production(vin, g.actor))
    return jsonify(car.to_dict()), 200


@cars_bp.post("/<vin>/force-remove")
@require_actor
@json_errors("force remove car")
def force_remove(vin: str):
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(
        lambda: zone_service.force_remove_car(vin, g.actor, data.get("reason") or "Manual removal")
    )
    return jsonify(result), 200
