# backend/prodtrack/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Transaction, WorkStation
from ..models.transactions import STATUS_PENDING
from prodtrack.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Database connectivity plus a few counts useful on the ops screen."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        station_count = db.session.query(WorkStation).count()
        occupied = db.session.query(WorkStation).filter(WorkStation.current_vin.isnot(None)).count()
        pending = db.session.query(Transaction).filter_by(status=STATUS_PENDING).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "work_stations": station_count,
                "occupied_zones": occupied,
                "pending_transfers": pending,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_zone_configuration() -> dict:
    """Degraded when fewer work stations exist than configured zones."""
    expected = int(current_app.config["PRODUCTION_ZONE_COUNT"])
    try:
        present = db.session.query(WorkStation).count()
    except Exception:
        current_app.logger.exception("Zone configuration check failed")
        return {"status": "unhealthy", "error": "Database error"}
    if present < expected:
        return {
            "status": "degraded",
            "warning": f"{expected - present} of {expected} work stations not initialized (run `flask zones init`)",
        }
    return {"status": "healthy", "details": {"zones": expected}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    zones_health = check_zone_configuration()

    all_checks = [database_health, zones_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "zones": zones_health,
        }
    }
    return response, http_status
