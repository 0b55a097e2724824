# Overview: Zone occupancy: which car is in which production zone, who works there, and car movement history.

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Car, CarMovement, WorkStation, ZoneEntry
from ..models.production import (
    CAR_STATUS_COMPLETED,
    CAR_STATUS_IN_PRODUCTION,
    MOVEMENT_COMPLETE,
    MOVEMENT_FORCE_REMOVE,
    MOVEMENT_SCAN_IN,
)
from ..locations import validate_zone_id, zone_count
from ..validation import (
    ConflictError,
    NotFoundError,
    coerce_int,
    normalize_vin,
    optional_text,
    require_actor,
    require_text,
)
from prodtrack.time_utils import utcnow, whole_minutes_between
from .concurrency import conditional_update
from . import change_feed
"""
Zone Occupancy Invariants (authoritative)

- A zone holds zero or one car. Attaching is a compare-and-set on
  current_vin IS NULL, so of two cars racing into one empty zone exactly one
  lands.
- A VIN is current in at most one zone. The unique index on
  work_stations.current_vin rejects the second of two racing scans of the
  same VIN into different zones.
- A car has at most one open ZoneEntry and its zone equals car.current_zone.
- After completion a car has no zone but is still in production: it is
  "flying" until it is scanned into the next zone.
- time_spent is whole minutes, never negative.
"""

SYSTEM_ACTOR = "system"


# ----------------------------
# Stations
# ----------------------------

def init_work_stations(count: int | None = None) -> int:
    """Create missing station rows for zones 1..count. Returns how many were created."""
    total = coerce_int(count, "count") if count is not None else zone_count()
    existing = {zone_id for (zone_id,) in db.session.query(WorkStation.zone_id).all()}
    created = 0
    for zone_id in range(1, total + 1):
        if zone_id in existing:
            continue
        db.session.add(WorkStation(
            zone_id=zone_id,
            cars_processed_today=0,
            average_processing_time=0.0,
            last_updated=utcnow(),
        ))
        created += 1
    db.session.flush()
    if created:
        current_app.logger.info("Initialized %s work stations", created)
    return created


def _ensure_station(zone_id: int) -> WorkStation:
    station = db.session.get(WorkStation, zone_id, populate_existing=True)
    if station is not None:
        return station
    try:
        with db.session.begin_nested():
            station = WorkStation(
                zone_id=zone_id,
                cars_processed_today=0,
                average_processing_time=0.0,
                last_updated=utcnow(),
            )
            db.session.add(station)
    except IntegrityError:
        # Created concurrently
        station = db.session.get(WorkStation, zone_id)
    return station


def get_work_station(zone_id) -> WorkStation:
    zone = validate_zone_id(zone_id)
    station = db.session.get(WorkStation, zone, populate_existing=True)
    if station is None:
        raise NotFoundError(f"Work station for zone {zone} not initialized")
    return station


def list_work_stations() -> list[WorkStation]:
    return db.session.query(WorkStation).order_by(WorkStation.zone_id.asc()).populate_existing().all()


def get_current_car(zone_id) -> dict | None:
    zone = validate_zone_id(zone_id)
    station = db.session.get(WorkStation, zone, populate_existing=True)
    if station is None:
        return None
    return station.current_car_dict()


def _reload_station(zone_id: int) -> WorkStation:
    station = db.session.get(WorkStation, zone_id)
    db.session.refresh(station)
    return station


def _publish_station(station: WorkStation) -> None:
    change_feed.publish(
        change_feed.CHANNEL_WORK_STATIONS,
        "updated",
        station.zone_id,
        station.to_dict(),
    )


# ----------------------------
# Cars
# ----------------------------

def get_car(vin) -> Car:
    code = normalize_vin(vin)
    car = db.session.get(Car, code)
    if car is None:
        raise NotFoundError(f"Car {code} not found")
    return car


def _get_or_create_car(vin: str, car_type, color, series) -> Car:
    car = db.session.get(Car, vin)
    if car is not None:
        return car
    now = utcnow()
    try:
        with db.session.begin_nested():
            car = Car(
                vin=vin,
                type=optional_text(car_type) or "Standard",
                color=optional_text(color) or "Unknown",
                series=optional_text(series),
                status=CAR_STATUS_IN_PRODUCTION,
                created_at=now,
                updated_at=now,
            )
            db.session.add(car)
    except IntegrityError:
        car = db.session.get(Car, vin)
    else:
        current_app.logger.info("Car %s registered (%s, %s)", vin, car.type, car.color)
    return car


def _log_movement(vin, *, from_zone, to_zone, actor, movement_type, moved_at, time_in_previous_zone=None, notes=None):
    movement = CarMovement(
        vin=vin,
        from_zone=from_zone,
        to_zone=to_zone,
        moved_at=moved_at,
        moved_by=actor,
        movement_type=movement_type,
        time_in_previous_zone=time_in_previous_zone,
        notes=notes,
    )
    db.session.add(movement)
    return movement


def scan_car_into_zone(
    vin,
    zone_id,
    actor: str,
    *,
    car_type: str | None = None,
    color: str | None = None,
    series: str | None = None,
) -> Car:
    """
    Attach a car to an empty zone.

    Raises ConflictError when the zone already holds a car or the VIN is
    already current somewhere; the message names the occupying VIN or zone.
    """
    code = normalize_vin(vin)
    zone = validate_zone_id(zone_id)
    actor = require_actor(actor)

    station = _ensure_station(zone)
    car = _get_or_create_car(code, car_type, color, series)

    if car.status != CAR_STATUS_IN_PRODUCTION:
        raise ConflictError(f"Car {code} is {car.status}, not in production")
    if car.current_zone is not None:
        raise ConflictError(f"Car {code} is already in zone {car.current_zone}")
    if station.current_vin is not None:
        raise ConflictError(f"Zone {zone} already has car {station.current_vin}")

    now = utcnow()
    stmt = (
        update(WorkStation)
        .where(WorkStation.zone_id == zone, WorkStation.current_vin.is_(None))
        .values(
            current_vin=code,
            current_car_type=car.type,
            current_car_color=car.color,
            car_entered_at=now,
            last_updated=now,
        )
    )
    try:
        with db.session.begin_nested():
            claimed = conditional_update(stmt)
    except IntegrityError:
        elsewhere = db.session.query(WorkStation).filter(WorkStation.current_vin == code).first()
        where = f"zone {elsewhere.zone_id}" if elsewhere else "another zone"
        raise ConflictError(f"Car {code} is already in {where}")

    if claimed == 0:
        occupant = _reload_station(zone).current_vin
        raise ConflictError(f"Zone {zone} already has car {occupant}")

    car.current_zone = zone
    car.updated_at = now
    car.zone_history.append(ZoneEntry(zone_id=zone, entered_at=now, entered_by=actor))
    _log_movement(code, from_zone=None, to_zone=zone, actor=actor, movement_type=MOVEMENT_SCAN_IN, moved_at=now)
    db.session.flush()

    current_app.logger.info("Car %s scanned into zone %s by %s", code, zone, actor)
    _publish_station(_reload_station(zone))
    return car


def complete_work(zone_id, vin, actor: str, *, notes: str | None = None) -> ZoneEntry:
    """
    Detach the car from its zone and close its open zone entry.

    The car becomes flying (no zone, still in production). The station's
    daily counter and running average processing time are updated in the
    same conditional UPDATE that clears the car, so two completions of the
    same car cannot both count.
    """
    zone = validate_zone_id(zone_id)
    code = normalize_vin(vin)
    actor = require_actor(actor)
    notes = optional_text(notes)

    station = get_work_station(zone)
    if station.current_vin is None:
        raise ConflictError(f"Zone {zone} has no car")
    if station.current_vin != code:
        raise ConflictError(f"Zone {zone} holds car {station.current_vin}, not {code}")

    car = get_car(code)
    entry = car.open_entry
    now = utcnow()
    if entry is not None and entry.zone_id == zone:
        entered_at = entry.entered_at
    else:
        entered_at = station.car_entered_at or now
    minutes = whole_minutes_between(entered_at, now)

    stmt = (
        update(WorkStation)
        .where(WorkStation.zone_id == zone, WorkStation.current_vin == code)
        .values(
            current_vin=None,
            current_car_type=None,
            current_car_color=None,
            car_entered_at=None,
            worker_email=None,
            worker_name=None,
            worker_checked_in_at=None,
            average_processing_time=(
                (WorkStation.average_processing_time * WorkStation.cars_processed_today + minutes)
                / (WorkStation.cars_processed_today + 1)
            ),
            cars_processed_today=WorkStation.cars_processed_today + 1,
            last_updated=now,
        )
    )
    if conditional_update(stmt) == 0:
        raise ConflictError(f"Car {code} already left zone {zone}")

    if entry is None or entry.zone_id != zone:
        current_app.logger.warning(
            "ConsistencyWarning: car %s had no open entry for zone %s; recording one", code, zone,
        )
        if entry is not None:
            entry.exited_at = now
            entry.completed_by = actor
            entry.time_spent = whole_minutes_between(entry.entered_at, now)
            entry.notes = f"Closed on completion in zone {zone}"
        entry = ZoneEntry(zone_id=zone, entered_at=entered_at, entered_by=actor)
        car.zone_history.append(entry)

    entry.exited_at = now
    entry.completed_by = actor
    entry.time_spent = minutes
    entry.notes = notes

    car.current_zone = None
    car.updated_at = now
    _log_movement(
        code,
        from_zone=zone,
        to_zone=None,
        actor=actor,
        movement_type=MOVEMENT_COMPLETE,
        moved_at=now,
        time_in_previous_zone=minutes,
        notes=notes,
    )
    db.session.flush()

    current_app.logger.info("Car %s completed zone %s in %s min by %s", code, zone, minutes, actor)
    _publish_station(_reload_station(zone))
    return entry


def complete_car_production(vin, actor: str) -> Car:
    """Mark a car finished with the whole line. It must not be in a zone."""
    car = get_car(vin)
    actor = require_actor(actor)
    if car.status != CAR_STATUS_IN_PRODUCTION:
        raise ConflictError(f"Car {car.vin} is already {car.status}")
    if car.current_zone is not None:
        raise ConflictError(f"Car {car.vin} is still in zone {car.current_zone}")

    now = utcnow()
    car.status = CAR_STATUS_COMPLETED
    car.completed_at = now
    car.updated_at = now
    db.session.flush()

    current_app.logger.info(
        "Car %s production completed by %s (%s min total)", car.vin, actor, car.total_production_time,
    )
    return car


def list_flying_cars() -> list[dict]:
    """In-production cars between zones, with the zone they last left."""
    cars = (
        db.session.query(Car)
        .filter(Car.status == CAR_STATUS_IN_PRODUCTION, Car.current_zone.is_(None))
        .order_by(Car.updated_at.asc(), Car.vin.asc())
        .all()
    )
    now = utcnow()
    flying = []
    for car in cars:
        if not car.zone_history:
            continue  # registered, never scanned
        last = car.zone_history[-1]
        if last.exited_at is None:
            continue
        flying.append({
            "vin": car.vin,
            "type": car.type,
            "color": car.color,
            "last_zone": last.zone_id,
            "completed_at": last.exited_at,
            "flying_minutes": whole_minutes_between(last.exited_at, now),
        })
    return flying


# ----------------------------
# Workers
# ----------------------------

def check_in_worker(zone_id, email, display_name: str | None = None) -> WorkStation:
    zone = validate_zone_id(zone_id)
    worker = require_actor(email)
    station = _ensure_station(zone)
    now = utcnow()

    stmt = (
        update(WorkStation)
        .where(
            WorkStation.zone_id == zone,
            or_(WorkStation.worker_email.is_(None), WorkStation.worker_email == worker),
        )
        .values(
            worker_email=worker,
            worker_name=optional_text(display_name) or worker,
            worker_checked_in_at=now,
            last_updated=now,
        )
    )
    if conditional_update(stmt) == 0:
        raise ConflictError(f"Zone {zone} already has worker {_reload_station(zone).worker_email}")

    station = _reload_station(zone)
    current_app.logger.info("Worker %s checked in to zone %s", worker, zone)
    _publish_station(station)
    return station


def check_out_worker(zone_id, email) -> WorkStation:
    zone = validate_zone_id(zone_id)
    worker = require_actor(email)
    get_work_station(zone)

    stmt = (
        update(WorkStation)
        .where(WorkStation.zone_id == zone, WorkStation.worker_email == worker)
        .values(
            worker_email=None,
            worker_name=None,
            worker_checked_in_at=None,
            last_updated=utcnow(),
        )
    )
    if conditional_update(stmt) == 0:
        raise ConflictError(f"Worker {worker} is not checked in to zone {zone}")

    station = _reload_station(zone)
    current_app.logger.info("Worker %s checked out of zone %s", worker, zone)
    _publish_station(station)
    return station


# ----------------------------
# Repair
# ----------------------------

def _clear_station(station: WorkStation, reason: str) -> None:
    vin = station.current_vin
    station.current_vin = None
    station.current_car_type = None
    station.current_car_color = None
    station.car_entered_at = None
    station.last_updated = utcnow()
    db.session.flush()
    current_app.logger.warning("Cleared car %s from zone %s: %s", vin, station.zone_id, reason)
    _publish_station(station)


def force_remove_car(vin, actor: str = SYSTEM_ACTOR, reason: str = "Ghost car cleanup") -> dict:
    """
    Detach a car from whatever zone the car record or any station claims.

    Closes the open zone entry if there is one. Daily station statistics
    are not touched: this is a repair, not a completion.
    """
    car = get_car(vin)
    actor = require_actor(actor) if actor != SYSTEM_ACTOR else SYSTEM_ACTOR
    reason = require_text(reason, "reason")
    now = utcnow()
    from_zone = car.current_zone

    entry = car.open_entry
    minutes: Optional[int] = None
    if entry is not None:
        minutes = whole_minutes_between(entry.entered_at, now)
        entry.exited_at = now
        entry.completed_by = actor
        entry.time_spent = minutes
        entry.notes = f"Force removed: {reason}"
        from_zone = from_zone or entry.zone_id

    car.current_zone = None
    car.updated_at = now

    stations = db.session.query(WorkStation).filter(WorkStation.current_vin == car.vin).populate_existing().all()
    for station in stations:
        _clear_station(station, reason)
        from_zone = from_zone or station.zone_id

    if from_zone is not None:
        _log_movement(
            car.vin,
            from_zone=from_zone,
            to_zone=None,
            actor=actor,
            movement_type=MOVEMENT_FORCE_REMOVE,
            moved_at=now,
            time_in_previous_zone=minutes,
            notes=f"Force removed: {reason}",
        )
    db.session.flush()

    current_app.logger.warning("Car %s force removed from zone %s by %s: %s", car.vin, from_zone, actor, reason)
    return {"vin": car.vin, "from_zone": from_zone, "reason": reason}


def cleanup_ghost_cars(actor: str = SYSTEM_ACTOR) -> dict:
    """
    Reconcile stations and cars that disagree about occupancy.

    1. A station holding a VIN whose car is missing or records another zone
       is cleared.
    2. An in-production car that claims a zone whose station does not hold
       it is detached.
    """
    fixed = 0
    issues: list[str] = []

    for station in list_work_stations():
        if station.current_vin is None:
            continue
        car = db.session.get(Car, station.current_vin)
        if car is None or car.current_zone != station.zone_id:
            vin = station.current_vin
            _clear_station(station, "Station-car data inconsistency")
            fixed += 1
            issues.append(f"Zone {station.zone_id}: cleared {vin} (car was not in zone)")

    stranded = (
        db.session.query(Car)
        .filter(Car.status == CAR_STATUS_IN_PRODUCTION, Car.current_zone.isnot(None))
        .all()
    )
    for car in stranded:
        station = db.session.get(WorkStation, car.current_zone, populate_existing=True)
        if station is None or station.current_vin != car.vin:
            zone = car.current_zone
            force_remove_car(car.vin, actor, "Car not held by its zone")
            fixed += 1
            issues.append(f"Car {car.vin}: detached from zone {zone} (zone did not hold it)")

    current_app.logger.info("Ghost car cleanup fixed %s issues", fixed)
    return {"fixed": fixed, "issues": issues}


# ----------------------------
# History & statistics
# ----------------------------

def get_car_movements(vin=None, zone_id=None, limit: int = 100) -> list[CarMovement]:
    q = db.session.query(CarMovement)
    if vin is not None:
        q = q.filter(CarMovement.vin == normalize_vin(vin))
    if zone_id is not None:
        zone = validate_zone_id(zone_id)
        q = q.filter(or_(CarMovement.from_zone == zone, CarMovement.to_zone == zone))
    return (
        q.order_by(CarMovement.moved_at.desc(), CarMovement.id.desc())
        .limit(coerce_int(limit, "limit"))
        .all()
    )


def reset_daily_stats() -> int:
    """Start-of-day reset of per-station counters. Returns stations touched."""
    count = conditional_update(
        update(WorkStation).values(
            cars_processed_today=0,
            average_processing_time=0.0,
            last_updated=utcnow(),
        )
    )
    current_app.logger.info("Daily stats reset for %s work stations", count)
    return count


@change_feed.snapshot_provider(change_feed.CHANNEL_WORK_STATIONS)
def _work_stations_snapshot() -> list:
    return [station.to_dict() for station in list_work_stations()]
