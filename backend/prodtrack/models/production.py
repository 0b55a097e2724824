from __future__ import annotations

from ..extensions import db
from prodtrack.time_utils import to_utc_z


CAR_STATUS_IN_PRODUCTION = "in_production"
CAR_STATUS_COMPLETED = "completed"
CAR_STATUS_ON_HOLD = "on_hold"

CAR_STATUSES = (CAR_STATUS_IN_PRODUCTION, CAR_STATUS_COMPLETED, CAR_STATUS_ON_HOLD)

MOVEMENT_SCAN_IN = "scan_in"
MOVEMENT_COMPLETE = "complete"
MOVEMENT_FORCE_REMOVE = "force_remove"


class WorkStation(db.Model):
    """
    Real-time state of one production zone.

    OCCUPANCY RULES:
    - current_vin is NULL (empty zone) or one VIN; never more than one car.
    - current_vin is unique across stations, so a VIN can be current in at
      most one zone even when two scans race into two different empty zones.
    - Attaching a car is a conditional UPDATE (... WHERE current_vin IS NULL);
      detaching is conditional on the expected VIN.
    """
    __tablename__ = "work_stations"

    zone_id = db.Column(db.Integer, primary_key=True, autoincrement=False)

    current_vin = db.Column(db.String(17), nullable=True, unique=True)
    current_car_type = db.Column(db.String(64), nullable=True)
    current_car_color = db.Column(db.String(64), nullable=True)
    car_entered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    worker_email = db.Column(db.String(255), nullable=True)
    worker_name = db.Column(db.String(255), nullable=True)
    worker_checked_in_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cars_processed_today = db.Column(db.Integer, nullable=False, default=0)
    average_processing_time = db.Column(db.Float, nullable=False, default=0.0)  # minutes

    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<WorkStation zone={self.zone_id} vin={self.current_vin!r}>"

    def current_car_dict(self) -> dict | None:
        if self.current_vin is None:
            return None
        return {
            "vin": self.current_vin,
            "type": self.current_car_type,
            "color": self.current_car_color,
            "entered_at": to_utc_z(self.car_entered_at),
        }

    def current_worker_dict(self) -> dict | None:
        if self.worker_email is None:
            return None
        return {
            "email": self.worker_email,
            "display_name": self.worker_name,
            "checked_in_at": to_utc_z(self.worker_checked_in_at),
        }

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "current_car": self.current_car_dict(),
            "current_worker": self.current_worker_dict(),
            "cars_processed_today": self.cars_processed_today,
            "average_processing_time": round(self.average_processing_time or 0.0, 2),
            "last_updated": to_utc_z(self.last_updated),
        }


class Car(db.Model):
    """
    A car moving through the production line, keyed by VIN.

    INVARIANT: at most one ZoneEntry has exited_at NULL, and its zone_id
    equals current_zone. current_zone NULL with status in_production means
    the car is "flying" between zones.
    """
    __tablename__ = "cars"

    vin = db.Column(db.String(17), primary_key=True)
    type = db.Column(db.String(64), nullable=False, default="Standard")
    color = db.Column(db.String(64), nullable=False, default="Unknown")
    series = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CAR_STATUS_IN_PRODUCTION, index=True)
    current_zone = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    zone_history = db.relationship(
        "ZoneEntry",
        backref="car",
        lazy=True,
        order_by="ZoneEntry.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Car vin={self.vin!r} zone={self.current_zone} status={self.status!r}>"

    @property
    def open_entry(self):
        for entry in reversed(self.zone_history):
            if entry.exited_at is None:
                return entry
        return None

    @property
    def total_production_time(self) -> int:
        return sum(entry.time_spent or 0 for entry in self.zone_history)

    def to_dict(self) -> dict:
        return {
            "vin": self.vin,
            "type": self.type,
            "color": self.color,
            "series": self.series,
            "status": self.status,
            "current_zone": self.current_zone,
            "zone_history": [entry.to_dict() for entry in self.zone_history],
            "total_production_time": self.total_production_time,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ZoneEntry(db.Model):
    __tablename__ = "zone_entries"
    __table_args__ = (
        db.Index("ix_zone_entries_zone_entered", "zone_id", "entered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vin = db.Column(db.String(17), db.ForeignKey("cars.vin"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, nullable=False)

    entered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    exited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    entered_by = db.Column(db.String(255), nullable=False)
    completed_by = db.Column(db.String(255), nullable=True)
    time_spent = db.Column(db.Integer, nullable=True)  # whole minutes
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "entered_at": to_utc_z(self.entered_at),
            "exited_at": to_utc_z(self.exited_at),
            "entered_by": self.entered_by,
            "completed_by": self.completed_by,
            "time_spent": self.time_spent,
            "notes": self.notes,
        }


class CarMovement(db.Model):
    """Append-only audit trail of car movements between zones."""
    __tablename__ = "car_movements"
    __table_args__ = (
        db.Index("ix_car_movements_vin_moved", "vin", "moved_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vin = db.Column(db.String(17), nullable=False)
    from_zone = db.Column(db.Integer, nullable=True)
    to_zone = db.Column(db.Integer, nullable=True)
    moved_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    moved_by = db.Column(db.String(255), nullable=False)
    movement_type = db.Column(db.String(16), nullable=False)
    time_in_previous_zone = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vin": self.vin,
            "from_zone": self.from_zone,
            "to_zone": self.to_zone,
            "moved_at": to_utc_z(self.moved_at),
            "moved_by": self.moved_by,
            "movement_type": self.movement_type,
            "time_in_previous_zone": self.time_in_previous_zone,
            "notes": self.notes,
        }
