from __future__ import annotations

from stationledger.extensions import db
from stationledger.time_utils import to_utc_z


class Shift(db.Model):
    """
    Employee shift on a dispenser.

    LIFECYCLE:
    - active: shift in progress, employee may record sales on the dispenser
    - completed: shift closed, readings and cash recorded

    IMMUTABLE: Once completed, a shift cannot be reopened or modified.

    fuel_readings is stored on the shift record itself so the close is a single
    record update: [{"fuel_type_id": 1, "initial_reading": "1000.000",
    "final_reading": "1210.500" | null}, ...]

    At most one active shift per employee, enforced by a partial unique index.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_active_employee",
            "employee_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_shifts_station_start", "station_id", "start_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, nullable=False)
    employee_id = db.Column(db.Integer, nullable=False)
    dispenser_id = db.Column(db.Integer, nullable=False)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    initial_cash_cents = db.Column(db.Integer, nullable=False)
    final_cash_cents = db.Column(db.Integer, nullable=True)

    fuel_readings = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default="active")
    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "employee_id": self.employee_id,
            "dispenser_id": self.dispenser_id,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time) if self.end_time else None,
            "initial_cash_cents": self.initial_cash_cents,
            "final_cash_cents": self.final_cash_cents,
            "fuel_readings": [dict(r) for r in (self.fuel_readings or [])],
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
