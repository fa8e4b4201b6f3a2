from __future__ import annotations

from stationledger.extensions import db
from stationledger.time_utils import to_utc_z


class FuelType(db.Model):
    """Fuel grade sold at the pumps (e.g. Regular Unleaded, Diesel)."""
    __tablename__ = "fuel_types"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_fuel_types_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    price_per_liter_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "price_per_liter_cents": self.price_per_liter_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Vehicle(db.Model):
    """Fleet vehicle registered on a customer account."""
    __tablename__ = "vehicles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    license_plate = db.Column(db.String(32), nullable=False)
    make = db.Column(db.String(64), nullable=False)
    model = db.Column(db.String(64), nullable=False)
    year = db.Column(db.Integer, nullable=True)
    fuel_type_id = db.Column(db.Integer, db.ForeignKey("fuel_types.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "license_plate": self.license_plate,
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "fuel_type_id": self.fuel_type_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
