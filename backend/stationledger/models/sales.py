from __future__ import annotations

from stationledger.extensions import db
from stationledger.time_utils import to_utc_z


class Sale(db.Model):
    """
    Fuel dispensing event.

    IMMUTABLE: Nothing changes after creation except the one-time invoice_id
    stamp, which is written with a conditional update (invoice_id IS NULL).

    total_amount_cents = quantity_liters x price_per_liter_cents (half-up).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_station_date", "station_id", "transaction_date"),
        db.Index("ix_sales_station_method_date", "station_id", "payment_method", "transaction_date"),
        db.Index("ix_sales_customer_date", "customer_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, nullable=False)
    dispenser_id = db.Column(db.Integer, nullable=False)
    employee_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=True, index=True)
    fuel_type_id = db.Column(db.Integer, db.ForeignKey("fuel_types.id"), nullable=False)

    quantity_liters = db.Column(db.Numeric(14, 3), nullable=False)
    price_per_liter_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    # cash, credit_card, debit_card, credit_account
    payment_method = db.Column(db.String(32), nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # Set once an invoice references this sale
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "dispenser_id": self.dispenser_id,
            "employee_id": self.employee_id,
            "customer_id": self.customer_id,
            "vehicle_id": self.vehicle_id,
            "fuel_type_id": self.fuel_type_id,
            "quantity_liters": str(self.quantity_liters),
            "price_per_liter_cents": self.price_per_liter_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "transaction_date": to_utc_z(self.transaction_date),
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
        }
