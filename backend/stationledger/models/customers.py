from __future__ import annotations

from stationledger.extensions import db
from stationledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Credit-account customer (fleet or company account).

    BALANCE: current_balance_cents is the sum of invoiced amounts minus payments
    received. Negative means the station owes the customer credit.
    It is only ever changed with atomic increments, never read-modify-write.

    STATUS: active, inactive, suspended
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(255), nullable=False)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_terms = db.Column(db.String(64), nullable=False, default="Net 30")
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "credit_limit_cents": self.credit_limit_cents,
            "current_balance_cents": self.current_balance_cents,
            "payment_terms": self.payment_terms,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
