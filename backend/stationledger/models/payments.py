from __future__ import annotations

from stationledger.extensions import db
from stationledger.time_utils import to_utc_z


class Payment(db.Model):
    """
    Payment received from a credit-account customer.

    IMMUTABLE: customer, invoice, amount, method and dates never change.
    invoice_status is bookkeeping for the invoice step only:
    - not_applicable: no invoice referenced
    - pending: invoice step not yet completed (retryable by payment id)
    - applying: invoice step claimed by a request, in flight
    - applied: invoice paid amount includes this payment
    - overpayment: rejected by the invoice, balance credit only
    - failed: invoice update hit a store error (retryable)
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_customer_date", "customer_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # cash, bank_transfer, credit_card, check
    method = db.Column(db.String(32), nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    invoice_status = db.Column(db.String(16), nullable=False, default="not_applicable")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_utc_z(self.payment_date),
            "method": self.method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "invoice_status": self.invoice_status,
            "created_at": to_utc_z(self.created_at),
        }
