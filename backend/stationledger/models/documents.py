from __future__ import annotations

from stationledger.extensions import db


class DocumentSequence(db.Model):
    """
    Per-prefix document number counter (e.g. INV-202610).

    next_number is advanced with an atomic UPDATE so concurrent invoice
    creation never hands out the same number twice.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_document_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
