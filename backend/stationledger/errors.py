# Overview: Error kinds raised or returned by the ledger core.

"""
Ledger error kinds.

Each error carries a stable ``code`` (used in JSON bodies) and the HTTP status
the API layer maps it to. ``details`` holds structured context for callers,
the same way SaleError does for insufficient inventory.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger-core errors."""

    code = "ledger_error"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError, ValueError):
    """400-level input problem (non-positive amount, empty item list, ...)."""

    code = "validation_error"
    http_status = 400


class NotFoundError(LedgerError, LookupError):
    """Referenced Customer/Invoice/Shift/Sale/Payment is absent."""

    code = "not_found"
    http_status = 404


class ConflictError(LedgerError):
    """409-level business rule conflict (duplicate active shift, double billing)."""

    code = "conflict"
    http_status = 409


class InvalidStateError(LedgerError):
    """Operation not allowed in the record's current state."""

    code = "invalid_state"
    http_status = 409


class OverpaymentError(LedgerError):
    """Payment would push an invoice's paid amount past its total."""

    code = "overpayment"
    http_status = 422

    def __init__(self, message: str, *, excess_cents: int, details: dict | None = None):
        details = dict(details or {})
        details.setdefault("excess_cents", excess_cents)
        super().__init__(message, details)
        self.excess_cents = excess_cents


class StoreError(LedgerError):
    """Ledger store collaborator failed."""

    code = "store_error"
    http_status = 503


class StoreTimeoutError(StoreError):
    code = "store_timeout"
    http_status = 504


class StoreUnavailableError(StoreError):
    code = "store_unavailable"
    http_status = 503
