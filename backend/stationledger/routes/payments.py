# Overview: Flask API routes for customer payments; parses input and returns JSON responses.

# backend/stationledger/routes/payments.py
"""
Payment API Routes

WHY: Record payments from credit-account customers against their balance
and, optionally, one invoice.

DESIGN:
- Once the payment row exists the response is 201, even when a later step
  failed; the body carries balance_update_failed / invoice_update_failed
- Overpayments leave the invoice unchanged and report overpayment_cents
- The invoice step is retried by payment id (idempotent)
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import get_services


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
def record_payment_route():
    """
    Record a payment.

    Request body:
    {
        "customer_id": 12,
        "amount_cents": 6000,
        "payment_date": "2026-10-15",  (optional, defaults to now)
        "method": "bank_transfer",
        "invoice_id": 31,  (optional)
        "reference_number": "TRX-889",  (optional)
        "notes": "..."  (optional)
    }

    METHODS: cash, bank_transfer, credit_card, check

    Returns:
        201: Payment recorded (check the failure flags for partial success)
        400: Invalid input
        404: Customer or invoice not found
    """
    try:
        data = request.get_json() or {}

        outcome = get_services().payments.record_payment(
            data.get("customer_id"),
            data.get("amount_cents"),
            data.get("payment_date"),
            data.get("method"),
            invoice_id=data.get("invoice_id"),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
        )

        return jsonify(outcome.to_dict()), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/retry-invoice")
def retry_invoice_route(payment_id: int):
    """Re-run the invoice step of a payment (idempotent)."""
    try:
        outcome = get_services().payments.retry_invoice_application(payment_id)
        return jsonify(outcome.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to retry invoice application")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = get_services().payments.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/")
def list_payments_route():
    try:
        customer_id = request.args.get("customer_id")
        if not customer_id:
            return jsonify({"error": "customer_id required"}), 400

        payments = get_services().payments.list_payments(customer_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500
