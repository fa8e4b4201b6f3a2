# Overview: Flask API routes for customer invoices; parses input and returns JSON responses.

# backend/stationledger/routes/invoices.py
"""
Invoice API Routes

WHY: Bill credit-account customers for fuel taken on account.

DESIGN:
- Totals are computed from the items; a caller-supplied total is ignored
- A sale can appear on one invoice only (409 when already billed)
- Exceeding the customer's credit limit is flagged in the body, not refused
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import get_services


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


# =============================================================================
# INVOICE CREATION
# =============================================================================

@invoices_bp.post("/")
def create_invoice_route():
    """
    Create an invoice.

    Request body:
    {
        "customer_id": 12,
        "issue_date": "2026-10-01",
        "due_date": "2026-10-31",
        "items": [
            {"sale_id": 55, "quantity": "42.500", "unit_price_cents": 165},
            {"description": "Car wash", "quantity": "1", "unit_price_cents": 1200}
        ],
        "invoice_number": "INV-202610-0042",  (optional, allocated when omitted)
        "notes": "..."  (optional)
    }

    Returns:
        201: Invoice created (balance_updated=false signals a partial success)
        400: Invalid input
        404: Customer or sale not found
        409: Sale already invoiced / duplicate invoice number
    """
    try:
        data = request.get_json() or {}

        items = data.get("items")
        if items is not None and not isinstance(items, list):
            return jsonify({"error": "items must be a list"}), 400

        result = get_services().invoices.create_invoice(
            customer_id=data.get("customer_id"),
            issue_date=data.get("issue_date"),
            due_date=data.get("due_date"),
            items=items,
            invoice_number=data.get("invoice_number"),
            notes=data.get("notes", ""),
        )

        return jsonify(result.to_dict()), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/mark-overdue")
def mark_overdue_route():
    """Sweep pending, unpaid invoices past due to overdue. Optional body: {"as_of": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        marked = get_services().invoices.mark_overdue(data.get("as_of"))
        return jsonify({"marked_invoice_ids": marked, "count": len(marked)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark overdue invoices")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICE QUERIES
# =============================================================================

@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = get_services().invoices.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/items")
def get_invoice_items_route(invoice_id: int):
    """Items with their originating sale snapshot (null when not from a sale)."""
    try:
        contexts = get_services().invoices.get_invoice_items_with_context(invoice_id)
        return jsonify({"items": [c.to_dict() for c in contexts]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get invoice items")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/")
def list_invoices_route():
    try:
        customer_id = request.args.get("customer_id")
        if not customer_id:
            return jsonify({"error": "customer_id required"}), 400

        invoices = get_services().invoices.list_invoices(customer_id)
        return jsonify({"invoices": [i.to_dict(include_items=False) for i in invoices]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500
