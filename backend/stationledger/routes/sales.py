# Overview: Flask API routes for fuel sales; parses input and returns JSON responses.

# backend/stationledger/routes/sales.py
"""Fuel sales API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import get_services


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
def record_sale_route():
    """
    Record a dispensing event.

    Request body:
    {
        "station_id": 1,
        "dispenser_id": 3,
        "employee_id": 7,
        "fuel_type_id": 1,
        "quantity_liters": "42.500",
        "payment_method": "cash",
        "price_per_liter_cents": 165,  (optional, defaults to fuel type price)
        "customer_id": 12,  (required for credit_account)
        "vehicle_id": 4,  (optional)
        "transaction_date": "2026-10-01T08:15:00Z"  (optional)
    }
    """
    try:
        data = request.get_json() or {}

        sale = get_services().sales.record_sale(
            station_id=data.get("station_id"),
            dispenser_id=data.get("dispenser_id"),
            employee_id=data.get("employee_id"),
            fuel_type_id=data.get("fuel_type_id"),
            quantity_liters=data.get("quantity_liters"),
            payment_method=data.get("payment_method"),
            price_per_liter_cents=data.get("price_per_liter_cents"),
            customer_id=data.get("customer_id"),
            vehicle_id=data.get("vehicle_id"),
            transaction_date=data.get("transaction_date"),
        )

        return jsonify({"sale": sale.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = get_services().sales.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def list_sales_route():
    """List sales for a station (station_id required; start/end optional)."""
    try:
        station_id = request.args.get("station_id")
        if not station_id:
            return jsonify({"error": "station_id required"}), 400

        sales = get_services().sales.list_sales(
            station_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
        )

        return jsonify({"sales": [s.to_dict() for s in sales]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/cash-total")
def cash_total_route():
    """
    Sum of cash sales for a station window.

    Query params:
        station_id, start, end (all required), employee_id (optional)
    """
    try:
        station_id = request.args.get("station_id")
        start = request.args.get("start")
        end = request.args.get("end")
        if not all([station_id, start, end]):
            return jsonify({"error": "station_id, start, and end required"}), 400

        employee_id = request.args.get("employee_id", type=int)
        totals = get_services().sales.sum_cash_sales(station_id, start, end, employee_id=employee_id)

        return jsonify({
            "station_id": totals.station_id,
            "employee_id": totals.employee_id,
            "start": start,
            "end": end,
            "cash_total_cents": sum(totals),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to sum cash sales")
        return jsonify({"error": "Internal server error"}), 500
