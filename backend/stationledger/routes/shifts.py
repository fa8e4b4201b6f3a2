# Overview: Flask API routes for employee shifts; parses input and returns JSON responses.

# backend/stationledger/routes/shifts.py
"""
Shift API Routes

WHY: Employees open a shift on a dispenser with opening meter readings and a
cash float, and close it with final readings and the counted cash.

DESIGN:
- One active shift per employee (409 on a second start)
- Closing returns the reconciliation report; meter anomalies and cash
  variance are informational and never block the close
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import get_services


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


# =============================================================================
# LIFECYCLE
# =============================================================================

@shifts_bp.post("/")
def start_shift_route():
    """
    Start a shift.

    Request body:
    {
        "employee_id": 7,
        "station_id": 1,
        "dispenser_id": 3,
        "initial_cash_cents": 20000,
        "fuel_readings": [{"fuel_type_id": 1, "initial_reading": "10500.250"}],
        "notes": "Morning shift"  (optional)
    }

    Returns:
        201: Shift started
        400: Invalid input
        409: Employee already has an active shift
    """
    try:
        data = request.get_json() or {}

        shift = get_services().shifts.start_shift(
            employee_id=data.get("employee_id"),
            station_id=data.get("station_id"),
            dispenser_id=data.get("dispenser_id"),
            initial_cash_cents=data.get("initial_cash_cents"),
            fuel_readings=data.get("fuel_readings"),
            notes=data.get("notes", ""),
        )

        return jsonify({"shift": shift.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to start shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/end")
def end_shift_route(shift_id: int):
    """
    End an active shift.

    Request body:
    {
        "final_readings": {"1": "10810.750"},
        "cash_collected_cents": 45500,
        "notes": "..."  (optional)
    }

    Returns:
        200: Shift completed, with reconciliation report
        404: Shift not found
        409: Shift is not active
    """
    try:
        data = request.get_json() or {}

        final_readings = data.get("final_readings") or {}
        if not isinstance(final_readings, dict):
            return jsonify({"error": "final_readings must be an object keyed by fuel_type_id"}), 400

        closure = get_services().shifts.end_shift(
            shift_id,
            final_readings,
            data.get("cash_collected_cents"),
            notes=data.get("notes"),
        )

        return jsonify(closure.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to end shift")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    try:
        shift = get_services().shifts.get_shift(shift_id)
        return jsonify({"shift": shift.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current/<int:employee_id>")
def current_shift_route(employee_id: int):
    """Active shift for an employee; "shift" is null when none."""
    try:
        shift = get_services().shifts.get_current_shift(employee_id)
        return jsonify({"shift": shift.to_dict() if shift else None}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get current shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/")
def list_shifts_route():
    """
    List shifts for a station, newest first.

    Query params:
        station_id (required), start, end (ISO-8601, optional)
    """
    try:
        station_id = request.args.get("station_id")
        if not station_id:
            return jsonify({"error": "station_id required"}), 400

        shifts = get_services().shifts.list_shifts(
            station_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
        )

        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list shifts")
        return jsonify({"error": "Internal server error"}), 500
