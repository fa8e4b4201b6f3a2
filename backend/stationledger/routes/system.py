# backend/stationledger/routes/system.py
"""
System health endpoint.

Checks that the ledger store answers queries and reports per-table counts
for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Customer, Invoice, Shift
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        customer_count = db.session.execute(select(func.count(Customer.id))).scalar_one()
        invoice_count = db.session.execute(select(func.count(Invoice.id))).scalar_one()
        active_shifts = db.session.execute(
            select(func.count(Shift.id)).where(Shift.status == "active")
        ).scalar_one()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "customers": customer_count,
                "invoices": invoice_count,
                "active_shifts": active_shifts,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Ledger store healthy
    - 503: Ledger store unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
