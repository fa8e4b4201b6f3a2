# Overview: Service-layer operations for employee shifts; lifecycle and meter reconciliation.

"""
Shift Manager

WHY: An employee works a dispenser for a shift. Opening and closing meter
readings tell how much fuel left each nozzle, and the cash count at close is
compared with the cash sales recorded during the shift.

LIFECYCLE:
- active -> completed is the only transition; completed shifts are never reopened.
- At most one active shift per employee (partial unique index on the store).

RECONCILIATION (informational, never blocking):
- dispensed = final - initial per fuel type (None when not reported)
- final <= initial is accepted (meter reset) but flagged on the report
- cash variance = cash collected - initial cash - expected cash sales
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping

from stationledger.errors import ConflictError, InvalidStateError, ValidationError
from stationledger.models import Shift
from stationledger.time_utils import to_utc_z, utcnow
from stationledger.validation import (
    clean_text,
    coerce_cents,
    coerce_id,
    coerce_optional_datetime,
    coerce_quantity,
)


logger = logging.getLogger(__name__)


SHIFT_ACTIVE = "active"
SHIFT_COMPLETED = "completed"

ANOMALY_NEGATIVE_DELTA = "negative_delta"
ANOMALY_ZERO_DELTA = "zero_delta"


@dataclass
class FuelReconciliation:
    fuel_type_id: int
    initial_reading: Decimal
    final_reading: Decimal | None
    dispensed_liters: Decimal | None
    anomaly: str | None = None

    @property
    def is_anomalous(self) -> bool:
        return self.anomaly is not None

    def to_dict(self) -> dict:
        return {
            "fuel_type_id": self.fuel_type_id,
            "initial_reading": str(self.initial_reading),
            "final_reading": str(self.final_reading) if self.final_reading is not None else None,
            "dispensed_liters": str(self.dispensed_liters) if self.dispensed_liters is not None else None,
            "anomaly": self.anomaly,
        }


@dataclass
class ReconciliationReport:
    shift_id: int
    window_start: datetime
    window_end: datetime
    fuels: list[FuelReconciliation]
    initial_cash_cents: int
    cash_collected_cents: int
    expected_cash_sales_cents: int
    ignored_fuel_type_ids: list[int] = field(default_factory=list)

    @property
    def cash_variance_cents(self) -> int:
        return self.cash_collected_cents - self.initial_cash_cents - self.expected_cash_sales_cents

    @property
    def anomalous_fuel_type_ids(self) -> list[int]:
        return [f.fuel_type_id for f in self.fuels if f.is_anomalous]

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "window_start": to_utc_z(self.window_start),
            "window_end": to_utc_z(self.window_end),
            "fuels": [f.to_dict() for f in self.fuels],
            "anomalous_fuel_type_ids": self.anomalous_fuel_type_ids,
            "ignored_fuel_type_ids": self.ignored_fuel_type_ids,
            "initial_cash_cents": self.initial_cash_cents,
            "cash_collected_cents": self.cash_collected_cents,
            "expected_cash_sales_cents": self.expected_cash_sales_cents,
            "cash_variance_cents": self.cash_variance_cents,
        }


@dataclass
class ShiftClosure:
    shift: Shift
    reconciliation: ReconciliationReport

    def to_dict(self) -> dict:
        return {"shift": self.shift.to_dict(), "reconciliation": self.reconciliation.to_dict()}


def _normalize_opening_readings(fuel_readings: Iterable[Mapping[str, Any]] | None) -> list[dict]:
    readings = []
    seen: set[int] = set()
    for raw in fuel_readings or []:
        if not isinstance(raw, Mapping):
            raise ValidationError("Each fuel reading must be an object with fuel_type_id and initial_reading")
        fuel_type_id = coerce_id("fuel_type_id", raw.get("fuel_type_id"))
        if fuel_type_id in seen:
            raise ValidationError(f"Duplicate fuel reading for fuel type {fuel_type_id}")
        seen.add(fuel_type_id)
        initial = coerce_quantity("initial_reading", raw.get("initial_reading"), allow_zero=True)
        readings.append({
            "fuel_type_id": fuel_type_id,
            "initial_reading": str(initial),
            "final_reading": None,
        })
    return readings


def reconcile_readings(readings: list[dict]) -> list[FuelReconciliation]:
    """Per-fuel dispensed volume with meter anomalies flagged."""
    lines = []
    for reading in readings:
        initial = Decimal(reading["initial_reading"])
        final = Decimal(reading["final_reading"]) if reading.get("final_reading") is not None else None

        dispensed = None
        anomaly = None
        if final is not None:
            dispensed = final - initial
            if dispensed < 0:
                anomaly = ANOMALY_NEGATIVE_DELTA
            elif dispensed == 0:
                anomaly = ANOMALY_ZERO_DELTA

        lines.append(FuelReconciliation(
            fuel_type_id=int(reading["fuel_type_id"]),
            initial_reading=initial,
            final_reading=final,
            dispensed_liters=dispensed,
            anomaly=anomaly,
        ))
    return lines


class ShiftManager:
    """
    Owns the employee-shift state machine.

    Args:
        store: LedgerStore
        sales: SalesRecorder used for the expected cash sales of a shift window
    """

    def __init__(self, store, sales):
        self.store = store
        self.sales = sales

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start_shift(
        self,
        *,
        employee_id: int,
        station_id: int,
        dispenser_id: int,
        initial_cash_cents: int,
        fuel_readings: Iterable[Mapping[str, Any]] | None = None,
        notes: str | None = "",
    ) -> Shift:
        """
        Open a shift for an employee on a dispenser.

        Raises:
            ValidationError: bad ids, negative cash or readings, duplicate fuel type
            ConflictError: employee already has an active shift (also when a
                concurrent start wins the race on the unique index)
        """
        employee_id = coerce_id("employee_id", employee_id)
        station_id = coerce_id("station_id", station_id)
        dispenser_id = coerce_id("dispenser_id", dispenser_id)
        initial_cash_cents = coerce_cents("initial_cash_cents", initial_cash_cents)
        readings = _normalize_opening_readings(fuel_readings)
        notes = clean_text(notes, name="notes") or ""

        if self.get_current_shift(employee_id) is not None:
            raise ConflictError(
                "Employee already has an active shift",
                details={"employee_id": employee_id},
            )

        try:
            shift = self.store.create(
                Shift,
                station_id=station_id,
                employee_id=employee_id,
                dispenser_id=dispenser_id,
                start_time=utcnow(),
                end_time=None,
                initial_cash_cents=initial_cash_cents,
                final_cash_cents=None,
                fuel_readings=readings,
                status=SHIFT_ACTIVE,
                notes=notes,
            )
        except ConflictError as exc:
            raise ConflictError(
                "Employee already has an active shift",
                details={"employee_id": employee_id},
            ) from exc

        logger.info(
            "Shift %s started: employee=%s station=%s dispenser=%s",
            shift.id, employee_id, station_id, dispenser_id,
        )
        return shift

    def end_shift(
        self,
        shift_id: int,
        final_readings: Mapping[Any, Any] | None,
        cash_collected_cents: int,
        notes: str | None = None,
    ) -> ShiftClosure:
        """
        Close an active shift and produce its reconciliation report.

        Final readings lower than (or equal to) the opening reading do not
        fail the close; the fuel type is flagged on the report instead.

        Raises:
            NotFoundError: no such shift
            InvalidStateError: shift is not active (including a concurrent close)
            ValidationError: malformed readings or cash
        """
        shift_id = coerce_id("shift_id", shift_id)
        shift = self.store.require(Shift, shift_id)
        if shift.status != SHIFT_ACTIVE:
            raise InvalidStateError(
                f"Shift {shift_id} is {shift.status}; only active shifts can be ended",
                details={"shift_id": shift_id, "status": shift.status},
            )

        cash_collected_cents = coerce_cents("cash_collected_cents", cash_collected_cents)
        finals: dict[int, Decimal] = {}
        for key, value in (final_readings or {}).items():
            finals[coerce_id("fuel_type_id", key)] = coerce_quantity("final_reading", value, allow_zero=True)

        readings = []
        for reading in shift.fuel_readings or []:
            updated = dict(reading)
            fuel_type_id = int(reading["fuel_type_id"])
            if fuel_type_id in finals:
                updated["final_reading"] = str(finals[fuel_type_id])
            readings.append(updated)
        known = {int(r["fuel_type_id"]) for r in readings}
        ignored = sorted(set(finals) - known)

        # end_time must stay strictly after start_time
        end_time = max(utcnow(), shift.start_time + timedelta(microseconds=1))

        expected_cash = sum(self.sales.sum_cash_sales(
            shift.station_id,
            shift.start_time,
            end_time,
            employee_id=shift.employee_id,
        ))

        changes = {
            "end_time": end_time,
            "final_cash_cents": cash_collected_cents,
            "fuel_readings": readings,
            "status": SHIFT_COMPLETED,
        }
        if notes is not None:
            changes["notes"] = clean_text(notes, name="notes")

        closed = self.store.update_by_id(Shift, shift_id, changes, where={"status": SHIFT_ACTIVE})
        if closed is None:
            raise InvalidStateError(
                f"Shift {shift_id} was closed concurrently",
                details={"shift_id": shift_id},
            )

        report = ReconciliationReport(
            shift_id=closed.id,
            window_start=closed.start_time,
            window_end=closed.end_time,
            fuels=reconcile_readings(closed.fuel_readings or []),
            initial_cash_cents=closed.initial_cash_cents,
            cash_collected_cents=cash_collected_cents,
            expected_cash_sales_cents=expected_cash,
            ignored_fuel_type_ids=ignored,
        )

        for line in report.fuels:
            if line.is_anomalous:
                logger.warning(
                    "Shift %s fuel type %s meter anomaly (%s): initial=%s final=%s",
                    closed.id, line.fuel_type_id, line.anomaly, line.initial_reading, line.final_reading,
                )
        if ignored:
            logger.warning("Shift %s: final readings for unknown fuel types ignored: %s", closed.id, ignored)

        logger.info(
            "Shift %s completed: employee=%s cash_variance_cents=%s",
            closed.id, closed.employee_id, report.cash_variance_cents,
        )
        return ShiftClosure(shift=closed, reconciliation=report)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_shift(self, shift_id: int) -> Shift:
        return self.store.require(Shift, coerce_id("shift_id", shift_id))

    def get_current_shift(self, employee_id: int) -> Shift | None:
        """The employee's active shift, if any."""
        shifts = self.store.find(Shift, {"employee_id": employee_id, "status": SHIFT_ACTIVE}, limit=1)
        return shifts[0] if shifts else None

    def list_shifts(self, station_id: int, start=None, end=None) -> list[Shift]:
        """Shifts for a station, newest first, optionally bounded by start_time."""
        station_id = coerce_id("station_id", station_id)
        start = coerce_optional_datetime("start", start)
        end = coerce_optional_datetime("end", end)

        conditions = []
        if start is not None:
            conditions.append(Shift.start_time >= start)
        if end is not None:
            conditions.append(Shift.start_time <= end)
        return self.store.find(Shift, {"station_id": station_id}, sort=["-start_time", "-id"], conditions=conditions)

    def require_active_shift(self, employee_id: int, dispenser_id: int) -> Shift:
        """
        Gate for recording sales: the employee must be on an active shift
        at this dispenser.
        """
        shift = self.get_current_shift(employee_id)
        if shift is None:
            raise InvalidStateError(
                f"Employee {employee_id} has no active shift",
                details={"employee_id": employee_id},
            )
        if shift.dispenser_id != dispenser_id:
            raise InvalidStateError(
                f"Employee {employee_id} is on dispenser {shift.dispenser_id}, not {dispenser_id}",
                details={"employee_id": employee_id, "dispenser_id": dispenser_id, "shift_id": shift.id},
            )
        return shift
