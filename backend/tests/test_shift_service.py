# Overview: Pytest coverage for the shift lifecycle and reconciliation.

"""
Shift Manager Tests

- One active shift per employee, including when the pre-check is raced
- active -> completed is the only transition
- Meter anomalies (final <= initial) are flagged, never blocking
- Cash variance = collected - initial float - cash sales in the window
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stationledger.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from stationledger.extensions import db
from stationledger.models import Shift
from stationledger.services.shift_service import ANOMALY_NEGATIVE_DELTA, ANOMALY_ZERO_DELTA, ShiftManager
from stationledger.store import LedgerStore


def start(services, employee_id=7, dispenser_id=2, readings=None, cash=20000):
    return services.shifts.start_shift(
        employee_id=employee_id,
        station_id=1,
        dispenser_id=dispenser_id,
        initial_cash_cents=cash,
        fuel_readings=readings,
    )


class TestStartShift:
    def test_start_creates_active_shift(self, services, regular):
        shift = start(services, readings=[{"fuel_type_id": regular.id, "initial_reading": "1000.5"}])

        assert shift.status == "active"
        assert shift.end_time is None
        assert shift.final_cash_cents is None
        assert shift.fuel_readings == [
            {"fuel_type_id": regular.id, "initial_reading": "1000.500", "final_reading": None}
        ]

    def test_second_start_for_same_employee_conflicts(self, services, store):
        start(services)
        with pytest.raises(ConflictError):
            start(services, dispenser_id=3)

        assert len(store.find(Shift, {"employee_id": 7, "status": "active"})) == 1

    def test_race_past_precheck_is_stopped_by_store(self, services, store, monkeypatch):
        """Two requests that both pass the pre-check: the unique index rejects the second."""
        start(services)
        monkeypatch.setattr(services.shifts, "get_current_shift", lambda employee_id: None)

        with pytest.raises(ConflictError) as excinfo:
            start(services, dispenser_id=3)

        assert "already has an active shift" in excinfo.value.message
        assert len(store.find(Shift, {"employee_id": 7, "status": "active"})) == 1

    def test_other_employees_can_start(self, services):
        start(services, employee_id=7)
        other = start(services, employee_id=8)
        assert other.status == "active"

    def test_negative_cash_rejected(self, services, store):
        with pytest.raises(ValidationError):
            start(services, cash=-1)
        assert store.find(Shift) == []

    def test_duplicate_fuel_reading_rejected(self, services, regular):
        readings = [
            {"fuel_type_id": regular.id, "initial_reading": "10"},
            {"fuel_type_id": regular.id, "initial_reading": "20"},
        ]
        with pytest.raises(ValidationError):
            start(services, readings=readings)

    def test_out_of_range_reading_rejected(self, services, store, regular):
        with pytest.raises(ValidationError):
            start(services, readings=[{"fuel_type_id": regular.id, "initial_reading": "1e40"}])
        assert store.find(Shift) == []

    def test_can_start_again_after_end(self, services):
        first = start(services)
        services.shifts.end_shift(first.id, {}, 20000)
        second = start(services)
        assert second.id != first.id


class TestConcurrentStart:
    """Two threads on a file-backed database, each with its own connection."""

    def test_only_one_concurrent_start_wins(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'shifts.sqlite3'}",
            connect_args={"check_same_thread": False},
        )
        db.metadata.create_all(engine)
        make_session = sessionmaker(bind=engine)
        both_checked = threading.Barrier(2, timeout=5)
        started, conflicts = [], []

        def worker(dispenser_id):
            session = make_session()
            manager = ShiftManager(LedgerStore(session, timeout=5), sales=None)
            precheck = manager.get_current_shift

            def precheck_then_wait(employee_id):
                current = precheck(employee_id)
                both_checked.wait()
                return current

            manager.get_current_shift = precheck_then_wait
            try:
                started.append(manager.start_shift(
                    employee_id=7, station_id=1, dispenser_id=dispenser_id, initial_cash_cents=0,
                ).id)
            except ConflictError as exc:
                conflicts.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=worker, args=(dispenser_id,)) for dispenser_id in (2, 3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        session = make_session()
        try:
            active = session.query(Shift).filter_by(employee_id=7, status="active").all()
        finally:
            session.close()
            engine.dispose()

        assert len(started) == 1
        assert len(conflicts) == 1
        assert [s.id for s in active] == started


class TestEndShift:
    def test_end_completes_shift(self, services, regular):
        shift = start(services, readings=[{"fuel_type_id": regular.id, "initial_reading": "1000"}])

        closure = services.shifts.end_shift(shift.id, {regular.id: "1250.5"}, 20000, notes="quiet day")

        assert closure.shift.status == "completed"
        assert closure.shift.end_time > closure.shift.start_time
        assert closure.shift.final_cash_cents == 20000
        assert closure.shift.notes == "quiet day"
        line = closure.reconciliation.fuels[0]
        assert line.dispensed_liters == Decimal("250.5")
        assert line.anomaly is None

    def test_lower_final_reading_is_flagged_not_rejected(self, services, regular, diesel):
        shift = start(services, readings=[
            {"fuel_type_id": regular.id, "initial_reading": "1000"},
            {"fuel_type_id": diesel.id, "initial_reading": "500"},
        ])

        closure = services.shifts.end_shift(shift.id, {regular.id: "900", diesel.id: "650"}, 20000)

        assert closure.shift.status == "completed"
        report = closure.reconciliation
        assert report.anomalous_fuel_type_ids == [regular.id]
        by_fuel = {f.fuel_type_id: f for f in report.fuels}
        assert by_fuel[regular.id].anomaly == ANOMALY_NEGATIVE_DELTA
        assert by_fuel[regular.id].dispensed_liters == Decimal("-100")
        assert by_fuel[diesel.id].dispensed_liters == Decimal("150")

    def test_zero_delta_is_flagged(self, services, regular):
        shift = start(services, readings=[{"fuel_type_id": regular.id, "initial_reading": "1000"}])
        closure = services.shifts.end_shift(shift.id, {regular.id: "1000"}, 20000)
        assert closure.reconciliation.fuels[0].anomaly == ANOMALY_ZERO_DELTA

    def test_unreported_fuel_has_null_volume(self, services, regular, diesel):
        shift = start(services, readings=[
            {"fuel_type_id": regular.id, "initial_reading": "1000"},
            {"fuel_type_id": diesel.id, "initial_reading": "500"},
        ])
        closure = services.shifts.end_shift(shift.id, {regular.id: "1100"}, 20000)

        by_fuel = {f.fuel_type_id: f for f in closure.reconciliation.fuels}
        assert by_fuel[diesel.id].final_reading is None
        assert by_fuel[diesel.id].dispensed_liters is None
        assert by_fuel[diesel.id].anomaly is None

    def test_unknown_fuel_type_readings_are_reported_as_ignored(self, services, regular):
        shift = start(services, readings=[{"fuel_type_id": regular.id, "initial_reading": "1000"}])
        closure = services.shifts.end_shift(shift.id, {regular.id: "1100", 9999: "5"}, 20000)
        assert closure.reconciliation.ignored_fuel_type_ids == [9999]
        assert len(closure.shift.fuel_readings) == 1

    def test_cash_variance_uses_cash_sales_in_window(self, gated_services, regular):
        shift = start(gated_services, cash=10000)
        gated_services.sales.record_sale(
            station_id=1, dispenser_id=2, employee_id=7, fuel_type_id=regular.id,
            quantity_liters="20", payment_method="cash",
        )
        gated_services.sales.record_sale(
            station_id=1, dispenser_id=2, employee_id=7, fuel_type_id=regular.id,
            quantity_liters="10", payment_method="credit_card",
        )

        closure = gated_services.shifts.end_shift(shift.id, {}, 13200)

        report = closure.reconciliation
        assert report.expected_cash_sales_cents == 3300
        assert report.cash_variance_cents == 13200 - 10000 - 3300

    def test_cash_variance_is_informational(self, services):
        shift = start(services, cash=10000)
        closure = services.shifts.end_shift(shift.id, {}, 5000)
        assert closure.shift.status == "completed"
        assert closure.reconciliation.cash_variance_cents == -5000

    def test_end_missing_shift(self, services):
        with pytest.raises(NotFoundError):
            services.shifts.end_shift(424242, {}, 0)

    def test_end_completed_shift_is_invalid_state(self, services):
        shift = start(services)
        services.shifts.end_shift(shift.id, {}, 20000)
        with pytest.raises(InvalidStateError):
            services.shifts.end_shift(shift.id, {}, 20000)

    def test_concurrent_close_loses_conditional_update(self, services, store, monkeypatch):
        shift = start(services)
        original = store.update_by_id

        def close_first(model, record_id, values=None, **kwargs):
            if model is Shift:
                original(model, record_id, {"status": "completed"})
            return original(model, record_id, values, **kwargs)

        monkeypatch.setattr(store, "update_by_id", close_first)
        with pytest.raises(InvalidStateError):
            services.shifts.end_shift(shift.id, {}, 20000)


class TestShiftQueries:
    def test_current_shift(self, services):
        assert services.shifts.get_current_shift(7) is None
        shift = start(services)
        assert services.shifts.get_current_shift(7).id == shift.id

    def test_list_shifts_newest_first(self, services):
        first = start(services, employee_id=7)
        second = start(services, employee_id=8)
        ids = [s.id for s in services.shifts.list_shifts(1)]
        assert ids == [second.id, first.id]

    def test_require_active_shift_checks_dispenser(self, services):
        start(services, dispenser_id=2)
        assert services.shifts.require_active_shift(7, 2).dispenser_id == 2
        with pytest.raises(InvalidStateError):
            services.shifts.require_active_shift(7, 3)
        with pytest.raises(InvalidStateError):
            services.shifts.require_active_shift(8, 2)
