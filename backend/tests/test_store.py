# Overview: Pytest coverage for the ledger store adapter.

"""
Ledger Store Tests

Covers the record-store contract the services rely on:
- atomic increments and conditional updates in a single statement
- optimistic version checks (StaleDataError on mismatch)
- driver failures mapped to StoreTimeoutError / StoreUnavailableError
- unique violations mapped to ConflictError
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stationledger.errors import ConflictError, NotFoundError, StoreTimeoutError, StoreUnavailableError
from stationledger.models import Customer, FuelType, Sale
from stationledger.services.concurrency import run_with_retry
from stationledger.store import LedgerStore


class FailingSession:
    """Session double whose statements fail with a driver error."""

    def __init__(self, message):
        self.message = message
        self.rollbacks = 0

    def execute(self, stmt):
        raise OperationalError("UPDATE customers", {}, Exception(self.message))

    def commit(self):
        pass

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


class TestCrud:
    def test_create_and_get(self, store):
        fuel = store.create(FuelType, name="Diesel", code="DSL", price_per_liter_cents=172)
        loaded = store.get_by_id(FuelType, fuel.id)
        assert loaded.code == "DSL"
        assert loaded.price_per_liter_cents == 172

    def test_require_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.require(Customer, 424242)

    def test_get_missing_returns_none(self, store):
        assert store.get_by_id(Customer, 424242) is None

    def test_unique_violation_is_conflict(self, store):
        store.create(FuelType, name="Diesel", code="DSL", price_per_liter_cents=172)
        with pytest.raises(ConflictError):
            store.create(FuelType, name="Diesel again", code="DSL", price_per_liter_cents=180)

    def test_find_filters_and_sorts(self, store):
        store.create(Customer, company_name="B", credit_limit_cents=0, status="active")
        store.create(Customer, company_name="A", credit_limit_cents=0, status="active")
        store.create(Customer, company_name="C", credit_limit_cents=0, status="suspended")

        names = [c.company_name for c in store.find(Customer, {"status": "active"}, sort=["company_name"])]
        assert names == ["A", "B"]

        names = [c.company_name for c in store.find(Customer, sort=["-company_name"], limit=2)]
        assert names == ["C", "B"]

    def test_delete_by_id(self, store):
        cust = store.create(Customer, company_name="Gone", credit_limit_cents=0)
        assert store.delete_by_id(Customer, cust.id) is True
        assert store.get_by_id(Customer, cust.id) is None
        assert store.delete_by_id(Customer, cust.id) is False


class TestAtomicUpdates:
    def test_increment_is_applied_in_store(self, store, customer):
        store.update_by_id(Customer, customer.id, increments={"current_balance_cents": 2000})
        updated = store.update_by_id(Customer, customer.id, increments={"current_balance_cents": -500})
        assert updated.current_balance_cents == 1500

    def test_update_bumps_version(self, store, customer):
        before = store.get_by_id(Customer, customer.id).version_id
        updated = store.update_by_id(Customer, customer.id, {"status": "suspended"})
        assert updated.version_id == before + 1

    def test_conditional_update_returns_none_when_condition_fails(self, store, customer):
        result = store.update_by_id(Customer, customer.id, {"status": "inactive"}, where={"status": "suspended"})
        assert result is None
        assert store.get_by_id(Customer, customer.id).status == "active"

    def test_is_null_condition(self, store, services, customer, regular):
        sale = services.sales.record_sale(
            station_id=1, dispenser_id=1, employee_id=1, fuel_type_id=regular.id,
            quantity_liters="10", payment_method="cash",
        )
        assert store.update_by_id(Sale, sale.id, {"invoice_id": 99}, where={"invoice_id": None}) is not None
        assert store.update_by_id(Sale, sale.id, {"invoice_id": 100}, where={"invoice_id": None}) is None
        assert store.get_by_id(Sale, sale.id).invoice_id == 99

    def test_update_missing_record_returns_none(self, store):
        assert store.update_by_id(Customer, 424242, {"status": "inactive"}) is None

    def test_expected_version_mismatch_raises_stale(self, store, customer):
        current = store.get_by_id(Customer, customer.id).version_id
        store.update_by_id(Customer, customer.id, {"status": "suspended"})
        with pytest.raises(StaleDataError):
            store.update_by_id(Customer, customer.id, {"status": "inactive"}, expected_version=current)

    def test_expected_version_match_updates(self, store, customer):
        current = store.get_by_id(Customer, customer.id).version_id
        updated = store.update_by_id(Customer, customer.id, {"status": "inactive"}, expected_version=current)
        assert updated.status == "inactive"


class TestStoreFailures:
    def test_lock_timeout_maps_to_store_timeout(self):
        session = FailingSession("database is locked")
        store = LedgerStore(session)
        with pytest.raises(StoreTimeoutError):
            store.update_where(Customer, {"id": 1}, {"status": "inactive"})
        assert session.rollbacks == 1

    def test_driver_failure_maps_to_store_unavailable(self):
        store = LedgerStore(FailingSession("disk I/O error"))
        with pytest.raises(StoreUnavailableError):
            store.find(Customer)

    def test_timeout_is_not_not_found(self):
        store = LedgerStore(FailingSession("canceling statement due to statement timeout"))
        with pytest.raises(StoreTimeoutError) as excinfo:
            store.update_where(Customer, {"id": 1}, {"status": "inactive"})
        assert not isinstance(excinfo.value, NotFoundError)
        assert excinfo.value.http_status == 504


class TestRunWithRetry:
    def test_retries_stale_then_succeeds(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version moved")
            return "ok"

        assert run_with_retry(flaky, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self):
        def always_stale():
            raise StaleDataError("version moved")

        with pytest.raises(StaleDataError):
            run_with_retry(always_stale, attempts=2, backoff_base=0)

    def test_other_errors_are_not_retried(self):
        calls = []

        def unavailable():
            calls.append(1)
            raise StoreUnavailableError("down")

        with pytest.raises(StoreUnavailableError):
            run_with_retry(unavailable, attempts=3, backoff_base=0)
        assert len(calls) == 1
