# Overview: Pytest coverage for fuel sale recording and cash aggregation.

from datetime import timedelta
from decimal import Decimal

import pytest

from stationledger.errors import InvalidStateError, NotFoundError, ValidationError
from stationledger.models import Customer, Sale
from stationledger.time_utils import utcnow


def cash_sale(services, fuel, liters="10", **overrides):
    fields = dict(
        station_id=1,
        dispenser_id=2,
        employee_id=7,
        fuel_type_id=fuel.id,
        quantity_liters=liters,
        payment_method="cash",
    )
    fields.update(overrides)
    return services.sales.record_sale(**fields)


class TestRecordSale:
    def test_total_is_computed(self, services, regular):
        sale = cash_sale(services, regular, liters="42.5")
        assert sale.quantity_liters == Decimal("42.5")
        assert sale.price_per_liter_cents == 165
        assert sale.total_amount_cents == 7013  # 42.5 x 165 = 7012.5, half-up
        assert sale.invoice_id is None

    def test_explicit_price_overrides_fuel_price(self, services, regular):
        sale = cash_sale(services, regular, liters="10", price_per_liter_cents=150)
        assert sale.total_amount_cents == 1500

    def test_zero_price_allowed(self, services, regular):
        sale = cash_sale(services, regular, price_per_liter_cents=0)
        assert sale.total_amount_cents == 0

    @pytest.mark.parametrize("liters", ["0", "-5", "abc", None])
    def test_non_positive_or_bad_quantity_rejected(self, services, store, regular, liters):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, liters=liters)
        assert store.find(Sale) == []

    def test_negative_price_rejected(self, services, regular):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, price_per_liter_cents=-1)

    def test_huge_quantity_rejected(self, services, store, regular):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, liters="1e40")
        assert store.find(Sale) == []

    def test_total_over_max_rejected(self, services, store, regular):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, liters="100000000", price_per_liter_cents=999)
        assert store.find(Sale) == []

    def test_unknown_payment_method_rejected(self, services, regular):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, payment_method="barter")

    def test_unknown_fuel_type(self, services, regular):
        with pytest.raises(NotFoundError):
            cash_sale(services, regular, fuel_type_id=424242)

    def test_credit_account_requires_customer(self, services, regular):
        with pytest.raises(ValidationError):
            cash_sale(services, regular, payment_method="credit_account")

    def test_credit_account_for_suspended_customer(self, services, store, regular, customer):
        store.update_by_id(Customer, customer.id, {"status": "suspended"})
        with pytest.raises(InvalidStateError):
            cash_sale(services, regular, payment_method="credit_account", customer_id=customer.id)

    def test_vehicle_must_belong_to_customer(self, services, diesel, truck, other_customer):
        with pytest.raises(ValidationError):
            cash_sale(services, diesel, customer_id=other_customer.id, vehicle_id=truck.id)

    def test_recording_does_not_touch_customer_balance(self, services, store, regular, customer):
        cash_sale(services, regular, payment_method="credit_account", customer_id=customer.id)
        assert store.get_by_id(Customer, customer.id).current_balance_cents == 0

    def test_shift_gate_requires_active_shift(self, gated_services, regular):
        with pytest.raises(InvalidStateError):
            cash_sale(gated_services, regular)

        gated_services.shifts.start_shift(
            employee_id=7, station_id=1, dispenser_id=2, initial_cash_cents=0,
        )
        assert cash_sale(gated_services, regular).id is not None
        with pytest.raises(InvalidStateError):
            cash_sale(gated_services, regular, dispenser_id=5)


class TestSumCashSales:
    def test_sums_only_cash_in_window(self, services, regular):
        now = utcnow()
        cash_sale(services, regular, liters="10", transaction_date=now - timedelta(hours=1))
        cash_sale(services, regular, liters="20", transaction_date=now - timedelta(minutes=30))
        cash_sale(services, regular, liters="5", payment_method="debit_card", transaction_date=now - timedelta(minutes=20))
        cash_sale(services, regular, liters="7", transaction_date=now - timedelta(days=2))
        cash_sale(services, regular, liters="3", station_id=2, transaction_date=now - timedelta(minutes=10))

        totals = services.sales.sum_cash_sales(1, now - timedelta(hours=2), now)
        assert sum(totals) == 1650 + 3300

    def test_window_bounds_are_inclusive(self, services, regular):
        moment = utcnow().replace(microsecond=0)
        cash_sale(services, regular, liters="10", transaction_date=moment)
        assert sum(services.sales.sum_cash_sales(1, moment, moment)) == 1650

    def test_sequence_is_restartable(self, services, regular):
        now = utcnow()
        cash_sale(services, regular, liters="10", transaction_date=now - timedelta(minutes=5))
        totals = services.sales.sum_cash_sales(1, now - timedelta(hours=1), now + timedelta(hours=1))

        assert list(totals) == [1650]
        assert list(totals) == [1650]

        cash_sale(services, regular, liters="20", transaction_date=now)
        assert sum(totals) == 1650 + 3300

    def test_filter_by_employee(self, services, regular):
        now = utcnow()
        cash_sale(services, regular, liters="10", employee_id=7, transaction_date=now)
        cash_sale(services, regular, liters="20", employee_id=8, transaction_date=now)
        totals = services.sales.sum_cash_sales(1, now - timedelta(minutes=1), now, employee_id=8)
        assert sum(totals) == 3300

    def test_inverted_window_rejected(self, services):
        now = utcnow()
        with pytest.raises(ValidationError):
            services.sales.sum_cash_sales(1, now, now - timedelta(hours=1))


class TestSaleQueries:
    def test_uninvoiced_sales(self, services, regular, customer):
        sale = cash_sale(services, regular, payment_method="credit_account", customer_id=customer.id)
        assert [s.id for s in services.sales.uninvoiced_sales(customer.id)] == [sale.id]

    def test_uninvoiced_sales_unknown_customer(self, services):
        with pytest.raises(NotFoundError):
            services.sales.uninvoiced_sales(424242)

    def test_list_sales_newest_first(self, services, regular):
        now = utcnow()
        older = cash_sale(services, regular, transaction_date=now - timedelta(hours=1))
        newer = cash_sale(services, regular, transaction_date=now)
        assert [s.id for s in services.sales.list_sales(1)] == [newer.id, older.id]

    def test_vehicle_sales(self, services, diesel, customer, truck):
        sale = cash_sale(services, diesel, customer_id=customer.id, vehicle_id=truck.id)
        assert [s.id for s in services.sales.vehicle_sales(truck.id)] == [sale.id]
