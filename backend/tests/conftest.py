"""
Pytest fixtures for Station Ledger backend tests.

Provides test database setup, ledger services, record fixtures, and test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from stationledger import create_app
from stationledger.config import TestConfig
from stationledger.extensions import db
from stationledger.models import Customer, FuelType, Vehicle
from stationledger.services import build_services
from stationledger.services.payment_service import PaymentProcessor
from stationledger.store import LedgerStore
from stationledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    return LedgerStore()


@pytest.fixture(scope='function')
def services(store):
    """Ledger services without the active-shift gate on sales."""
    built = build_services(store, {"REQUIRE_ACTIVE_SHIFT_FOR_SALES": False, "INVOICE_NUMBER_PREFIX": "INV"})
    built.payments = PaymentProcessor(store, backoff_base=0)
    return built


@pytest.fixture(scope='function')
def gated_services(store):
    """Ledger services with sales gated on an active shift."""
    return build_services(store, {"REQUIRE_ACTIVE_SHIFT_FOR_SALES": True})


@pytest.fixture(scope='function')
def regular(db_session):
    """Regular unleaded at 1.65/L."""
    fuel = FuelType(name="Regular Unleaded", code="REG", price_per_liter_cents=165)
    db_session.add(fuel)
    db_session.commit()
    return fuel


@pytest.fixture(scope='function')
def diesel(db_session):
    """Diesel at 1.72/L."""
    fuel = FuelType(name="Diesel", code="DSL", price_per_liter_cents=172)
    db_session.add(fuel)
    db_session.commit()
    return fuel


@pytest.fixture(scope='function')
def customer(db_session):
    """Active fleet customer with a 5,000.00 credit limit and no balance."""
    cust = Customer(company_name="Acme Haulage", credit_limit_cents=500000, current_balance_cents=0)
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def other_customer(db_session):
    cust = Customer(company_name="Beta Logistics", credit_limit_cents=100000, current_balance_cents=0)
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def truck(db_session, customer, diesel):
    vehicle = Vehicle(
        customer_id=customer.id,
        license_plate="ABC-1234",
        make="Volvo",
        model="FH16",
        year=2021,
        fuel_type_id=diesel.id,
    )
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


def make_credit_sale(services, customer, fuel, liters="40", **overrides):
    """Record a credit-account sale for a customer."""
    fields = dict(
        station_id=1,
        dispenser_id=2,
        employee_id=7,
        fuel_type_id=fuel.id,
        quantity_liters=liters,
        payment_method="credit_account",
        customer_id=customer.id,
    )
    fields.update(overrides)
    return services.sales.record_sale(**fields)


def make_invoice(services, customer, amounts, *, days_until_due=30, issue_date=None):
    """Create an invoice with one item per amount (quantity 1 x amount)."""
    issued = issue_date or utcnow()
    result = services.invoices.create_invoice(
        customer_id=customer.id,
        issue_date=issued,
        due_date=issued + timedelta(days=days_until_due),
        items=[
            {"description": f"Item {i}", "quantity": Decimal("1"), "unit_price_cents": amount}
            for i, amount in enumerate(amounts, start=1)
        ],
    )
    return result.invoice
