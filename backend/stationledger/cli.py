# Overview: Flask CLI command group for ledger bootstrap and maintenance.

# backend/stationledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db
#   Create all tables for a development database (use flask db upgrade elsewhere).
# - python -m flask ledger seed-fuel-types
#   Insert the default fuel grades when missing (idempotent).
# - python -m flask ledger mark-overdue [--as-of 2026-10-01]
#   Move unpaid pending invoices past their due date to overdue.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import FuelType
from .services import get_services


DEFAULT_FUEL_TYPES = [
    # (code, name, price_per_liter_cents)
    ("REG", "Regular Unleaded", 165),
    ("PRM", "Premium Unleaded", 189),
    ("DSL", "Diesel", 172),
]


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and maintenance commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables (development only)."""
    db.create_all()
    click.echo("OK Ledger tables created")


@ledger_group.command('seed-fuel-types')
@with_appcontext
def seed_fuel_types():
    """Insert default fuel grades that do not exist yet."""
    store = get_services().store
    created = 0
    for code, name, price in DEFAULT_FUEL_TYPES:
        if store.find(FuelType, {"code": code}, limit=1):
            click.echo(f"SKIP {code} already exists")
            continue
        store.create(FuelType, code=code, name=name, price_per_liter_cents=price)
        created += 1
        click.echo(f"OK {code} {name} ({price} cents/L)")
    click.echo(f"Created {created} fuel type(s)")


@ledger_group.command('mark-overdue')
@click.option('--as-of', 'as_of', default=None, help='ISO date/datetime (default: now, UTC)')
@with_appcontext
def mark_overdue_cli(as_of):
    """Mark unpaid pending invoices past their due date as overdue."""
    try:
        marked = get_services().invoices.mark_overdue(as_of)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"Marked {len(marked)} invoice(s) overdue")
    for invoice_id in marked:
        click.echo(f"  invoice {invoice_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
