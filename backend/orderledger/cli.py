# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables (dev only; use `flask db upgrade` elsewhere).
# - python -m flask system seed
#   Idempotent demo data: one supplier, one customer, two items with opening stock.
#
# Ledger inspection/repair:
# - python -m flask ledger verify
#   Compare every cached balance with a replay of its ledger entries.
# - python -m flask ledger reindex --item-id 3 [--warehouse MAIN] [--measure stock]
#   Recompute running values and the cache for one item (all measures by default).
#
# Orders:
# - python -m flask orders due [--days 3]
#   List orders still owing money that fall due within the window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Item, Measure, Supplier
from .errors import OrderLedgerError
from .services.concurrency import atomic
from .services.container import build_services
from .services.notification_service import get_dispatcher


def _services():
    return build_services(db.session, current_app.config, get_dispatcher(current_app))


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables for a fresh local database."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed')
@with_appcontext
def seed_demo():
    """Idempotent demo data."""
    services = _services()

    if not db.session.query(Supplier).filter_by(code="SUP-001").first():
        services.suppliers.create({"code": "SUP-001", "name": "Default Supplier"})
        click.echo("PASS Created supplier SUP-001")
    if not db.session.query(Customer).filter_by(code="CUS-001").first():
        services.customers.create({"code": "CUS-001", "name": "Walk-in Customer"})
        click.echo("PASS Created customer CUS-001")

    for code, name, stock, price in (("ITM-001", "Widget", 100, 1500), ("ITM-002", "Gadget", 20, 4200)):
        if db.session.query(Item).filter_by(code=code).first():
            click.echo(f"SKIP Item {code} exists")
            continue
        services.ledger.register_item(
            code=code, name=name, low_stock=5, initial_stock=stock, initial_price_cents=price
        )
        click.echo(f"PASS Created item {code} (stock={stock}, price_cents={price})")


@click.group('ledger')
def ledger_group():
    """Ledger inspection and repair."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Exit non-zero when any cached balance disagrees with its ledger."""
    mismatches = _services().ledger.verify_all()
    if not mismatches:
        click.echo("PASS All balances match their ledger")
        return
    for report in mismatches:
        click.echo(
            f"FAIL item={report['item_id']} warehouse={report['warehouse_code']} "
            f"stock={report['stock']} price={report['price']}"
        )
    raise SystemExit(1)


@ledger_group.command('reindex')
@click.option('--item-id', type=int, required=True)
@click.option('--warehouse', default=None, help='Warehouse code (default: DEFAULT_WAREHOUSE)')
@click.option('--measure', type=click.Choice([m.value for m in Measure]), default=None)
@with_appcontext
def reindex_ledger(item_id, warehouse, measure):
    """Recompute running values and the cached balance for one item."""
    services = _services()
    warehouse = warehouse or current_app.config["DEFAULT_WAREHOUSE"]
    measures = [Measure(measure)] if measure else list(Measure)
    try:
        with atomic(db.session):
            services.ledger.get_item(item_id)
            results = {m.value: services.ledger.reindex(item_id, warehouse, m) for m in measures}
    except OrderLedgerError as e:
        raise click.ClickException(e.message)
    for name, value in results.items():
        click.echo(f"PASS item={item_id} warehouse={warehouse} {name}={value}")


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('due')
@click.option('--days', type=int, default=None, help='Look-ahead window (default: DUE_SOON_DAYS)')
@with_appcontext
def due_orders(days):
    """List orders that still owe money and fall due soon."""
    days = current_app.config["DUE_SOON_DAYS"] if days is None else days
    orders = _services().orders.list_due(days)
    if not orders:
        click.echo(f"No orders due within {days} days")
        return
    for o in orders:
        flag = "OVERDUE" if o["is_overdue"] else f"due in {o['days_until_due']}d"
        click.echo(f"{o['order_number']:<22} {o['payment_status']:<8} outstanding={o['outstanding_cents']:>10} {flag}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(orders_group)
