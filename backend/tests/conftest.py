"""
Pytest fixtures for orderledger backend tests.

Provides the test app (in-memory SQLite), a clean session per test,
service wiring with a recording notification dispatcher, and seed
counterparties / items.
"""

import pytest

from orderledger import create_app
from orderledger.extensions import db
from orderledger.models import Customer, Supplier
from orderledger.services.container import build_services
from orderledger.services.notification_service import RecordingDispatcher


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OVERPAYMENT_POLICY': 'strict',
        'ALLOW_NEGATIVE_STOCK': False,
        'DEFAULT_WAREHOUSE': 'MAIN',
        'PAGE_SIZE_MAX': 50,
    })

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
def notifier(app):
    """Recording dispatcher, also registered on the app for route tests."""
    recorder = RecordingDispatcher()
    app.extensions["orderledger.notifications"] = recorder
    yield recorder
    app.extensions.pop("orderledger.notifications", None)


@pytest.fixture(scope='function')
def make_services(app, db_session, notifier):
    """Build services with config overrides, e.g. make_services(OVERPAYMENT_POLICY="clamp")."""
    def _make(**overrides):
        config = dict(app.config)
        config.update(overrides)
        return build_services(db_session, config, notifier)
    return _make


@pytest.fixture(scope='function')
def services(make_services):
    return make_services()


@pytest.fixture(scope='function')
def supplier(db_session):
    party = Supplier(code="SUP-A", name="Acme Supplies")
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def customer(db_session):
    party = Customer(code="CUS-A", name="Beta Retail")
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def item(services):
    """Item X: no opening stock, price 1000."""
    return services.ledger.register_item(
        code="ITEM-X", name="Item X", low_stock=5, initial_stock=0, initial_price_cents=1000
    )


@pytest.fixture(scope='function')
def second_item(services):
    """Item Y: 50 in stock."""
    return services.ledger.register_item(
        code="ITEM-Y", name="Item Y", low_stock=10, initial_stock=50, initial_price_cents=2500
    )


@pytest.fixture(scope='function')
def place_order(services, supplier, customer):
    """Create an order and move it to "ordered"."""
    def _place(direction, lines, confirm=True, **header):
        if direction == "purchase":
            header.setdefault("supplier_id", supplier.id)
        else:
            header.setdefault("customer_id", customer.id)
        order = services.orders.create(direction, header, lines)
        if confirm:
            order = services.orders.transition_status(order.id, "ordered")
        return order
    return _place
