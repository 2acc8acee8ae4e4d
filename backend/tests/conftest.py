"""
Pytest fixtures for creditline backend tests.

Provides an app bound to a temporary SQLite file (threads share it, unlike
:memory:), per-test table cleanup, and seed fixtures for one organization.
"""

from decimal import Decimal

import pytest

from creditline import create_app
from creditline.extensions import db
from creditline.models import Customer, Organization, Product, User, UserRole
from creditline.services import ledger_service, notification_service, order_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "creditline-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'connect_args': {'check_same_thread': False, 'timeout': 15},
        },
        'DB_RETRY_BACKOFF': 0.01,
        'BUSINESS_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Clear all data but keep schema."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def notifications(app):
    """Record every notification fired during the test."""
    events = []

    def recorder(event, payload):
        events.append((event, payload))

    notification_service.register_notifier(app, recorder)
    yield events
    app.extensions["creditline.notifiers"].remove(recorder)


# =============================================================================
# SEED DATA
# =============================================================================


@pytest.fixture(scope='function')
def org(db_session):
    org = Organization(name="Acme Distribution", code="ACME", timezone="UTC", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    org = Organization(name="Beta Wholesale", code="BETA", timezone="UTC", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def manager(db_session, org):
    user = User(org_id=org.id, name="Maya Manager", role=UserRole.MANAGER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def deliverer(db_session, org):
    user = User(org_id=org.id, name="Dan Driver", role=UserRole.DELIVERER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_customer(db_session, org):
    """Factory: customer with a credit limit (None = unlimited)."""

    def _make(credit_limit="10000.00", *, name="Corner Shop", org_id=None, is_active=True):
        customer = Customer(
            org_id=org_id or org.id,
            name=name,
            credit_limit=Decimal(credit_limit) if credit_limit is not None else None,
            credit_limit_enabled=credit_limit is not None,
            is_active=is_active,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def make_product(db_session, org):
    """Factory: product whose stock is booked through receive_stock."""
    counter = {"n": 0}

    def _make(price="4000.00", stock=10, *, name=None, org_id=None, is_active=True):
        counter["n"] += 1
        product = Product(
            org_id=org_id or org.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price=Decimal(price),
            current_stock=0,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            ledger_service.receive_stock(product.id, stock)
        return db_session.get(Product, product.id)

    return _make


@pytest.fixture(scope='function')
def customer(make_customer):
    return make_customer("10000.00")


@pytest.fixture(scope='function')
def product(make_product):
    return make_product("4000.00", 10)


@pytest.fixture(scope='function')
def place_order(org):
    """Factory: create_order for [(product, qty), ...]."""

    def _place(customer, lines, key=None):
        items = [{"product_id": p.id, "quantity": q} for p, q in lines]
        return order_service.create_order(customer.id, org.id, items, key)

    return _place


@pytest.fixture(scope='function')
def make_ready():
    """Walk an order through the warehouse statuses up to ready."""

    def _ready(order):
        for status in ("confirmed", "preparing", "ready"):
            order = order_service.update_order_status(order.id, status)
        return order

    return _ready
