"""
Pytest fixtures for posledger backend tests.

Provides test database setup, ledger factories, and test client.
"""

import pytest
from posledger import create_app
from posledger.extensions import db
from posledger.services import cashbox_service, customer_service, inventory_service

ACTOR_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BASE_CURRENCY': 'LYD',
        'LOG_LEVEL': 'WARNING',
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
def actor_id():
    return ACTOR_ID


@pytest.fixture(scope='function')
def headers():
    """Headers the upstream gateway forwards for an authenticated user."""
    return {'X-User-Id': str(ACTOR_ID)}


@pytest.fixture(scope='function')
def cashbox(db_session):
    """Default cashbox with zero balances."""
    return cashbox_service.ensure_default_cashbox()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product with opening stock recorded as an 'in' movement."""
    counter = {"n": 0}

    def _make(*, stock=5, price_cents=1000, cost_cents=600, name=None, sku=None, threshold=2,
              barcode=None, category_id=None):
        counter["n"] += 1
        n = counter["n"]
        return inventory_service.create_product(
            patch={
                "sku": sku or f"SKU-{n:03d}",
                "name": name or f"Product {n}",
                "selling_price_cents": price_cents,
                "cost_price_cents": cost_cents,
                "low_stock_threshold": threshold,
                "barcode": barcode,
                "category_id": category_id,
            },
            created_by_user_id=ACTOR_ID,
            initial_stock=stock,
        )

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: create a customer with a zero balance."""
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        return customer_service.create_customer(
            patch={"name": name or f"Customer {n}", "phone": f"+218-91-000-{n:04d}"}
        )

    return _make
