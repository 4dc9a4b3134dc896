"""
Pytest fixtures for stock ledger tests.

Provides an in-memory database, per-test table cleanup and catalog fixtures.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Sku, Store
from stockledger.services import stock_service


ACTOR_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def store_a(db_session):
    store = Store(name="Store A", code="A")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session):
    store = Store(name="Store B", code="B")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def sku_s1(db_session):
    sku = Sku(sku="S1", name="T-Shirt Red M")
    db_session.add(sku)
    db_session.commit()
    return sku


@pytest.fixture(scope='function')
def stocked(db_session, store_a, store_b, sku_s1):
    """S1 at store A: quantity 10, threshold 5. Returns (sku_id, store_a_id, store_b_id)."""
    stock_service.add_stock(sku_s1.id, store_a.id, 10, actor_id=ACTOR_ID, notes="Seed stock")
    return sku_s1.id, store_a.id, store_b.id
