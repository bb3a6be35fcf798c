"""
Pytest fixtures for the cash reconciliation backend tests.

Provides test database setup, one store per test with a user of every role,
and helpers for funding pools and building request headers.
"""

from datetime import date

import pytest

from dsr import create_app
from dsr.config import TestConfig, get_cash_policy
from dsr.extensions import db
from dsr.models import Store, User, UserStoreAccess
from dsr.services import adjustment_service
from dsr.time_utils import business_today


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
def today(app) -> date:
    return business_today(get_cash_policy().business_timezone)


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(code="S1", name="Store One", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(code="S2", name="Store Two", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, username, role, store=None):
    user = User(
        username=username,
        full_name=username.title(),
        role=role,
        default_store_id=store.id if store else None,
        is_active=True,
    )
    db_session.add(user)
    db_session.flush()
    if store is not None:
        db_session.add(UserStoreAccess(user_id=user.id, store_id=store.id, can_view=True))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def super_user(db_session):
    return _make_user(db_session, "admin", "super_user")


@pytest.fixture(scope='function')
def accounts(db_session):
    return _make_user(db_session, "accounts", "accounts_incharge")


@pytest.fixture(scope='function')
def manager(db_session, store):
    return _make_user(db_session, "manager", "store_manager", store)


@pytest.fixture(scope='function')
def cashier(db_session, store):
    return _make_user(db_session, "cashier", "cashier", store)


@pytest.fixture(scope='function')
def other_cashier(db_session, store):
    return _make_user(db_session, "cashier2", "cashier", store)


@pytest.fixture(scope='function')
def fund_pool(db_session, super_user, accounts):
    """
    Put an opening balance into a pool through the adjustment workflow
    (initial_setup request, approval, application).
    """
    def _fund(store, pool, amount_paise):
        adjustment = adjustment_service.request_adjustment(
            store_id=store.id,
            pool=pool,
            adjustment_type="initial_setup",
            amount_paise=amount_paise,
            reason="Opening balance",
            requested_by=super_user.id,
        )
        db_session.commit()
        adjustment_service.approve_adjustment(adjustment_id=adjustment.id, approved_by=accounts.id)
        db_session.commit()
        adjustment_service.apply_adjustment(adjustment_id=adjustment.id, applied_by=accounts.id)
        db_session.commit()
        return adjustment

    return _fund


def headers_for(user) -> dict:
    """Helper to create identity headers."""
    return {"X-User-Id": str(user.id)}
