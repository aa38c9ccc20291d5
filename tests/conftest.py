"""
Pytest configuration and fixtures for ChargeUp backend tests.

Provides test database isolation and common test utilities.
"""
import os
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read at import time, so these must be set before chargeup is imported
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["WORKERS_ENABLED"] = "false"
os.environ["ENABLE_STRIPE_PAYMENTS"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False  # Set to True for SQL debugging
)


# pysqlite needs explicit BEGIN for SAVEPOINT-based test isolation
@event.listens_for(test_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=test_engine,
    join_transaction_mode="create_savepoint",
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create the schema once per test session."""
    from chargeup.db import Base
    from chargeup import models  # noqa: F401

    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """
    Provide a clean database session for each test.

    Service code commits freely; each commit only releases a SAVEPOINT
    inside the outer transaction, which is rolled back after the test.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def override_get_db(db_session):
    def _override():
        yield db_session
    return _override


@pytest.fixture(scope="function")
def client(setup_test_db, db):
    """FastAPI TestClient sharing the test's database session."""
    from fastapi.testclient import TestClient
    from chargeup.main import app
    from chargeup.db import get_db

    app.dependency_overrides[get_db] = override_get_db(db)
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def clock():
    from tests.helpers.factories import FakeClock
    return FakeClock()


@pytest.fixture
def owner(db):
    from tests.helpers.factories import create_user
    return create_user(db, "owner-1", email="owner@test.com", role="Owner")


@pytest.fixture
def driver(db):
    from tests.helpers.factories import create_user
    return create_user(db, "driver-1", email="driver@test.com", payment_method="pm_card_visa")


@pytest.fixture
def other_driver(db):
    from tests.helpers.factories import create_user
    return create_user(db, "driver-2", email="driver2@test.com", payment_method="pm_card_mastercard")


@pytest.fixture
def station(db, owner, clock):
    from tests.helpers.factories import create_station
    return create_station(db, owner.id, clock=clock)


@pytest.fixture
def provider():
    from chargeup.services.payments import MockPaymentProvider
    return MockPaymentProvider()


@pytest.fixture
def feed():
    from chargeup.events.change_feed import ChangeFeed
    return ChangeFeed(max_attempts=3)
