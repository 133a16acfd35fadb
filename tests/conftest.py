"""
Shared fixtures: in-memory database, app, test client and one user per role.
"""

from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from ehr.api.app import create_app
from ehr.database import init_engine, create_schema
from ehr.rbac import create_user
from ehr import records

PASSWORD = "s3cret-pass"
TEST_SECRET = "test-secret-key"


@pytest.fixture
def engine():
    engine = init_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def app(engine):
    app = create_app(engine=engine, config={
        "TESTING": True,
        "JWT_SECRET_KEY": TEST_SECRET,
        "AUDIT_ASYNC": False,
        "RATELIMIT_ENABLED": False,
    })
    yield app
    app.extensions["audit_recorder"].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(engine):
    """One user per role, username equal to the role; maps role to user id."""
    return {
        role: create_user(engine, role, PASSWORD, role)
        for role in ("doctor", "nurse", "admin")
    }


@pytest.fixture
def login(client, users):
    """Log the shared client in as *role*; returns the login response."""
    def _login(role):
        return client.post("/api/auth/login", json={"username": role, "password": PASSWORD})
    return _login


@pytest.fixture
def patient_id(engine):
    return records.create_patient(engine, "John Smith", date(1980, 5, 17), "male", "555-0100")


@pytest.fixture
def encounter_id(engine, patient_id):
    return records.create_encounter(engine, patient_id, "doctor", "Initial visit")


@pytest.fixture
def row_count(engine):
    """Number of rows currently in a table."""
    def _count(table):
        with engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()
    return _count
