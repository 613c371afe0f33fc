"""
Test fixtures: an in-memory database per test, identity factories and a
Flask test client wired to the same engine.
"""

import itertools

import pytest

from medqr import store
from medqr.database import init_engine
from medqr.models import Role, utcnow

TEST_SECRET = "test-secret-key-for-hmac-signing-0123456789"

HOSPITAL = {
    "name": "St. Example", "address": "1 Main St", "department": "Emergency",
    "position": "Physician", "staffId": "S-100", "contact": "555-0100",
}

_counter = itertools.count(1)


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with all tables created."""
    eng = init_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def make_user(engine):
    """Factory inserting an identity straight into the store."""
    def _make(role="patient", verified=False, name=None):
        n = next(_counter)
        return store.create_identity(
            engine,
            name=name or f"{role} {n}",
            email=f"{role}{n}@example.org",
            password_hash="unused",
            role=Role(role),
            is_verified=verified,
            hospital=dict(HOSPITAL) if role == "medical_staff" else None,
            now=utcnow(),
        )
    return _make


@pytest.fixture
def patient(make_user):
    return make_user("patient", name="Pat Example")


@pytest.fixture
def admin(make_user):
    return make_user("admin", verified=True)


@pytest.fixture
def app(engine):
    from medqr.api.app import create_app
    flask_app = create_app(engine=engine, secret_key=TEST_SECRET)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sample_record():
    """A valid save payload."""
    return {
        "name": "Pat Example",
        "bloodType": "O+",
        "allergies": ["Penicillin", "", "  Peanuts "],
        "medications": [
            {"name": "Metformin", "dosage": "500mg", "frequency": "twice daily"},
            {"name": "", "dosage": "10mg"},
            {"dosage": "5mg"},
        ],
        "conditions": ["Type 2 diabetes", "   "],
        "emergencyContact": {"name": " Sam Example ", "relationship": "Sibling",
                             "phone": "555-0199"},
        "insuranceInfo": {"provider": "Acme Health", "policyNumber": "P-1",
                          "groupNumber": "G-7"},
    }
