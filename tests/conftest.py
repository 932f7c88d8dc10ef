import os

os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-secret")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import sessions  # noqa: E402
from auth import create_token  # noqa: E402
from database import USERS, ensure_indexes, get_db  # noqa: E402
from main import app  # noqa: E402
from payments import IntentStatus, get_payment_gateway, to_minor_units  # noqa: E402


class FakeGateway:
    """In-memory stand-in for the Stripe gateway."""

    def __init__(self):
        self.intents = {}
        self.created = []

    def create_intent(self, amount, session_id):
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append({"amount": amount, "sessionId": session_id})
        self.intents[intent_id] = IntentStatus(
            id=intent_id, status="requires_payment_method", session_id=session_id, amount=to_minor_units(amount)
        )
        return f"{intent_id}_secret_abc"

    def succeed(self, intent_id):
        self.intents[intent_id].status = "succeeded"

    def retrieve_intent(self, intent_id):
        return self.intents.get(intent_id) or IntentStatus(id=intent_id, status="unknown", session_id=None, amount=0)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["session-sync-test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def make_user(db):
    def _make(email, role="Student", **profile):
        user = {"email": email, "role": role, "timestamp": 1700000000000, **profile}
        db[USERS].insert_one(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return _headers


@pytest.fixture
def admin_headers(make_user, auth_headers):
    return auth_headers(make_user("admin@x.com", role="Admin", name="Admin"))


@pytest.fixture
def make_session(db):
    """Insert a study session through the lifecycle module and return its id."""

    def _make(**fields):
        data = {
            "tutorEmail": "t@x.com",
            "tutorName": "Tutor",
            "sessionTitle": "Title",
            "registrationEndDate": "2026-12-01",
            **fields,
        }
        return sessions.create_session(db, data)

    return _make
