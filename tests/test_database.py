from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from bson import ObjectId
from fastapi.testclient import TestClient
import mongomock
import pytest
from pymongo.errors import PyMongoError

import config
import database
from database import REVIEWS, oid, serialize_doc
from errors import DependencyError, ValidationError


def test_oid_accepts_hex_ids():
    value = ObjectId()
    assert oid(str(value)) == value


@pytest.mark.parametrize("bad", [None, "", "123", "zzzzzzzzzzzzzzzzzzzzzzzz", "not-an-id"])
def test_oid_rejects_malformed(bad):
    with pytest.raises(ValidationError) as exc:
        oid(bad, "session ID")
    assert exc.value.message == "Invalid session ID."


def test_serialize_doc():
    _id = ObjectId()
    naive = datetime(2026, 1, 2, 3, 4, 5)
    doc = serialize_doc({"_id": _id, "bookedAt": naive, "ref": _id, "title": "x"})
    assert doc == {"id": str(_id), "bookedAt": "2026-01-02T03:04:05+00:00", "ref": str(_id), "title": "x"}
    assert serialize_doc(None) is None


def test_serialize_doc_aware_datetime():
    aware = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert serialize_doc({"createdAt": aware})["createdAt"] == "2026-01-02T03:04:05+00:00"


def test_get_db_without_configuration(monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", None)
    monkeypatch.setattr(database, "_client", None)
    with pytest.raises(DependencyError):
        database.get_db()


def test_unconfigured_database_returns_500(client, monkeypatch):
    from main import app

    monkeypatch.setattr(config, "DATABASE_URL", None)
    monkeypatch.setattr(database, "_client", None)
    app.dependency_overrides.pop(database.get_db)
    resp = client.get("/get-reviews", params={"sessionId": "s1"})
    assert resp.status_code == 500
    assert resp.json()["message"] == "Database unavailable"


def test_store_failure_returns_generic_500(client, db):
    collection_cls = type(db[REVIEWS])
    with patch.object(collection_cls, "find", side_effect=PyMongoError("connection reset")):
        resp = client.get("/get-reviews", params={"sessionId": "s1"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Internal server error", "code": "DependencyError"}


def test_booking_index_is_unique(db):
    indexes = db["bookedSessions"].index_information()
    assert indexes["uniq_booking_session_student"]["unique"] is True


def test_payment_intent_index_is_unique_for_paid_bookings(db):
    indexes = db["bookedSessions"].index_information()
    assert indexes["uniq_booking_payment_intent"]["unique"] is True


def _failing_indexes(db):
    raise PyMongoError("not authorized to create index")


def test_get_db_ensures_indexes_once(monkeypatch):
    fresh = mongomock.MongoClient()["session-sync-fresh"]
    monkeypatch.setattr(database, "get_database", lambda: fresh)
    monkeypatch.setattr(database, "_indexes_ready", False)

    assert database.get_db() is fresh
    assert "uniq_booking_session_student" in fresh["bookedSessions"].index_information()

    monkeypatch.setattr(database, "ensure_indexes", _failing_indexes)
    assert database.get_db() is fresh


def test_index_failure_surfaces_as_500(client, monkeypatch):
    from main import app

    fresh = mongomock.MongoClient()["session-sync-fresh"]
    monkeypatch.setattr(database, "get_database", lambda: fresh)
    monkeypatch.setattr(database, "_indexes_ready", False)
    monkeypatch.setattr(database, "ensure_indexes", _failing_indexes)
    app.dependency_overrides.pop(database.get_db)

    resp = client.post(
        "/book-session", json={"sessionId": str(ObjectId()), "studentEmail": "a@x.com", "registrationFee": 0}
    )
    assert resp.status_code == 500
    assert resp.json()["message"] == "Database indexes unavailable"
    assert fresh["bookedSessions"].count_documents({}) == 0


def test_startup_aborts_when_indexes_fail(db, monkeypatch):
    import main

    monkeypatch.setattr(main, "get_database", lambda: db)
    monkeypatch.setattr(database, "_indexes_ready", False)
    monkeypatch.setattr(database, "ensure_indexes", _failing_indexes)
    with pytest.raises(DependencyError):
        with TestClient(main.app):
            pass


def test_shutdown_closes_client(db, monkeypatch):
    import main

    mongo_client = MagicMock()
    monkeypatch.setattr(main, "get_database", lambda: db)
    monkeypatch.setattr(database, "_client", mongo_client)
    monkeypatch.setattr(database, "_indexes_ready", True)
    with TestClient(main.app):
        pass
    mongo_client.close.assert_called_once_with()
    assert database._client is None
    assert database._indexes_ready is False
