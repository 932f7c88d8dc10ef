"""
MongoDB access for the Session Sync API.

One ``MongoClient`` is created on first use and shared by the process. Route
handlers never touch it directly: they receive the ``Database`` handle through
the ``get_db`` dependency, which tests override with an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

import config
from errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

USERS = "users"
SESSIONS = "sessions"
BOOKED_SESSIONS = "bookedSessions"
NOTES = "notes"
MATERIALS = "materials"
REVIEWS = "reviews"
ANNOUNCEMENTS = "announcements"

_client: Optional[MongoClient] = None
_indexes_ready = False


def get_client() -> Optional[MongoClient]:
    global _client
    if _client is None and config.DATABASE_URL:
        _client = MongoClient(config.DATABASE_URL, server_api=ServerApi("1"), serverSelectionTimeoutMS=5000)
    return _client


def get_database() -> Optional[Database]:
    client = get_client()
    if client is None:
        return None
    return client[config.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency yielding the shared database handle."""
    db = get_database()
    if db is None:
        raise DependencyError("Database unavailable")
    prepare_database(db)
    return db


def close_client() -> None:
    global _client, _indexes_ready
    if _client is not None:
        _client.close()
        _client = None
    _indexes_ready = False


def ensure_indexes(db: Database) -> None:
    """Create the unique indexes the workflows rely on.

    ``bookedSessions`` is unique on (sessionId, studentEmail): a second insert
    for the same pair fails with ``DuplicateKeyError``, which the booking
    workflow reports as "already booked". Paid bookings are also unique on
    ``paymentIntentId`` so one payment books one seat.
    """
    db[USERS].create_index([("email", ASCENDING)], unique=True, name="uniq_user_email")
    db[BOOKED_SESSIONS].create_index(
        [("sessionId", ASCENDING), ("studentEmail", ASCENDING)],
        unique=True,
        name="uniq_booking_session_student",
    )
    db[BOOKED_SESSIONS].create_index(
        [("paymentIntentId", ASCENDING)],
        unique=True,
        partialFilterExpression={"paymentIntentId": {"$exists": True}},
        name="uniq_booking_payment_intent",
    )
    logger.info("Indexes ensured on %s", db.name)


def prepare_database(db: Database) -> None:
    """Ensure indexes once per client; a failure raises ``DependencyError``."""
    global _indexes_ready
    if _indexes_ready:
        return
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        logger.error("Failed to ensure indexes: %s", e)
        raise DependencyError("Database indexes unavailable") from e
    _indexes_ready = True


def oid(id_str: Optional[str], label: str = "id") -> ObjectId:
    if not id_str or not ObjectId.is_valid(id_str):
        raise ValidationError(f"Invalid {label}.")
    return ObjectId(id_str)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.astimezone(timezone.utc).isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d
