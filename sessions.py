"""
Study session lifecycle.

    pending --approve--> approved
    pending --reject---> rejected
    any ----re-request-> pending

Approve and reject apply to pending sessions only; an approved or rejected
session must be re-requested first. The admin generic update is not bound by
these transitions.

Approval is the only place ``isPaid`` and ``registrationFee`` are set
together; the generic admin update re-applies the same fee rule whenever it
touches either field. Deleting a session leaves its bookings, materials and
reviews in place.
"""
import logging
import math
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import SESSIONS, oid, serialize_doc
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STATUSES = ("pending", "approved", "rejected")
HOME_PAGE_LIMIT = 6


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_fee(is_paid: Optional[bool], registration_fee: Any) -> None:
    if is_paid is None or registration_fee is None:
        raise ValidationError("Required fields are missing.")
    if is_paid:
        if not _is_number(registration_fee) or registration_fee <= 0:
            raise ValidationError("Invalid amount for paid session.")
    elif not _is_number(registration_fee) or registration_fee != 0:
        raise ValidationError("Amount must be 0 for free sessions.")


def create_session(db: Database, data: Dict[str, Any]) -> str:
    doc = {k: v for k, v in data.items() if k not in ("_id", "id")}
    doc["status"] = "pending"
    doc.setdefault("isPaid", False)
    doc.setdefault("registrationFee", 0)
    result = db[SESSIONS].insert_one(doc)
    logger.info("Session %s created by %s", result.inserted_id, doc.get("tutorEmail"))
    return str(result.inserted_id)


def _set_fields(db: Database, session_id: str, fields: Dict[str, Any], from_status: Optional[str] = None) -> None:
    _id = oid(session_id, "session ID")
    query = {"_id": _id} if from_status is None else {"_id": _id, "status": from_status}
    result = db[SESSIONS].update_one(query, {"$set": fields})
    if result.matched_count == 0:
        if from_status is None or db[SESSIONS].find_one({"_id": _id}) is None:
            raise NotFoundError("Session not found.")
        raise ValidationError(f"Only {from_status} sessions can be reviewed.")


def approve_session(db: Database, session_id: str, is_paid: Optional[bool], registration_fee: Any) -> None:
    oid(session_id, "session ID")
    validate_fee(is_paid, registration_fee)
    _set_fields(
        db, session_id, {"status": "approved", "isPaid": is_paid, "registrationFee": registration_fee}, "pending"
    )
    logger.info("Session %s approved (isPaid=%s, fee=%s)", session_id, is_paid, registration_fee)


def reject_session(db: Database, session_id: str) -> None:
    _set_fields(db, session_id, {"status": "rejected"}, "pending")
    logger.info("Session %s rejected", session_id)


def rerequest_approval(db: Database, session_id: str) -> None:
    _set_fields(db, session_id, {"status": "pending"})
    logger.info("Session %s back to pending", session_id)


def update_session(db: Database, session_id: str, patch: Dict[str, Any]) -> None:
    """Admin field merge. Fee fields go through the approval rule."""
    _id = oid(session_id, "session ID")
    fields = {k: v for k, v in patch.items() if k not in ("_id", "id")}
    if not fields:
        raise ValidationError("No fields to update.")
    if "status" in fields and fields["status"] not in STATUSES:
        raise ValidationError("Invalid status.")
    if "isPaid" in fields or "registrationFee" in fields or fields.get("status") == "approved":
        current = db[SESSIONS].find_one({"_id": _id})
        if not current:
            raise NotFoundError("Session not found.")
        merged = {**current, **fields}
        if "isPaid" in fields and not isinstance(fields["isPaid"], bool):
            raise ValidationError("isPaid must be a boolean.")
        # pending and rejected sessions are checked again on approval
        if merged.get("status") == "approved":
            validate_fee(merged.get("isPaid"), merged.get("registrationFee"))
    _set_fields(db, session_id, fields)
    logger.info("Session %s updated: %s", session_id, sorted(fields))


def delete_session(db: Database, session_id: str) -> None:
    result = db[SESSIONS].delete_one({"_id": oid(session_id, "session ID")})
    if result.deleted_count == 0:
        raise NotFoundError("Session not found.")
    logger.info("Session %s deleted", session_id)


def get_session(db: Database, session_id: str) -> Dict[str, Any]:
    session = db[SESSIONS].find_one({"_id": oid(session_id, "session ID")})
    if not session:
        raise NotFoundError("Session not found.")
    return session


def list_approved(db: Database, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[SESSIONS].find({"status": "approved"}).sort("registrationEndDate", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(s) for s in cursor]


def list_for_tutor(db: Database, tutor_email: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    q: Dict[str, Any] = {"tutorEmail": tutor_email}
    if status:
        q["status"] = status
    return [serialize_doc(s) for s in db[SESSIONS].find(q)]


def list_all(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(s) for s in db[SESSIONS].find()]


def paginate(db: Database, page: int, limit: int) -> Dict[str, Any]:
    skip = (page - 1) * limit
    sessions = [serialize_doc(s) for s in db[SESSIONS].find().skip(skip).limit(limit)]
    return {"sessions": sessions, "totalSessions": db[SESSIONS].count_documents({})}
