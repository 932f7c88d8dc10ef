"""
Booking workflow.

Free sessions are booked directly; paid sessions go through a Stripe
PaymentIntent and are recorded once the intent has succeeded for the
session's stored fee. Both paths write the same record shape into
``bookedSessions`` and share one rule: at most one booking per (sessionId,
studentEmail), held by the collection's unique index.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import BOOKED_SESSIONS, serialize_doc
from errors import ConflictError, ValidationError
from payments import PaymentGateway, to_minor_units
from schemas import BookedSession
from sessions import get_session

logger = logging.getLogger(__name__)

ALREADY_BOOKED = "You have already booked this session."
PAYMENT_ALREADY_USED = "This payment has already been used."


def _insert_booking(db: Database, booking: Dict[str, Any]) -> str:
    record = BookedSession(**booking, bookedAt=datetime.now(timezone.utc)).model_dump(exclude_none=True)
    try:
        result = db[BOOKED_SESSIONS].insert_one(record)
    except DuplicateKeyError:
        intent_id = record.get("paymentIntentId")
        if intent_id and db[BOOKED_SESSIONS].find_one(
            {"paymentIntentId": intent_id, "studentEmail": {"$ne": record["studentEmail"]}}
        ):
            logger.warning("PaymentIntent %s already used for another booking", intent_id)
            raise ConflictError(PAYMENT_ALREADY_USED)
        logger.warning("Duplicate booking for session %s by %s", booking["sessionId"], booking["studentEmail"])
        raise ConflictError(ALREADY_BOOKED)
    logger.info("Session %s booked by %s", booking["sessionId"], booking["studentEmail"])
    return str(result.inserted_id)


def book_session(
    db: Database,
    session_id: str,
    session_title: Optional[str],
    registration_fee: float,
    student_email: str,
    tutor_email: Optional[str],
) -> str:
    session = get_session(db, session_id)
    if session.get("isPaid"):
        raise ValidationError("This session requires payment.")
    return _insert_booking(
        db,
        {
            "sessionId": session_id,
            "sessionTitle": session_title,
            "registrationFee": registration_fee,
            "studentEmail": student_email,
            "tutorEmail": tutor_email,
        },
    )


def _session_fee(session: Dict[str, Any]) -> float:
    fee = session.get("registrationFee") or 0
    if not session.get("isPaid") or fee <= 0:
        raise ValidationError("This session does not require payment.")
    return fee


def create_payment_intent(
    db: Database, gateway: PaymentGateway, session_id: str, amount: Optional[float] = None
) -> str:
    """Open a PaymentIntent for the session's stored fee.

    A client-sent amount is only checked against the fee; it is never charged.
    """
    fee = _session_fee(get_session(db, session_id))
    if amount is not None and to_minor_units(amount) != to_minor_units(fee):
        raise ValidationError("Amount does not match the registration fee.")
    return gateway.create_intent(fee, session_id)


def confirm_payment(
    db: Database,
    gateway: PaymentGateway,
    session_id: str,
    student_email: str,
    payment_intent_id: str,
) -> str:
    """Record a paid booking after checking the intent with Stripe.

    Title, tutor and fee come from the stored session, never from the request.
    An intent pays for one booking only.
    """
    session = get_session(db, session_id)
    fee = _session_fee(session)
    intent = gateway.retrieve_intent(payment_intent_id)
    if intent.status != "succeeded":
        logger.warning("PaymentIntent %s not succeeded (status=%s)", payment_intent_id, intent.status)
        raise ValidationError("Payment has not been completed.")
    if intent.session_id != session_id:
        logger.warning("PaymentIntent %s belongs to session %s, not %s", payment_intent_id, intent.session_id, session_id)
        raise ValidationError("Payment does not match this session.")
    if intent.amount != to_minor_units(fee):
        logger.warning("PaymentIntent %s amount %s does not cover fee %s", payment_intent_id, intent.amount, fee)
        raise ValidationError("Payment amount does not match the registration fee.")
    used = db[BOOKED_SESSIONS].find_one({"paymentIntentId": payment_intent_id})
    if used and used["studentEmail"] != student_email:
        logger.warning("PaymentIntent %s already used by %s", payment_intent_id, used["studentEmail"])
        raise ConflictError(PAYMENT_ALREADY_USED)
    return _insert_booking(
        db,
        {
            "sessionId": session_id,
            "sessionTitle": session.get("sessionTitle"),
            "studentEmail": student_email,
            "tutorEmail": session.get("tutorEmail"),
            "registrationFee": fee,
            "paymentIntentId": payment_intent_id,
        },
    )


def list_booked_sessions(db: Database, student_email: str) -> List[Dict[str, Any]]:
    return [serialize_doc(b) for b in db[BOOKED_SESSIONS].find({"studentEmail": student_email})]
