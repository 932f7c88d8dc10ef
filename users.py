import logging
import time
from typing import Any, Dict, List

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import create_token
from database import USERS, oid, serialize_doc
from errors import NotFoundError
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

# fields a client cannot set on its own record
PROTECTED_FIELDS = ("_id", "id", "role", "timestamp")


def upsert_user(db: Database, profile: Dict[str, Any]) -> Dict[str, Any]:
    """Create the user on first sign-in and mint a token.

    An existing record is returned untouched; profile fields sent on later
    sign-ins are ignored.
    """
    email = profile["email"]
    user = db[USERS].find_one({"email": email})
    if not user:
        fields = {k: v for k, v in profile.items() if k not in PROTECTED_FIELDS}
        user = UserSchema(**fields, role="Student", timestamp=int(time.time() * 1000)).model_dump(exclude_none=True)
        try:
            db[USERS].insert_one(user)
            logger.info("Created user %s", email)
        except DuplicateKeyError:
            # concurrent first sign-in won the insert
            user = db[USERS].find_one({"email": email})
    user = serialize_doc(user)
    return {"token": create_token(user), "user": user}


def list_users_except(db: Database, email: str) -> List[Dict[str, Any]]:
    return [serialize_doc(u) for u in db[USERS].find({"email": {"$ne": email}})]


def update_role(db: Database, user_id: str, role: str) -> None:
    result = db[USERS].update_one({"_id": oid(user_id, "user ID")}, {"$set": {"role": role}})
    if result.matched_count == 0:
        raise NotFoundError("User not found.")
    logger.info("User %s role set to %s", user_id, role)


def list_tutors(db: Database) -> List[Dict[str, Any]]:
    tutors = [serialize_doc(u) for u in db[USERS].find({"role": "Tutor"})]
    if not tutors:
        raise NotFoundError("No tutors found.")
    return tutors


def get_tutor(db: Database, tutor_id: str) -> Dict[str, Any]:
    tutor = db[USERS].find_one({"_id": oid(tutor_id, "tutor ID"), "role": "Tutor"})
    if not tutor:
        raise NotFoundError("Tutor not found.")
    return serialize_doc(tutor)
