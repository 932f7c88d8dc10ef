import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header
from pymongo.database import Database

import config
from database import USERS, get_db, serialize_doc
from errors import AuthError, PermissionDenied

logger = logging.getLogger(__name__)


def create_token(user: Dict[str, Any]) -> str:
    payload = {
        "user": serialize_doc(user),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXP_MIN),
    }
    return jwt.encode(payload, config.ACCESS_TOKEN_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the user embedded in ``token``, or None if it does not verify."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.ACCESS_TOKEN_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError as exc:
        logger.debug("Token rejected: %s", exc)
        return None
    user = payload.get("user")
    if not isinstance(user, dict) or not user.get("email"):
        return None
    return user


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization:
        raise AuthError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Invalid authorization scheme")
    claimed = verify_token(token.strip())
    if claimed is None:
        raise AuthError("Invalid token")
    # the token carries a snapshot; the stored record holds the current role
    user = db[USERS].find_one({"email": claimed["email"]})
    if not user:
        raise AuthError("User not found")
    return user


def require_role(*roles: str):
    def role_dep(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            logger.warning("Role %s denied, needs one of %s", current_user.get("role"), roles)
            raise PermissionDenied("Insufficient permissions")
        return current_user

    return role_dep
