"""
Domain exceptions for the Session Sync API.

Workflows raise these; the handlers registered in ``main.py`` turn them into
JSON error responses of the shape ``{"success": false, "message", "code"}``.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Missing or malformed input. Nothing was written."""

    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """The record already exists (duplicate booking)."""

    status_code = 400


class AuthError(DomainError):
    status_code = 401


class PermissionDenied(DomainError):
    status_code = 403


class DependencyError(DomainError):
    """The document store or the payment processor failed."""

    status_code = 500
