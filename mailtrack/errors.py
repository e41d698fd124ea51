"""
Domain error taxonomy. Every error maps to one HTTP status and renders into
the `{success: false, message}` envelope at the transport boundary.
"""

from typing import List, Optional


class MailTrackError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message}


class Unauthenticated(MailTrackError):
    """No credential was presented."""
    status_code = 401
    default_message = "Access token required"


class AuthenticationError(MailTrackError):
    """A credential was presented but is invalid, expired or unknown."""
    status_code = 401
    default_message = "Invalid or expired token"


class Forbidden(MailTrackError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFound(MailTrackError):
    status_code = 404
    default_message = "Not found"


class ValidationError(MailTrackError):
    status_code = 400
    default_message = "Validation error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class Conflict(MailTrackError):
    """Uniqueness violation surfaced with a domain message."""
    status_code = 400
    default_message = "Resource already exists"


class InternalError(MailTrackError):
    status_code = 500
    default_message = "Internal server error"
