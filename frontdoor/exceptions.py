"""
Exception hierarchy for the front door service.

Every error carries a stable code and the HTTP status it maps to, so route
handlers can raise domain errors and let the app-level handler render them.
"""

from typing import Optional


class FrontDoorError(Exception):
    """Base exception for all front door errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.field is not None:
            body["field"] = self.field
        return body


class InvalidInput(FrontDoorError):
    """Malformed or missing request field."""
    code = "INVALID_INPUT"
    status_code = 400


class NoActiveSession(FrontDoorError):
    """The door bell exists but has no call in the required state."""
    code = "NO_ACTIVE_SESSION"
    status_code = 400


class Unauthorized(FrontDoorError):
    """Missing or invalid credential."""
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(FrontDoorError):
    """Valid credential without the capability for this resource."""
    code = "FORBIDDEN"
    status_code = 403


class NotFound(FrontDoorError):
    """Referenced door bell, building or household does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class StoreFailure(FrontDoorError):
    """Underlying persistence error. The message never reaches the client."""
    code = "STORE_FAILURE"
    status_code = 500

    public_message = "Internal server error"

    def to_dict(self) -> dict:
        return {"detail": self.public_message, "code": self.code}
