"""Domain errors raised by the service layer.

Every error carries a stable machine-readable ``kind`` and the HTTP status the
API layer renders it with. Services raise; ``miniola.main`` turns them into
``{"kind": ..., "detail": ...}`` responses.
"""
from typing import Any, Optional


class MiniOlaError(Exception):
    kind: str = "Error"
    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[Any] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "detail": self.message}
        if self.errors is not None:
            body["errors"] = self.errors
        return body


class ValidationFailure(MiniOlaError):
    """Malformed input; never mutates state."""
    kind = "ValidationFailure"
    status_code = 400
    default_message = "Validation failed"


class InvalidFareInput(ValidationFailure):
    kind = "InvalidFareInput"
    default_message = "Invalid fare input"


class NotFound(MiniOlaError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class NoDriversAvailable(NotFound):
    kind = "NoDriversAvailable"
    default_message = "No drivers available"


class Unauthorized(MiniOlaError):
    """Caller does not own the resource or lacks the required role."""
    kind = "Unauthorized"
    status_code = 403
    default_message = "Not authorized"


class AuthenticationFailed(Unauthorized):
    status_code = 401
    default_message = "Invalid credentials"


class InvalidStateTransition(MiniOlaError):
    kind = "InvalidStateTransition"
    status_code = 409
    default_message = "Operation not allowed in the current state"


class OTPMismatch(MiniOlaError):
    kind = "OTPMismatch"
    status_code = 400
    default_message = "Invalid OTP"


class InsufficientBalance(MiniOlaError):
    kind = "InsufficientBalance"
    status_code = 402
    default_message = "Insufficient wallet balance"


class DuplicateResource(MiniOlaError):
    kind = "DuplicateResource"
    status_code = 409
    default_message = "Resource already exists"
