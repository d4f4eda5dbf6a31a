"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure the core reports to a caller is an AuthError subclass. Each class
carries an HTTP status, a stable machine-readable code, and a default message
that is safe to show to an end user. api/main.py renders all of them through a
single exception handler into the {"error": {"code", "message"}} envelope.

Enumeration resistance:
  InvalidCredentials and InvalidOrExpiredResetToken have exactly one message
  each. Call sites must not pass a custom message that distinguishes "unknown
  email" from "wrong password" or "wrong secret" from "expired secret".

InternalFailure is the only class whose cause is NOT safe to expose. Raise it
with `from exc` so the handler can log the chain; the response body only ever
contains the generic default message.

Layer rule: no imports from api/, web/, or fastapi. The HTTP mapping is a
class attribute, not an HTTPException.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for operational auth failures mapped to HTTP responses."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticated(AuthError):
    status_code = 401
    code = "not_authenticated"
    default_message = "You are not logged in! Please log in to get access."


class SessionExpired(NotAuthenticated):
    """The token verified cryptographically but its exp claim has passed."""

    code = "session_expired"
    default_message = "Your token has expired! Please log in again."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Incorrect email or password."


class InvalidOrExpiredResetToken(AuthError):
    status_code = 400
    code = "invalid_reset_token"
    default_message = "Token is invalid or has expired."


class ValidationFailure(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input data."


class DeliveryFailure(AuthError):
    """The email collaborator could not deliver a message."""

    status_code = 500
    code = "delivery_failed"
    default_message = "There was an error sending the email. Try again later!"


class InternalFailure(AuthError):
    """Store, hashing, or timeout failure not attributable to caller input."""

    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."


# Messages shared across call sites so the two branches of each check stay
# byte-identical.
INVALID_TOKEN_MESSAGE = "Invalid token. Please log in again!"
STALE_TOKEN_MESSAGE = "User recently changed password! Please log in again."
