"""
core/errors.py -- Typed error taxonomy for AccessGate.

Every failure that crosses the service boundary is one of these classes.
Each carries a machine-readable code, the HTTP status the API layer maps it
to, and a message that is safe to show to an end user. Internal detail
(provider responses, SQL errors) goes to the log, never into `message`.

api/main.py registers one exception handler for AccessGateError and renders
all subclasses into the shared ErrorResponse envelope.
"""

from __future__ import annotations

from collections.abc import Sequence

_RETRY_MESSAGE = "The request could not be completed. Please try again."


class AccessGateError(Exception):
    code = "error"
    status_code = 400
    default_message = _RETRY_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(AccessGateError):
    """Missing or invalid bearer credential."""

    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class ForbiddenError(AccessGateError):
    """Authenticated, but the role or grant does not allow the operation."""

    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class InvalidOrExpiredTokenError(AccessGateError):
    """Reset-token redemption failed.

    expired distinguishes a token past its lifetime from one that was never
    valid or has already been used. Both render the same user message.
    """

    code = "invalid_or_expired_token"
    status_code = 400
    default_message = "This reset link has expired or is invalid. Please request a new one."

    def __init__(self, message: str | None = None, expired: bool = False) -> None:
        super().__init__(message)
        self.expired = expired


class PolicyViolationError(AccessGateError):
    """Password failed the strength rules. Carries the ordered violation list."""

    code = "policy_violation"
    status_code = 400
    default_message = "Password does not meet strength requirements."

    def __init__(self, violations: Sequence[str]) -> None:
        super().__init__()
        self.violations = list(violations)


class ConfirmationMismatchError(AccessGateError):
    code = "confirmation_mismatch"
    status_code = 400
    default_message = "Passwords do not match."


class NotFoundError(AccessGateError):
    code = "not_found"
    status_code = 404
    default_message = "User not found."


class ConflictError(AccessGateError):
    code = "conflict"
    status_code = 409
    default_message = "A user with that email already exists."


class GuardrailError(AccessGateError):
    """An admin operation that would lock the directory out of administration."""

    status_code = 400

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ProviderFailureError(AccessGateError):
    """Identity provider or directory store call failed for non-policy reasons."""

    code = "provider_failure"
    status_code = 400


class InconsistentStateError(AccessGateError):
    """One half of a multi-step operation succeeded and the other failed.

    Never swallowed: the caller must know the identity and directory records
    disagree so an operator can repair them.
    """

    code = "inconsistent_state"
    status_code = 500


class InvalidRequestError(AccessGateError):
    """Well-formed request that names something that does not exist or changes nothing."""

    code = "invalid_request"
    status_code = 400

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code
