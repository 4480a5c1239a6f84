"""
directory/lifecycle.py -- Credential lifecycle state machine.

States (derived from the directory row, never stored as a separate column):

  reset_required  needs_password_reset is set: new account or admin-forced.
                  The guard blocks privileged use until the password changes.
  reset_pending   a self-service reset link was requested and not yet redeemed.
                  The existing password keeps working.
  normal          neither of the above.

Transitions:

  account creation          -> reset_required      (directory/service.py)
  request_reset             -> reset_pending       (reset_required stays reset_required)
  redeem_reset / change_password -> normal         (both flags cleared)
  force_reset (admin)       -> reset_required

Every new password is checked with core.policy.evaluate() before the
provider sees it. The provider write and the directory flag clear are two
calls; if the second fails after the first succeeded the caller gets
InconsistentStateError, never a silent success.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from core.errors import (
    ConfirmationMismatchError,
    InconsistentStateError,
    NotFoundError,
    PolicyViolationError,
    ProviderFailureError,
)
from core.models import CredentialState, Principal
from core.policy import evaluate
from directory.store import DirectoryStore, directory_errors

if TYPE_CHECKING:
    from auth.provider import IdentityProvider

logger = logging.getLogger("accessgate.directory.lifecycle")


def credential_state(principal: Principal) -> CredentialState:
    if principal.needs_password_reset:
        return CredentialState.reset_required
    if principal.reset_requested_at:
        return CredentialState.reset_pending
    return CredentialState.normal


def check_new_password(new_password: str, confirmation: str | None = None) -> None:
    """Authoritative server-side gate for any new password.

    Raises ConfirmationMismatchError or PolicyViolationError (with the ordered
    violations). Returns None when the password is acceptable.
    """
    if confirmation is not None and new_password != confirmation:
        raise ConfirmationMismatchError()
    result = evaluate(new_password)
    if not result.valid:
        raise PolicyViolationError(result.violations)


class CredentialLifecycle:
    def __init__(self, store: DirectoryStore, provider: IdentityProvider, reset_return_url: str) -> None:
        self.store = store
        self.provider = provider
        self.reset_return_url = reset_return_url

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def request_reset(self, email: str, return_url: str | None = None) -> None:
        """Handle a "forgot password" request.

        Unknown and inactive accounts are a silent no-op so the endpoint cannot
        be used to enumerate addresses. Credential and needs_password_reset are
        left untouched.
        """
        with directory_errors("request_reset"):
            principal = self.store.get_user_by_email(email.strip().lower())
        if principal is None or not principal.is_active:
            logger.info("Reset requested for unknown or inactive account; ignoring")
            return
        self.provider.issue_reset_token(principal.email, return_url or self.reset_return_url)
        with directory_errors("request_reset"):
            self.store.mark_reset_requested(principal.id)

    def redeem_reset(self, token: str, new_password: str, confirmation: str | None = None) -> str:
        """Replace the password using a reset token. Returns the principal id.

        Validation runs before the provider is called, so a rejected password
        never consumes the token. An invalid or expired token raises
        InvalidOrExpiredTokenError from the provider with nothing written.
        """
        check_new_password(new_password, confirmation)
        principal_id = self.provider.redeem_reset_token(token, new_password)
        self._settle(principal_id, "reset redemption")
        logger.info("Password reset completed for %s", principal_id)
        return principal_id

    def change_password(self, principal: Principal, new_password: str, confirmation: str | None = None) -> None:
        """Voluntary change by a signed-in principal (also the way out of reset_required)."""
        check_new_password(new_password, confirmation)
        self.provider.set_credential(principal.id, new_password)
        if principal.needs_password_reset or principal.reset_requested_at:
            self._settle(principal.id, "password change")
        logger.info("Password changed for %s", principal.id)

    # ------------------------------------------------------------------
    # Admin-driven
    # ------------------------------------------------------------------

    def force_reset(self, principal_id: str) -> Principal:
        """Put a principal into reset_required and send a reset link."""
        with directory_errors("force_reset"):
            if not self.store.update_user(principal_id, needs_password_reset=True):
                raise NotFoundError()
            principal = self.store.get_user(principal_id)
        if principal is None:
            raise NotFoundError()
        self.send_reset_notification(principal)
        return principal

    def send_reset_notification(self, principal: Principal) -> bool:
        """Ask the provider to send a reset link. At-least-once, best effort.

        Repeated calls send repeated links; there is no de-duplication.
        Failure is logged and reported through the return value only, so an
        admin operation that already committed is not turned into an error.
        """
        try:
            self.provider.issue_reset_token(principal.email, self.reset_return_url)
        except ProviderFailureError:
            logger.error("Failed to send password reset email to %s", principal.email)
            return False
        try:
            self.store.mark_reset_requested(principal.id)
        except SQLAlchemyError as exc:
            logger.warning("Reset link sent but reset_requested_at not recorded for %s: %s", principal.id, exc)
        return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _settle(self, principal_id: str, operation: str) -> None:
        """Clear both reset markers after the provider accepted a new credential."""
        try:
            cleared = self.store.update_user(principal_id, needs_password_reset=False, reset_requested_at=None)
        except SQLAlchemyError as exc:
            logger.error("Credential set for %s but reset flag not cleared during %s: %s", principal_id, operation, exc)
            raise InconsistentStateError() from exc
        if not cleared:
            logger.error("Credential set for %s during %s but no directory record exists", principal_id, operation)
            raise InconsistentStateError()
