"""
auth/local.py -- Self-hosted identity provider backed by IdentityStore.

Implements the IdentityProvider contract (auth/provider.py) with bcrypt
password hashes and HS256 JWTs from auth/tokens.py. Suitable for
single-node deployments and for the test suite; GoTrueIdentityProvider is the
drop-in alternative when an external auth service owns the credentials.

Reset links are not emailed from here. They are handed to the outbox
callable the provider was built with, which owns delivery.

Storage failures surface as ProviderFailureError so callers treat this
provider exactly like a remote one that returned a 5xx.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Identity
from auth.provider import ResetLinkOutbox, log_reset_link
from auth.store import IdentityStore
from auth.tokens import (
    burn_password_check,
    create_access_token,
    create_reset_token,
    decode_access_token,
    decode_reset_token,
    hash_password,
    verify_password,
)
from core.errors import (
    ConflictError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    ProviderFailureError,
    UnauthenticatedError,
)

logger = logging.getLogger("accessgate.auth.local")

_BAD_CREDENTIALS = "Invalid email or password."


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Identity store failure during %s: %s", operation, exc)
        raise ProviderFailureError() from exc


class LocalIdentityProvider:
    def __init__(self, store: IdentityStore, outbox: ResetLinkOutbox = log_reset_link) -> None:
        self.store = store
        self._outbox = outbox

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def authenticate(self, credential: str) -> str:
        """Resolve a bearer access token to its identity id.

        Rejects tokens that fail signature/expiry checks, tokens revoked by
        sign-out, and tokens whose identity has since been deprovisioned.
        """
        payload = decode_access_token(credential)
        if payload is None:
            raise UnauthenticatedError("Invalid or expired token.")
        with _store_errors("authenticate"):
            revoked = self.store.is_revoked(payload["jti"])
            identity = self.store.get_by_id(payload["sub"])
        if revoked or identity is None:
            raise UnauthenticatedError("Invalid or expired token.")
        return identity.id

    def sign_in(self, email: str, password: str) -> str:
        """Exchange email + password for an access token.

        Runs bcrypt whether or not the email exists and returns the same
        error for an unknown email and a wrong password.
        """
        with _store_errors("sign_in"):
            identity = self.store.get_by_email(email.strip().lower())
        if identity is None:
            burn_password_check(password)
            raise UnauthenticatedError(_BAD_CREDENTIALS)
        if not verify_password(password, identity.hashed_password):
            raise UnauthenticatedError(_BAD_CREDENTIALS)
        with _store_errors("sign_in"):
            self.store.update_last_sign_in(identity.id)
        return create_access_token(identity.id, identity.email)

    def sign_out(self, credential: str) -> None:
        """Revoke an access token until its natural expiry. Unusable tokens are ignored."""
        payload = decode_access_token(credential)
        if payload is None:
            return
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc).isoformat()
        with _store_errors("sign_out"):
            self.store.revoke_token(payload["jti"], expires_at)
            purged = self.store.purge_expired_revocations()
        if purged:
            logger.debug("Purged %d expired token revocations", purged)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def set_credential(self, identity_id: str, password: str) -> None:
        with _store_errors("set_credential"):
            updated = self.store.set_password(identity_id, hash_password(password))
        if not updated:
            raise NotFoundError()

    def issue_reset_token(self, email: str, return_url: str) -> None:
        """Mint a reset token and hand the link to the outbox.

        An unknown email is not an error: the caller must not be able to tell
        which addresses have accounts.
        """
        with _store_errors("issue_reset_token"):
            identity = self.store.get_by_email(email.strip().lower())
        if identity is None:
            logger.info("Reset requested for an email with no identity; nothing sent")
            return
        token = create_reset_token(identity.id, identity.credential_version)
        self._outbox(identity.email, f"{return_url}#access_token={token}&type=recovery")

    def redeem_reset_token(self, token: str, password: str) -> str:
        """Set a new password using a reset token. Returns the identity id.

        The token must decode, name an existing identity, and carry that
        identity's current credential version. The write is conditional on the
        same version, so of two racing redemptions only one can land.
        """
        payload = decode_reset_token(token)
        with _store_errors("redeem_reset_token"):
            identity = self.store.get_by_id(payload["sub"])
            if identity is None or identity.credential_version != payload["ver"]:
                raise InvalidOrExpiredTokenError()
            applied = self.store.set_password(identity.id, hash_password(password), expected_version=payload["ver"])
        if not applied:
            raise InvalidOrExpiredTokenError()
        return identity.id

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision_identity(self, email: str, password: str) -> str:
        identity = Identity(
            id=str(uuid.uuid4()),
            email=email.strip().lower(),
            hashed_password=hash_password(password),
        )
        with _store_errors("provision_identity"):
            try:
                self.store.create_identity(identity)
            except IntegrityError as exc:
                raise ConflictError() from exc
        return identity.id

    def deprovision_identity(self, identity_id: str) -> None:
        """Delete an identity. An identity that is already gone counts as deprovisioned."""
        with _store_errors("deprovision_identity"):
            deleted = self.store.delete_identity(identity_id)
        if not deleted:
            logger.warning("Deprovision of %s found no identity; treating as already removed", identity_id)

    def close(self) -> None:
        self.store.close()
