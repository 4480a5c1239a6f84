"""
auth/provider.py -- The identity-provider contract and its factory.

AccessGate never verifies tokens or stores passwords itself outside this
seam. Everything that touches a credential goes through an IdentityProvider:

  authenticate(credential)               -> identity id | UnauthenticatedError
  sign_in(email, password)               -> access token | UnauthenticatedError
  sign_out(credential)                   -> None (invalidate-on-logout)
  set_credential(identity_id, password)  -> None | NotFoundError / ProviderFailureError
  issue_reset_token(email, return_url)   -> None (fire-and-forget, out-of-band delivery)
  redeem_reset_token(token, password)    -> identity id | InvalidOrExpiredTokenError
  provision_identity(email, password)    -> identity id | ConflictError / ProviderFailureError
  deprovision_identity(identity_id)      -> None | ProviderFailureError

Implementations:
  LocalIdentityProvider  (auth/local.py)  -- bcrypt + JWT over IdentityStore.
  GoTrueIdentityProvider (auth/gotrue.py) -- Supabase Auth REST API.

Layer rule: no imports from api/ or directory/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("accessgate.auth.provider")

# (email, reset link) -> None. Delivery channel for locally minted reset links.
ResetLinkOutbox = Callable[[str, str], None]


class IdentityProvider(Protocol):
    def authenticate(self, credential: str) -> str: ...

    def sign_in(self, email: str, password: str) -> str: ...

    def sign_out(self, credential: str) -> None: ...

    def set_credential(self, identity_id: str, password: str) -> None: ...

    def issue_reset_token(self, email: str, return_url: str) -> None: ...

    def redeem_reset_token(self, token: str, password: str) -> str: ...

    def provision_identity(self, email: str, password: str) -> str: ...

    def deprovision_identity(self, identity_id: str) -> None: ...

    def close(self) -> None: ...


def log_reset_link(email: str, link: str) -> None:
    """Default outbox: record that a link went out, without the token itself."""
    logger.info("Password reset link issued for %s", email)


def build_identity_provider(settings: Settings, outbox: ResetLinkOutbox | None = None) -> IdentityProvider:
    """Construct the provider selected by IDENTITY_PROVIDER."""
    if settings.identity_provider == "gotrue":
        from auth.gotrue import GoTrueIdentityProvider

        logger.info("Using GoTrue identity provider at %s", settings.gotrue_url)
        return GoTrueIdentityProvider(
            base_url=settings.gotrue_url,
            service_key=settings.gotrue_service_key,
            timeout=settings.gotrue_timeout_seconds,
        )

    from auth.local import LocalIdentityProvider
    from auth.store import IdentityStore

    logger.info("Using local identity provider")
    return LocalIdentityProvider(IdentityStore(settings.identity_db_url), outbox=outbox or log_reset_link)
