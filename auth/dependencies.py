"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization guard.

Principals are pulled fresh on every request: the bearer token is resolved by
the identity provider, then the directory row is read. Nothing is cached
between requests, so a deactivation or role change takes effect on the next
call.

  get_current_principal()       401 without a usable bearer token, 403 when
                                the directory cannot vouch for the identity.
  require_admin()               403 unless the principal may open the admin panel.
  require_permission(res, act)  403 unless can_access(principal, res, act).

The two privileged guards also refuse principals in reset_required: they
must change their password before doing anything else.

Error classification never produces a 5xx. A provider outage fails closed as
401; a directory failure while resolving the principal is 403.

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from core.access import can_access, can_access_admin_panel
from core.errors import AccessGateError, ForbiddenError, ProviderFailureError, UnauthenticatedError
from core.models import Principal

logger = logging.getLogger("accessgate.auth.guard")


def _as_http(error: AccessGateError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail={"code": error.code, "message": error.message})


def _unauthorized(message: str | None = None) -> HTTPException:
    return _as_http(UnauthenticatedError(message))


def _forbidden(message: str | None = None, code: str | None = None) -> HTTPException:
    return _as_http(ForbiddenError(message, code))


def get_bearer_token(request: Request) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_current_principal(request: Request) -> Principal:
    """Require a signed-in, active principal.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = get_bearer_token(request)
    if token is None:
        raise _unauthorized()

    try:
        identity_id = request.app.state.provider.authenticate(token)
    except UnauthenticatedError as exc:
        raise _unauthorized(exc.message) from exc
    except ProviderFailureError as exc:
        logger.warning("Identity provider unavailable while authenticating; denying request")
        raise _unauthorized() from exc

    try:
        principal = request.app.state.directory.store.get_user(identity_id)
    except SQLAlchemyError:
        logger.exception("Directory lookup failed for identity %s; denying request", identity_id)
        raise _forbidden("Unable to verify account permissions.")
    if principal is None:
        logger.warning("Authenticated identity %s has no directory record", identity_id)
        raise _forbidden("Unable to verify account permissions.")
    if not principal.is_active:
        raise _forbidden("This account has been deactivated.", code="account_inactive")
    return principal


def _check_reset_required(principal: Principal) -> None:
    if principal.needs_password_reset:
        raise _forbidden(
            "You must change your password before continuing.",
            code="password_reset_required",
        )


def require_admin(request: Request) -> Principal:
    """Require admin-panel access. 401 if unauthenticated, 403 otherwise.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(principal: Principal = Depends(require_admin)): ...
    """
    principal = get_current_principal(request)
    if not can_access_admin_panel(principal):
        raise _forbidden("Admin access required.")
    _check_reset_required(principal)
    return principal


def require_permission(resource: str, action: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires can_access(principal, resource, action)."""

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if not can_access(principal, resource, action):
            raise _forbidden(f"Permission {resource}:{action} required.")
        _check_reset_required(principal)
        return principal

    return dependency
