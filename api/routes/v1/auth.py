"""
api/routes/v1/auth.py -- Session, credential and password-policy endpoints.

Routes:
  POST /api/v1/auth/login              -- email + password -> bearer token
  POST /api/v1/auth/logout             -- revoke the presented bearer token
  GET  /api/v1/auth/me                 -- current principal, state, allowed actions
  POST /api/v1/auth/forgot-password    -- request a reset link; always 202
  POST /api/v1/auth/reset-password     -- redeem a reset token
  POST /api/v1/auth/change-password    -- signed-in password change
  POST /api/v1/validate-password       -- live strength feedback (advisory)

Security:
  login, forgot-password, reset-password and validate-password are public
  and rate-limited per IP.
  login and forgot-password return the same response for unknown and known
  emails so neither can be used to enumerate accounts.
  change-password is allowed in reset_required; it is the way out of it.
  Token-bearing responses carry Cache-Control: no-store.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordCheckRequest,
    PolicyResultResponse,
    PrincipalResponse,
    ResetPasswordRequest,
)
from auth.dependencies import get_bearer_token, get_current_principal
from auth.tokens import extract_reset_token
from core.access import allowed_actions
from core.config import get_settings
from core.errors import InvalidOrExpiredTokenError, UnauthenticatedError
from core.models import Principal
from core.policy import evaluate
from directory.lifecycle import credential_state
from directory.store import directory_errors

logger = logging.getLogger("accessgate.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/forgot-password, /auth/reset-password: public
# - POST /validate-password:                                      public
# - POST /auth/logout:          bearer token required (nothing else checked)
# - GET  /auth/me:              get_current_principal
# - POST /auth/change-password: get_current_principal (reset_required allowed)
router = APIRouter()

_FORGOT_MESSAGE = "If an account exists for that email, a reset link has been sent."


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in through the identity provider and return a bearer token.

    A valid credential for an identity with no active directory principal is
    refused with the same message as a wrong password, and the token the
    provider just issued is revoked again.
    """
    provider = request.app.state.provider
    email = body.email.lower()
    token = provider.sign_in(email, body.password)

    with directory_errors("login"):
        principal = request.app.state.directory.store.get_user_by_email(email)
    if principal is None or not principal.is_active:
        provider.sign_out(token)
        raise UnauthenticatedError("Invalid email or password.")

    resp = JSONResponse(
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            email=principal.email,
            role=principal.role_name,
            credential_state=credential_state(principal),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.reset_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse, status_code=202)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Start a self-service reset. The response never reveals whether the email exists."""
    request.app.state.lifecycle.request_reset(body.email)
    return MessageResponse(message=_FORGOT_MESSAGE)


@limiter.limit(_settings.reset_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Redeem a reset token and set a new password.

    The token comes from the body, or is extracted from the URL the reset
    link landed on.
    """
    token = body.token or extract_reset_token(body.return_url or "")
    if not token:
        raise InvalidOrExpiredTokenError()
    request.app.state.lifecycle.redeem_reset(token, body.new_password, body.confirm_password)
    resp = JSONResponse(content={"message": "Password updated. You can now sign in."})
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.password_check_rate_limit)
@router.post("/validate-password", response_model=PolicyResultResponse)
def validate_password(request: Request, body: PasswordCheckRequest) -> PolicyResultResponse:
    """Evaluate a candidate password. Advisory only; nothing is stored."""
    return PolicyResultResponse.from_result(evaluate(body.password))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """Invalidate the presented bearer token at the provider."""
    token = get_bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "Authentication required."})
    request.app.state.provider.sign_out(token)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    base = PrincipalResponse.from_principal(principal, credential_state(principal))
    return MeResponse(**base.model_dump(), allowed_actions=allowed_actions(principal))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    request.app.state.lifecycle.change_password(principal, body.new_password, body.confirm_password)
    return MessageResponse(message="Password updated.")
