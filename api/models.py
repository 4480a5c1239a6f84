"""
API request and response models for AccessGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Passwords appear only in request models. No response model carries a
credential except PrincipalCreatedResponse.temporary_password, which is
returned exactly once at creation time.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.models import CredentialState, PolicyResult, Principal

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    violations is only present for policy_violation errors and lists the
    failed strength rules in evaluation order.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    violations: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str = ""


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    resource: str
    action: str
    description: str = ""
    roles: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """Public view of a directory principal. Grant sets are rendered sorted."""

    id: str
    email: str
    full_name: str
    role_id: Optional[int] = None
    role: Optional[str] = None
    menu_access: list[str]
    sub_menu_access: dict[str, list[str]]
    component_access: list[str]
    is_active: bool
    needs_password_reset: bool
    credential_state: CredentialState
    created_at: str
    updated_at: str

    @classmethod
    def from_principal(cls, principal: Principal, state: CredentialState) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            full_name=principal.full_name,
            role_id=principal.role_id,
            role=principal.role_name,
            menu_access=sorted(principal.menu_access),
            sub_menu_access={key: sorted(items) for key, items in sorted(principal.sub_menu_access.items())},
            component_access=sorted(principal.component_access),
            is_active=principal.is_active,
            needs_password_reset=principal.needs_password_reset,
            credential_state=state,
            created_at=principal.created_at,
            updated_at=principal.updated_at,
        )


class PrincipalCreatedResponse(PrincipalResponse):
    """Response for POST /api/v1/admin-users.

    temporary_password is set only when the server generated the initial
    password. It is shown once and never stored in plaintext.
    """

    temporary_password: Optional[str] = None
    notification_sent: bool = False


class PrincipalCreate(BaseModel):
    """Request body for POST /api/v1/admin-users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    full_name: str = Field(default="", max_length=255)
    role_id: Optional[int] = None
    password: Optional[str] = Field(default=None, max_length=128)
    menu_access: list[str] = Field(default_factory=list)
    sub_menu_access: dict[str, list[str]] = Field(default_factory=dict)
    component_access: list[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class PrincipalUpdate(BaseModel):
    """Request body for PUT /api/v1/admin-users/{id}.

    Every field is optional; only fields present in the request body are
    written. Sending an explicit null for role_id clears the role.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: Optional[str] = Field(default=None, max_length=255)
    role_id: Optional[int] = None
    menu_access: Optional[list[str]] = None
    sub_menu_access: Optional[dict[str, list[str]]] = None
    component_access: Optional[list[str]] = None
    is_active: Optional[bool] = None
    needs_password_reset: Optional[bool] = None

    def changes(self) -> dict:
        """Fields the client actually sent, ignoring explicit nulls except role_id."""
        sent = self.model_dump(exclude_unset=True)
        return {key: value for key, value in sent.items() if value is not None or key == "role_id"}


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------


class PasswordCheckRequest(BaseModel):
    password: str = Field(max_length=128)


class PolicyResultResponse(BaseModel):
    """Response for POST /api/v1/validate-password. Advisory only."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    message: str
    violations: list[str]

    @classmethod
    def from_result(cls, result: PolicyResult) -> "PolicyResultResponse":
        return cls(valid=result.valid, message=result.message, violations=list(result.violations))


# ---------------------------------------------------------------------------
# Sessions and credentials
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    email: str
    role: Optional[str] = None
    credential_state: CredentialState


class MeResponse(PrincipalResponse):
    allowed_actions: list[str]


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password.

    Supply the reset token directly, or the full URL the reset link landed on
    (the token is read from its #access_token= fragment or ?token= query).
    """

    token: Optional[str] = Field(default=None, max_length=4096)
    return_url: Optional[str] = Field(default=None, max_length=8192)
    new_password: str = Field(max_length=128)
    confirm_password: str = Field(max_length=128)

    @model_validator(mode="after")
    def require_token_source(self) -> "ResetPasswordRequest":
        if not self.token and not self.return_url:
            raise ValueError("Either token or return_url is required")
        return self


class ChangePasswordRequest(BaseModel):
    new_password: str = Field(max_length=128)
    confirm_password: str = Field(max_length=128)
