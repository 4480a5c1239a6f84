"""
core/models.py -- Domain dataclasses for AccessGate.

Pure data containers with zero logic. Decisions live in core/access.py and
core/policy.py; persistence lives in directory/store.py. Route handlers map
these onto the Pydantic models in api/models.py.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# The super-role. Satisfies every resource/action check.
ADMIN_ROLE = "admin"


class CredentialState(str, Enum):
    normal = "normal"
    reset_required = "reset_required"
    reset_pending = "reset_pending"


@dataclass
class Role:
    name: str
    description: str = ""
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Permission:
    """A (resource, action) pair -- the vocabulary decisions are made over."""

    resource: str
    action: str
    description: str = ""
    id: Optional[int] = None


@dataclass
class Principal:
    """An account record: identity, role and the three independent grant sets.

    id is the identity-provider id; the directory row reuses it as its primary
    key so the two records can be matched without a lookup table.

    role is the joined Role row, or None when role_id is unset or dangling.
    reset_requested_at is set by a self-service reset request and cleared when
    any new credential is accepted.
    """

    id: str
    email: str
    full_name: str = ""
    role_id: Optional[int] = None
    role: Optional[Role] = None
    menu_access: set[str] = field(default_factory=set)
    sub_menu_access: dict[str, set[str]] = field(default_factory=dict)
    component_access: set[str] = field(default_factory=set)
    is_active: bool = True
    needs_password_reset: bool = False
    reset_requested_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def role_name(self) -> Optional[str]:
        return self.role.name if self.role is not None else None


@dataclass(frozen=True)
class PolicyResult:
    """Outcome of one password-strength check. Never persisted."""

    valid: bool
    message: str
    violations: tuple[str, ...] = ()
