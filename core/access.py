"""
core/access.py -- Access decision engine.

Two independent surfaces:
  Role checks (can_access) gate ACTIONS. They consult POLICY_TABLE, an
      explicit (resource, action) -> allowed-roles mapping. The admin role
      short-circuits to allow before any table lookup.
  Grant checks (has_menu_access, has_sub_menu_access, has_component_access)
      gate UI VISIBILITY. They test direct membership in the principal's
      grant sets and never look at the role.

A principal can pass one and fail the other.

Every function is deny-by-default: a missing principal, an inactive
principal, an unknown resource or an unknown action returns False. Nothing
in this module raises.

The directory schema also has a role_permissions join table. It is not
consulted here; POLICY_TABLE is the authoritative rule set.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Optional

from core.models import ADMIN_ROLE, Principal

_ALL_ROLES = frozenset({"admin", "member", "viewer"})
_STAFF = frozenset({"admin", "member"})
_ADMIN_ONLY = frozenset({ADMIN_ROLE})

# (resource, action) -> roles allowed. Pairs not listed here are denied for
# every role except admin.
POLICY_TABLE: Mapping[tuple[str, str], frozenset[str]] = MappingProxyType(
    {
        ("admin", "access"): _ADMIN_ONLY,
        ("dashboard", "access"): _ALL_ROLES,
        ("dashboard", "view"): _ALL_ROLES,
        ("users", "read"): _ADMIN_ONLY,
        ("users", "create"): _ADMIN_ONLY,
        ("users", "update"): _ADMIN_ONLY,
        ("users", "delete"): _ADMIN_ONLY,
        ("reports", "view"): _ALL_ROLES,
        ("reports", "export"): _STAFF,
        ("transactions", "create"): _STAFF,
        ("transactions", "approve"): _ADMIN_ONLY,
    }
)

PERMISSION_DESCRIPTIONS: Mapping[tuple[str, str], str] = MappingProxyType(
    {
        ("admin", "access"): "Open the administration panel",
        ("dashboard", "access"): "Open the dashboard",
        ("dashboard", "view"): "View dashboard widgets",
        ("users", "read"): "List user accounts",
        ("users", "create"): "Create user accounts",
        ("users", "update"): "Edit user accounts",
        ("users", "delete"): "Delete user accounts",
        ("reports", "view"): "View reports",
        ("reports", "export"): "Export reports",
        ("transactions", "create"): "Create transactions",
        ("transactions", "approve"): "Approve transactions",
    }
)


def _usable(principal: Optional[Principal]) -> bool:
    return principal is not None and principal.is_active


def is_admin(principal: Optional[Principal]) -> bool:
    return _usable(principal) and principal.role_name == ADMIN_ROLE


def allowed_roles(resource: str, action: str) -> frozenset[str]:
    """Roles the table allows for (resource, action). Empty when the pair is unknown."""
    return POLICY_TABLE.get((resource, action), frozenset())


def can_access(principal: Optional[Principal], resource: str, action: str) -> bool:
    if not _usable(principal):
        return False
    if principal.role_name == ADMIN_ROLE:
        return True
    role = principal.role_name
    if role is None:
        return False
    return role in allowed_roles(resource, action)


def can_access_admin_panel(principal: Optional[Principal]) -> bool:
    return can_access(principal, "admin", "access")


def allowed_actions(principal: Optional[Principal]) -> list[str]:
    """Every "resource:action" in POLICY_TABLE the principal passes, sorted."""
    return sorted(f"{resource}:{action}" for resource, action in POLICY_TABLE if can_access(principal, resource, action))


def has_menu_access(principal: Optional[Principal], menu_id: str) -> bool:
    if not _usable(principal):
        return False
    return menu_id in principal.menu_access


def has_sub_menu_access(principal: Optional[Principal], menu_id: str, sub_menu_id: str) -> bool:
    if not _usable(principal):
        return False
    return sub_menu_id in principal.sub_menu_access.get(menu_id, ())


def has_component_access(principal: Optional[Principal], component_id: str) -> bool:
    if not _usable(principal):
        return False
    return component_id in principal.component_access
