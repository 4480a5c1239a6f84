"""
api/routes/v1/admin_users.py -- Account directory administration endpoints.

Routes:
  GET    /api/v1/admin-users          -- list principals, newest first (admin)
  POST   /api/v1/admin-users          -- create principal (admin)
  PUT    /api/v1/admin-users/{id}     -- partial update (admin)
  DELETE /api/v1/admin-users/{id}     -- delete principal and identity (admin)
  GET    /api/v1/roles                -- role vocabulary (users:read)
  GET    /api/v1/permissions          -- permission vocabulary (admin:access)

Every route resolves the caller through auth/dependencies.py before the
handler body runs, so an unauthenticated DELETE is rejected with 401 without
the directory or provider ever being touched.

Service errors (core/errors.py) are not caught here; api/main.py renders them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    PermissionResponse,
    PrincipalCreate,
    PrincipalCreatedResponse,
    PrincipalResponse,
    PrincipalUpdate,
    RoleResponse,
)
from auth.dependencies import require_admin, require_permission
from core.access import allowed_roles
from core.models import Principal
from directory.lifecycle import credential_state
from directory.service import AccountDirectory
from directory.store import directory_errors

# Auth policy:
# - GET/POST/PUT/DELETE /admin-users*:  require_admin (401 no bearer, 403 non-admin)
# - GET /roles:                         require_permission("users", "read")
# - GET /permissions:                   require_permission("admin", "access")
router = APIRouter()


def _directory(request: Request) -> AccountDirectory:
    return request.app.state.directory


def _to_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse.from_principal(principal, credential_state(principal))


@router.get("/admin-users", response_model=list[PrincipalResponse])
def list_admin_users(request: Request, admin: Principal = Depends(require_admin)) -> list[PrincipalResponse]:
    return [_to_response(p) for p in _directory(request).list_principals()]


@router.post("/admin-users", response_model=PrincipalCreatedResponse, status_code=201)
def create_admin_user(
    request: Request,
    body: PrincipalCreate,
    admin: Principal = Depends(require_admin),
) -> PrincipalCreatedResponse:
    """Create a principal in reset_required and send a reset link.

    When no password is supplied one is generated and returned once in
    temporary_password.
    """
    created = _directory(request).create_principal(
        email=body.email,
        full_name=body.full_name,
        role_id=body.role_id,
        password=body.password,
        menu_access=body.menu_access,
        sub_menu_access=body.sub_menu_access,
        component_access=body.component_access,
        is_active=body.is_active,
    )
    base = _to_response(created.principal)
    return PrincipalCreatedResponse(
        **base.model_dump(),
        temporary_password=created.temporary_password,
        notification_sent=created.notification_sent,
    )


@router.put("/admin-users/{user_id}", response_model=PrincipalResponse)
def update_admin_user(
    user_id: str,
    request: Request,
    body: PrincipalUpdate,
    admin: Principal = Depends(require_admin),
) -> PrincipalResponse:
    updated = _directory(request).update_principal(user_id, admin, **body.changes())
    return _to_response(updated)


@router.delete("/admin-users/{user_id}", response_model=MessageResponse)
def delete_admin_user(
    user_id: str,
    request: Request,
    admin: Principal = Depends(require_admin),
) -> MessageResponse:
    _directory(request).delete_principal(user_id, admin)
    return MessageResponse(message="User deleted.")


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    principal: Principal = Depends(require_permission("users", "read")),
) -> list[RoleResponse]:
    with directory_errors("list_roles"):
        roles = _directory(request).store.list_roles()
    return [RoleResponse(id=r.id, name=r.name, description=r.description) for r in roles]


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    principal: Principal = Depends(require_permission("admin", "access")),
) -> list[PermissionResponse]:
    """The (resource, action) vocabulary with the roles each pair allows."""
    with directory_errors("list_permissions"):
        permissions = _directory(request).store.list_permissions()
    return [
        PermissionResponse(
            id=p.id,
            resource=p.resource,
            action=p.action,
            description=p.description,
            roles=sorted(allowed_roles(p.resource, p.action)),
        )
        for p in permissions
    ]
