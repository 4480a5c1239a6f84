"""
directory/service.py -- Account directory operations.

Each account lives in two places: an identity in the identity provider
(credential) and a principal row in the directory (role, grants, flags). The
principal row reuses the identity id as its primary key.

Nothing here is a distributed transaction. The order of steps is chosen so a
failure leaves the safest possible state:

  create   provision identity -> insert row. If the insert fails the identity
           is deprovisioned again. If that also fails -> InconsistentStateError.
  delete   deprovision identity -> delete row. A provider failure leaves both
           records intact. A row failure after the identity is gone ->
           InconsistentStateError.
  update   one UPDATE on the row; the provider is not involved.

Guardrails (an admin cannot lock the directory out of administration):
  - no self-deactivation, self-demotion or self-delete
  - the last active admin cannot be deactivated, demoted or deleted
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.access import is_admin
from core.errors import (
    ConflictError,
    GuardrailError,
    InconsistentStateError,
    InvalidRequestError,
    NotFoundError,
    PolicyViolationError,
    ProviderFailureError,
)
from core.models import ADMIN_ROLE, Principal
from core.policy import evaluate, generate_temporary_password
from directory.lifecycle import CredentialLifecycle
from directory.store import DirectoryStore, directory_errors

if TYPE_CHECKING:
    from auth.provider import IdentityProvider

logger = logging.getLogger("accessgate.directory.service")

_UPDATABLE = frozenset(
    {
        "full_name",
        "role_id",
        "menu_access",
        "sub_menu_access",
        "component_access",
        "is_active",
        "needs_password_reset",
    }
)


@dataclass
class CreatedPrincipal:
    """Result of create_principal. temporary_password is set only when generated."""

    principal: Principal
    temporary_password: Optional[str] = None
    notification_sent: bool = False


class AccountDirectory:
    def __init__(
        self,
        store: DirectoryStore,
        provider: IdentityProvider,
        lifecycle: CredentialLifecycle,
        temporary_password_length: int = 16,
    ) -> None:
        self.store = store
        self.provider = provider
        self.lifecycle = lifecycle
        self.temporary_password_length = temporary_password_length

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_principals(self) -> list[Principal]:
        with directory_errors("list_principals"):
            return self.store.list_users()

    def get_principal(self, principal_id: str) -> Principal:
        with directory_errors("get_principal"):
            principal = self.store.get_user(principal_id)
        if principal is None:
            raise NotFoundError()
        return principal

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_principal(
        self,
        email: str,
        full_name: str = "",
        role_id: Optional[int] = None,
        password: Optional[str] = None,
        menu_access=(),
        sub_menu_access=None,
        component_access=(),
        is_active: bool = True,
    ) -> CreatedPrincipal:
        """Provision an identity and its directory row.

        An admin-supplied password must pass the strength policy; without one
        a temporary password is generated and returned once. New accounts
        start in reset_required and a reset link is sent.
        """
        email = email.strip().lower()
        if role_id is not None:
            self._check_role(role_id)

        temporary_password = None
        if password is None:
            password = temporary_password = generate_temporary_password(self.temporary_password_length)
        else:
            result = evaluate(password)
            if not result.valid:
                raise PolicyViolationError(result.violations)

        identity_id = self.provider.provision_identity(email, password)
        principal = Principal(
            id=identity_id,
            email=email,
            full_name=full_name,
            role_id=role_id,
            menu_access=set(menu_access or ()),
            sub_menu_access={key: set(items) for key, items in (sub_menu_access or {}).items()},
            component_access=set(component_access or ()),
            is_active=is_active,
            needs_password_reset=True,
        )
        try:
            self.store.create_user(principal)
        except IntegrityError as exc:
            logger.warning("Directory row for %s already exists; rolling back identity", email)
            self._compensate_create(identity_id)
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            logger.error("Directory insert failed for %s: %s", email, exc)
            self._compensate_create(identity_id)
            raise ProviderFailureError() from exc

        with directory_errors("create_principal"):
            created = self.store.get_user(identity_id)
        created = created or principal
        sent = self.lifecycle.send_reset_notification(created)
        logger.info("Created principal %s (%s)", created.id, created.email)
        return CreatedPrincipal(principal=created, temporary_password=temporary_password, notification_sent=sent)

    def _compensate_create(self, identity_id: str) -> None:
        try:
            self.provider.deprovision_identity(identity_id)
        except ProviderFailureError as exc:
            logger.error("Identity %s provisioned but directory insert and rollback both failed", identity_id)
            raise InconsistentStateError() from exc

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_principal(self, principal_id: str, actor: Principal, **changes: Any) -> Principal:
        """Apply a partial update. Only the fields given are written."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise InvalidRequestError(f"Unknown fields: {', '.join(sorted(unknown))}.")
        if not changes:
            raise InvalidRequestError("No changes provided.", code="no_changes")

        target = self.get_principal(principal_id)
        new_role_name = target.role_name
        if "role_id" in changes and changes["role_id"] != target.role_id:
            new_role_name = self._check_role(changes["role_id"]).name if changes["role_id"] is not None else None

        deactivating = changes.get("is_active") is False and target.is_active
        demoting = is_admin(target) and new_role_name != ADMIN_ROLE
        if target.id == actor.id:
            if deactivating:
                raise GuardrailError("cannot_deactivate_self", "You cannot deactivate your own account.")
            if demoting:
                raise GuardrailError("cannot_demote_self", "You cannot remove your own admin role.")
        if target.is_active and is_admin(target) and (deactivating or demoting):
            self._check_not_last_admin("deactivate or demote")

        with directory_errors("update_principal"):
            if not self.store.update_user(principal_id, **changes):
                raise NotFoundError()
            updated = self.store.get_user(principal_id)
        if updated is None:
            raise NotFoundError()
        if changes.get("needs_password_reset") is True:
            self.lifecycle.send_reset_notification(updated)
        logger.info("Updated principal %s by %s: %s", principal_id, actor.id, ", ".join(sorted(changes)))
        return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_principal(self, principal_id: str, actor: Principal) -> None:
        target = self.get_principal(principal_id)
        if target.id == actor.id:
            raise GuardrailError("cannot_delete_self", "You cannot delete your own account.")
        if target.is_active and is_admin(target):
            self._check_not_last_admin("delete")

        # Provider errors propagate with the directory row untouched.
        self.provider.deprovision_identity(principal_id)
        try:
            deleted = self.store.delete_user(principal_id)
        except SQLAlchemyError as exc:
            logger.error("Identity %s removed but directory delete failed: %s", principal_id, exc)
            raise InconsistentStateError() from exc
        if not deleted:
            logger.error("Identity %s removed but directory row vanished before delete", principal_id)
            raise InconsistentStateError()
        logger.info("Deleted principal %s by %s", principal_id, actor.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_role(self, role_id: int):
        with directory_errors("get_role"):
            role = self.store.get_role(role_id)
        if role is None:
            raise InvalidRequestError("Unknown role.", code="invalid_role")
        return role

    def _check_not_last_admin(self, verb: str) -> None:
        with directory_errors("count_active_admins"):
            remaining = self.store.count_active_admins()
        if remaining <= 1:
            raise GuardrailError("last_admin", f"Cannot {verb} the last active admin.")
