"""Unit tests for directory/service.py -- account directory operations.

Covers:
- create: generated temporary password passes policy and is returned once;
  the new principal is reset_required and a reset link is sent
- create: weak admin-supplied password, unknown role, duplicate email
- create: directory insert failure deprovisions the identity again;
  if that also fails -> InconsistentStateError
- update: partial update, not found, no changes, guardrails
- delete: identity and row removed; provider failure leaves the row;
  row failure after deprovision -> InconsistentStateError
"""

import argparse
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import (
    ConflictError,
    GuardrailError,
    InconsistentStateError,
    InvalidRequestError,
    NotFoundError,
    PolicyViolationError,
    ProviderFailureError,
    UnauthenticatedError,
)
from core.models import CredentialState
from core.policy import evaluate
from directory.lifecycle import credential_state

PASSWORD = "Str0ng-Passw0rd!"


def _role_id(stack, name: str) -> int:
    return stack.store.get_role_by_name(name).id


def _locked() -> OperationalError:
    return OperationalError("SQL", {}, Exception("database is locked"))


@pytest.fixture
def admin(stack, seed):
    return seed(stack, "admin@example.com", PASSWORD, role="admin")


class TestCreate:
    def test_generated_password_is_returned_and_valid(self, stack) -> None:
        created = stack.directory.create_principal("new@example.com", role_id=_role_id(stack, "viewer"))
        assert created.temporary_password is not None
        assert len(created.temporary_password) == 16
        assert evaluate(created.temporary_password).valid
        stack.provider.sign_in("new@example.com", created.temporary_password)

    def test_new_principal_is_reset_required_and_notified(self, stack) -> None:
        created = stack.directory.create_principal(" New@Example.com ", full_name="New Person")
        assert created.principal.email == "new@example.com"
        assert credential_state(created.principal) is CredentialState.reset_required
        assert created.notification_sent is True
        assert stack.outbox.last_token_for("new@example.com") is not None

    @pytest.mark.parametrize("password", [None, PASSWORD], ids=["generated", "supplied"])
    def test_every_new_principal_starts_reset_required(self, stack, password) -> None:
        created = stack.directory.create_principal("new@example.com", password=password)
        stored = stack.store.get_user(created.principal.id)
        assert credential_state(stored) is CredentialState.reset_required
        assert created.notification_sent is True

    def test_create_has_no_reset_opt_out(self, stack) -> None:
        with pytest.raises(TypeError):
            stack.directory.create_principal("new@example.com", password=PASSWORD, needs_password_reset=False)

    def test_supplied_password_used_and_not_echoed(self, stack) -> None:
        created = stack.directory.create_principal("new@example.com", password=PASSWORD)
        assert created.temporary_password is None
        stack.provider.sign_in("new@example.com", PASSWORD)

    def test_weak_supplied_password_rejected_before_provisioning(self, stack) -> None:
        with patch.object(stack.provider, "provision_identity") as provision:
            with pytest.raises(PolicyViolationError):
                stack.directory.create_principal("new@example.com", password="abc12345")
        provision.assert_not_called()

    def test_unknown_role(self, stack) -> None:
        with pytest.raises(InvalidRequestError) as excinfo:
            stack.directory.create_principal("new@example.com", role_id=999)
        assert excinfo.value.code == "invalid_role"

    def test_duplicate_email(self, stack, admin) -> None:
        with pytest.raises(ConflictError):
            stack.directory.create_principal("admin@example.com")

    def test_grants_are_stored(self, stack) -> None:
        created = stack.directory.create_principal(
            "new@example.com",
            menu_access=["dashboard"],
            sub_menu_access={"reports": ["monthly"]},
            component_access=["export-button"],
        )
        assert created.principal.menu_access == {"dashboard"}
        assert created.principal.sub_menu_access == {"reports": {"monthly"}}
        assert created.principal.component_access == {"export-button"}

    def test_directory_failure_rolls_back_identity(self, stack) -> None:
        with patch.object(stack.store, "create_user", side_effect=_locked()):
            with pytest.raises(ProviderFailureError):
                stack.directory.create_principal("new@example.com", password=PASSWORD)
        assert stack.identities.get_by_email("new@example.com") is None
        with pytest.raises(UnauthenticatedError):
            stack.provider.sign_in("new@example.com", PASSWORD)

    def test_rollback_failure_is_inconsistent(self, stack) -> None:
        with patch.object(stack.store, "create_user", side_effect=_locked()):
            with patch.object(stack.provider, "deprovision_identity", side_effect=ProviderFailureError()):
                with pytest.raises(InconsistentStateError):
                    stack.directory.create_principal("new@example.com", password=PASSWORD)

    def test_provider_conflict_leaves_directory_untouched(self, stack) -> None:
        stack.provider.provision_identity("taken@example.com", PASSWORD)
        with pytest.raises(ConflictError):
            stack.directory.create_principal("taken@example.com")
        assert stack.store.get_user_by_email("taken@example.com") is None


class TestUpdate:
    def test_partial_update(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD, menu_access={"dashboard"})
        updated = stack.directory.update_principal(target.id, admin, full_name="Renamed")
        assert updated.full_name == "Renamed"
        assert updated.menu_access == {"dashboard"}

    def test_role_change(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        updated = stack.directory.update_principal(target.id, admin, role_id=_role_id(stack, "member"))
        assert updated.role_name == "member"

    def test_not_found(self, stack, admin) -> None:
        with pytest.raises(NotFoundError):
            stack.directory.update_principal("nope", admin, full_name="x")

    def test_no_changes(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        with pytest.raises(InvalidRequestError) as excinfo:
            stack.directory.update_principal(target.id, admin)
        assert excinfo.value.code == "no_changes"

    def test_unknown_role(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        with pytest.raises(InvalidRequestError):
            stack.directory.update_principal(target.id, admin, role_id=999)

    def test_forcing_reset_sends_link(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        updated = stack.directory.update_principal(target.id, admin, needs_password_reset=True)
        assert credential_state(updated) is CredentialState.reset_required
        assert stack.outbox.last_token_for("user@example.com") is not None

    def test_cannot_deactivate_self(self, stack, admin) -> None:
        with pytest.raises(GuardrailError) as excinfo:
            stack.directory.update_principal(admin.id, admin, is_active=False)
        assert excinfo.value.code == "cannot_deactivate_self"

    def test_cannot_demote_self(self, stack, seed, admin) -> None:
        seed(stack, "admin2@example.com", PASSWORD, role="admin")
        with pytest.raises(GuardrailError) as excinfo:
            stack.directory.update_principal(admin.id, admin, role_id=_role_id(stack, "viewer"))
        assert excinfo.value.code == "cannot_demote_self"

    def test_last_admin_cannot_be_demoted(self, stack, seed, admin) -> None:
        # A second, inactive admin does not count.
        other = seed(stack, "admin2@example.com", PASSWORD, role="admin")
        stack.directory.update_principal(other.id, admin, is_active=False)
        operator = seed(stack, "ops@example.com", PASSWORD, role="member")
        with pytest.raises(GuardrailError) as excinfo:
            stack.directory.update_principal(admin.id, operator, role_id=_role_id(stack, "viewer"))
        assert excinfo.value.code == "last_admin"

    def test_other_admin_can_be_deactivated(self, stack, seed, admin) -> None:
        other = seed(stack, "admin2@example.com", PASSWORD, role="admin")
        updated = stack.directory.update_principal(other.id, admin, is_active=False)
        assert updated.is_active is False


class TestDelete:
    def test_removes_identity_and_row(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        stack.directory.delete_principal(target.id, admin)
        assert stack.store.get_user(target.id) is None
        assert stack.identities.get_by_id(target.id) is None

    def test_not_found(self, stack, admin) -> None:
        with pytest.raises(NotFoundError):
            stack.directory.delete_principal("nope", admin)

    def test_cannot_delete_self(self, stack, admin) -> None:
        with pytest.raises(GuardrailError) as excinfo:
            stack.directory.delete_principal(admin.id, admin)
        assert excinfo.value.code == "cannot_delete_self"

    def test_provider_failure_leaves_row(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        with patch.object(stack.provider, "deprovision_identity", side_effect=ProviderFailureError()):
            with pytest.raises(ProviderFailureError):
                stack.directory.delete_principal(target.id, admin)
        assert stack.store.get_user(target.id) is not None

    def test_row_failure_after_deprovision_is_inconsistent(self, stack, seed, admin) -> None:
        target = seed(stack, "user@example.com", PASSWORD)
        with patch.object(stack.store, "delete_user", side_effect=_locked()):
            with pytest.raises(InconsistentStateError):
                stack.directory.delete_principal(target.id, admin)
        assert stack.identities.get_by_id(target.id) is None
        assert stack.store.get_user(target.id) is not None


class TestCreateAdminCommand:
    def test_bootstrap_admin_starts_reset_required(self, stack, capsys) -> None:
        import main

        args = argparse.Namespace(email="Boot@Example.com", name="Bootstrap", password=PASSWORD)
        with patch.object(main, "_open_directory", return_value=(stack.store, stack.directory)):
            with patch.object(stack.store, "close"):
                with patch.object(stack.provider, "close"):
                    assert main._cmd_create_admin(args) == 0
        principal = stack.store.get_user_by_email("boot@example.com")
        assert principal.role_name == "admin"
        assert credential_state(principal) is CredentialState.reset_required
        assert "must change its password" in capsys.readouterr().out

    def test_no_reset_flag_is_gone(self, monkeypatch) -> None:
        import main

        monkeypatch.setattr(
            "sys.argv",
            ["accessgate", "create-admin", "--email", "a@example.com", "--password", PASSWORD, "--no-reset"],
        )
        with pytest.raises(SystemExit) as excinfo:
            main.main()
        assert excinfo.value.code == 2
