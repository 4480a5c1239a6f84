#!/usr/bin/env python3
"""
AccessGate -- Role-based access control and credential lifecycle.

Operator commands for the parts of the system that must work before the API
has an admin to log in with.

Usage:
  python main.py check-password 'S0me-Passw0rd!'
  python main.py generate-password
  python main.py generate-password --length 24
  python main.py create-admin --email ops@example.com --name "Ops Team"
  python main.py create-admin --email ops@example.com --password 'S0me-Passw0rd!'
  python main.py force-reset --email someone@example.com

Environment variables:
  SECRET_KEY          Required unless DEBUG=true. Signs access and reset tokens.
  IDENTITY_PROVIDER   local (default) or gotrue.
  DIRECTORY_DB_URL    Directory database URL (default: SQLite under directory/).
"""

import argparse
import sys
from typing import Optional

from auth.provider import build_identity_provider
from core.config import get_settings
from core.errors import AccessGateError
from core.models import ADMIN_ROLE
from core.policy import evaluate, generate_temporary_password
from directory.lifecycle import CredentialLifecycle
from directory.service import AccountDirectory
from directory.store import DirectoryStore


def _cmd_check_password(args: argparse.Namespace) -> int:
    result = evaluate(args.password)
    print(f"  {result.message}")
    for violation in result.violations:
        print(f"  [!] {violation}")
    return 0 if result.valid else 1


def _cmd_generate_password(args: argparse.Namespace) -> int:
    try:
        print(generate_temporary_password(args.length))
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    return 0


def _open_directory() -> tuple[DirectoryStore, AccountDirectory]:
    settings = get_settings()
    store = DirectoryStore(db_url=settings.directory_db_url)
    provider = build_identity_provider(settings)
    lifecycle = CredentialLifecycle(store, provider, settings.reset_return_url)
    directory = AccountDirectory(store, provider, lifecycle, settings.temporary_password_length)
    return store, directory


def _cmd_create_admin(args: argparse.Namespace) -> int:
    """Bootstrap an admin through the same path the API uses.

    The account starts in reset_required like every new account; the first
    sign-in must go through change-password before the admin routes open.
    """
    store, directory = _open_directory()
    try:
        role = store.get_role_by_name(ADMIN_ROLE)
        created = directory.create_principal(
            email=args.email,
            full_name=args.name,
            role_id=role.id if role else None,
            password=args.password,
        )
    except AccessGateError as e:
        print(f"  [!] {e.message}")
        _print_violations(e)
        return 1
    finally:
        directory.provider.close()
        store.close()

    print(f"  Created admin {created.principal.email} ({created.principal.id})")
    if created.temporary_password:
        print(f"  Temporary password (shown once): {created.temporary_password}")
    print("  The account must change its password at first sign-in.")
    return 0


def _cmd_force_reset(args: argparse.Namespace) -> int:
    store, directory = _open_directory()
    try:
        principal = store.get_user_by_email(args.email.strip().lower())
        if principal is None:
            print(f"  [!] No account for {args.email}.")
            return 1
        directory.lifecycle.force_reset(principal.id)
    except AccessGateError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        directory.provider.close()
        store.close()
    print(f"  {principal.email} must reset their password before continuing.")
    return 0


def _print_violations(error: AccessGateError) -> None:
    violations: Optional[list] = getattr(error, "violations", None)
    for violation in violations or ():
        print(f"      - {violation}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="accessgate",
        description="Access control and credential lifecycle administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py check-password 'abc12345'
  python main.py generate-password --length 20
  python main.py create-admin --email ops@example.com --name "Ops Team"
  DEBUG=true python main.py force-reset --email someone@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    check = sub.add_parser("check-password", help="Evaluate a password against the strength policy")
    check.add_argument("password", help="Candidate password")
    check.set_defaults(func=_cmd_check_password)

    gen = sub.add_parser("generate-password", help="Print a temporary password that passes the policy")
    gen.add_argument(
        "--length",
        type=int,
        default=16,
        metavar="N",
        help="Password length (default: 16, minimum: 8)",
    )
    gen.set_defaults(func=_cmd_generate_password)

    create = sub.add_parser("create-admin", help="Create an admin account")
    create.add_argument("--email", required=True, help="Admin email address")
    create.add_argument("--name", default="", help="Display name")
    create.add_argument(
        "--password",
        default=None,
        help="Initial password (must pass the policy). Generated when omitted.",
    )
    create.set_defaults(func=_cmd_create_admin)

    force = sub.add_parser("force-reset", help="Require an account to reset its password")
    force.add_argument("--email", required=True, help="Account email address")
    force.set_defaults(func=_cmd_force_reset)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
