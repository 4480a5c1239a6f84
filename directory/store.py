"""
directory/store.py -- SQLAlchemy Core persistence for principals and roles.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. DirectoryStore is the repository; the
_row_to_* functions are the mappers. Services never touch SQL directly.

Atomicity: every mutation is a single statement. update_user() writes all
the fields it was given in one UPDATE, so a concurrent update to other
fields of the same row cannot tear it, and two updates of the same field
resolve last-writer-wins.

Seed data: the three built-in roles and the permission vocabulary from
core.access.POLICY_TABLE are inserted on first start. role_permissions is
created but left empty; decisions come from POLICY_TABLE.

Security: all queries use bound parameters. No f-strings in SQL.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.access import PERMISSION_DESCRIPTIONS, POLICY_TABLE
from core.errors import ProviderFailureError
from core.models import ADMIN_ROLE, Permission, Principal, Role

logger = logging.getLogger("accessgate.directory.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'accessgate_directory.db'}"

DEFAULT_ROLES: tuple[tuple[str, str], ...] = (
    (ADMIN_ROLE, "Full access to every resource and the administration panel"),
    ("member", "Can work with reports and create transactions"),
    ("viewer", "Read-only access to the dashboard and reports"),
)

# Columns update_user() may write. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset(
    {
        "full_name",
        "role_id",
        "menu_access",
        "sub_menu_access",
        "component_access",
        "is_active",
        "needs_password_reset",
        "reset_requested_at",
    }
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("resource", String(100), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, nullable=False),
    Column("permission_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),  # identity-provider id
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("role_id", Integer),
    Column("menu_access", Text),  # JSON array
    Column("sub_menu_access", Text),  # JSON object of arrays
    Column("component_access", Text),  # JSON array
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("needs_password_reset", Integer, nullable=False, server_default="0"),
    Column("reset_requested_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_set(values) -> str:
    return json.dumps(sorted(values or ()))


def _encode_map(values) -> str:
    return json.dumps({key: sorted(items) for key, items in sorted((values or {}).items())})


def _principal_query():
    return select(
        _users,
        _roles.c.name.label("role_name"),
        _roles.c.description.label("role_description"),
        _roles.c.created_at.label("role_created_at"),
    ).select_from(_users.outerjoin(_roles, _users.c.role_id == _roles.c.id))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DirectoryStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)
        self._ensure_seed_data()

    def _ensure_seed_data(self) -> None:
        """Insert built-in roles and the permission vocabulary if missing. Idempotent."""
        now = _now_iso()
        with self.engine.connect() as conn:
            existing_roles = {row.name for row in conn.execute(select(_roles.c.name))}
            for name, description in DEFAULT_ROLES:
                if name not in existing_roles:
                    conn.execute(_roles.insert().values(name=name, description=description, created_at=now))
            existing_perms = {(row.resource, row.action) for row in conn.execute(select(_permissions.c.resource, _permissions.c.action))}
            for resource, action in POLICY_TABLE:
                if (resource, action) not in existing_perms:
                    conn.execute(
                        _permissions.insert().values(
                            resource=resource,
                            action=action,
                            description=PERMISSION_DESCRIPTIONS.get((resource, action), ""),
                            created_at=now,
                        )
                    )
            conn.commit()

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_role(self, role_id: int) -> Optional[Role]:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Optional[Role]:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.resource, _permissions.c.action)).fetchall()
        return [
            Permission(id=r.id, resource=r.resource, action=r.action, description=r.description or "") for r in rows
        ]

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def create_user(self, principal: Principal) -> None:
        """Insert a principal row keyed by its identity id.

        Raises sqlalchemy.exc.IntegrityError if the id or email already exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=principal.id,
                    email=principal.email,
                    full_name=principal.full_name,
                    role_id=principal.role_id,
                    menu_access=_encode_set(principal.menu_access),
                    sub_menu_access=_encode_map(principal.sub_menu_access),
                    component_access=_encode_set(principal.component_access),
                    is_active=1 if principal.is_active else 0,
                    needs_password_reset=1 if principal.needs_password_reset else 0,
                    reset_requested_at=principal.reset_requested_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()

    def get_user(self, user_id: str) -> Optional[Principal]:
        with self.engine.connect() as conn:
            row = conn.execute(_principal_query().where(_users.c.id == user_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_user_by_email(self, email: str) -> Optional[Principal]:
        with self.engine.connect() as conn:
            row = conn.execute(_principal_query().where(_users.c.email == email)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def list_users(self) -> list[Principal]:
        """All principals, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_principal_query().order_by(_users.c.created_at.desc(), _users.c.email)).fetchall()
        return [_row_to_principal(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Apply a partial update in one statement.

        Grant fields accept any iterable/mapping and are serialized here.
        Booleans are converted to 0/1 for SQLite.

        Returns True if a row was updated, False if user_id was not found.
        Raises ValueError for fields outside the mutable set.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = dict(fields)
        for key in ("menu_access", "component_access"):
            if key in values:
                values[key] = _encode_set(values[key])
        if "sub_menu_access" in values:
            values["sub_menu_access"] = _encode_map(values["sub_menu_access"])
        for key in ("is_active", "needs_password_reset"):
            if key in values:
                values[key] = 1 if values[key] else 0
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def mark_reset_requested(self, user_id: str) -> bool:
        return self.update_user(user_id, reset_requested_at=_now_iso())

    def delete_user(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Active principals holding the admin role. Guards the last-admin rules."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users.join(_roles, _users.c.role_id == _roles.c.id))
                .where((_roles.c.name == ADMIN_ROLE) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description or "", created_at=row.created_at)


def _row_to_principal(row) -> Principal:
    role = None
    if row.role_name is not None:
        role = Role(
            id=row.role_id,
            name=row.role_name,
            description=row.role_description or "",
            created_at=row.role_created_at,
        )
    sub_menus = json.loads(row.sub_menu_access) if row.sub_menu_access else {}
    return Principal(
        id=row.id,
        email=row.email,
        full_name=row.full_name or "",
        role_id=row.role_id,
        role=role,
        menu_access=set(json.loads(row.menu_access)) if row.menu_access else set(),
        sub_menu_access={key: set(items) for key, items in sub_menus.items()},
        component_access=set(json.loads(row.component_access)) if row.component_access else set(),
        is_active=bool(row.is_active),
        needs_password_reset=bool(row.needs_password_reset),
        reset_requested_at=row.reset_requested_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


@contextmanager
def directory_errors(operation: str) -> Iterator[None]:
    """Turn storage exceptions into ProviderFailureError for service callers.

    The SQL error is logged here and never reaches the client.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Directory store failure during %s: %s", operation, exc)
        raise ProviderFailureError() from exc
