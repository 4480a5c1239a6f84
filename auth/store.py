"""
auth/store.py -- SQLAlchemy Core persistence for the local identity provider.

Pattern: Repository + Data Mapper (same as directory/store.py).
IdentityStore is the repository; _row_to_identity is the mapper. The
provider in auth/local.py never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  set_password() bumps credential_version in the same UPDATE that writes the
  new hash, so a concurrent reset-token redemption can never observe the new
  hash with the old version.

  revoked_tokens holds the jti of every access token ended by sign-out until
  the token would have expired anyway.

DB path: auth/accessgate_identity.db (sibling to directory/accessgate_directory.db).

Layer rule: no imports from api/ or directory/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Identity

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'accessgate_identity.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("credential_version", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_sign_in", String(32)),
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def create_identity(self, identity: Identity) -> None:
        """Insert a new identity.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _identities.insert().values(
                    id=identity.id,
                    email=identity.email,
                    hashed_password=identity.hashed_password,
                    credential_version=identity.credential_version,
                    created_at=_now_iso(),
                )
            )
            conn.commit()

    def get_by_id(self, identity_id: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact (already normalized) email."""
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def set_password(self, identity_id: str, hashed_password: str, expected_version: int | None = None) -> bool:
        """Replace the password hash and bump credential_version in one statement.

        With expected_version the update only applies if the version has not
        moved since the caller read it -- two redemptions of tokens issued
        against the same version cannot both succeed.

        Returns True if a row was updated.
        """
        condition = _identities.c.id == identity_id
        if expected_version is not None:
            condition = condition & (_identities.c.credential_version == expected_version)
        with self.engine.connect() as conn:
            result = conn.execute(
                _identities.update()
                .where(condition)
                .values(
                    hashed_password=hashed_password,
                    credential_version=_identities.c.credential_version + 1,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_identity(self, identity_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_identities.delete().where(_identities.c.id == identity_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_sign_in(self, identity_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_identities.update().where(_identities.c.id == identity_id).values(last_sign_in=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Token revocation
    # ------------------------------------------------------------------

    def revoke_token(self, jti: str, expires_at: str) -> None:
        """Record a signed-out access token. Revoking twice is a no-op."""
        with self.engine.connect() as conn:
            try:
                conn.execute(_revoked_tokens.insert().values(jti=jti, expires_at=expires_at))
                conn.commit()
            except IntegrityError:
                conn.rollback()

    def is_revoked(self, jti: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_revoked_tokens.select().where(_revoked_tokens.c.jti == jti)).fetchone()
        return row is not None

    def purge_expired_revocations(self) -> int:
        """Drop revocation entries whose tokens have expired on their own."""
        with self.engine.connect() as conn:
            result = conn.execute(_revoked_tokens.delete().where(_revoked_tokens.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        credential_version=row.credential_version,
        created_at=row.created_at,
        last_sign_in=row.last_sign_in,
    )
