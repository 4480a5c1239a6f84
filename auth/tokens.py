"""
auth/tokens.py -- Password hashing, JWT access tokens and password-reset tokens.

Used by the local identity provider (auth/local.py). The GoTrue provider
delegates all of this to the remote service.

Security design decisions:
  JWT: python-jose with HS256, signed with SECRET_KEY. Two token purposes
       share the key but never each other's decoder: an access token carries
       purpose="access" and a jti (so sign-out can revoke it); a reset token
       carries purpose="password_reset" and the identity's credential version
       at issue time. Any credential change bumps the version, which makes
       every outstanding reset token for that identity unusable -- that is
       what makes reset tokens single-use.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in sign-in so response time does not reveal
       whether an email exists.

Layer rule: no imports from api/ or directory/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from core.config import get_settings
from core.errors import InvalidOrExpiredTokenError

logger = logging.getLogger("accessgate.auth.tokens")

_settings = get_settings()

_ALGORITHM = "HS256"
ACCESS_PURPOSE = "access"
RESET_PURPOSE = "password_reset"

# bcrypt only looks at the first 72 bytes. Longer input is refused rather than
# truncated, so two passwords sharing a 72-byte prefix never match each other.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for input over 72 bytes; the password policy rejects
    such passwords before they get here.
    """
    if len(plain.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError("Password exceeds the 72-byte bcrypt limit.")
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch, and so is input over
    72 bytes (after the same bcrypt work, so timing does not differ).
    """
    too_long = len(plain.encode("utf-8")) > _BCRYPT_MAX_BYTES
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8")) and not too_long
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Timing equalization dummy hash. Computed once at module load.
_DUMMY_HASH: str = hash_password("accessgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification against the dummy hash."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def create_access_token(identity_id: str, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed access token for an identity.

    Args:
        identity_id:    Identity id, stored as the subject claim.
        email:          Carried for display only; never trusted for lookups.
        expire_seconds: Session duration. 0 means Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": identity_id,
        "email": email,
        "purpose": ACCESS_PURPOSE,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the payload or None on any failure.

    A reset token presented as a bearer credential is rejected here by its
    purpose claim.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != ACCESS_PURPOSE or not payload.get("sub") or not payload.get("jti"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


def create_reset_token(identity_id: str, credential_version: int, expire_seconds: int = 0) -> str:
    """Encode a password-reset token bound to the identity's current credential version."""
    duration = expire_seconds if expire_seconds > 0 else _settings.reset_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": identity_id,
        "purpose": RESET_PURPOSE,
        "ver": credential_version,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_reset_token(token: str) -> dict:
    """Decode a reset token or raise InvalidOrExpiredTokenError.

    Expiry is reported separately (expired=True) from every other failure.
    The credential-version check is the caller's job: only the identity
    store knows the current version.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise InvalidOrExpiredTokenError(expired=True) from exc
    except JWTError as exc:
        raise InvalidOrExpiredTokenError() from exc
    if payload.get("purpose") != RESET_PURPOSE or not payload.get("sub") or not isinstance(payload.get("ver"), int):
        raise InvalidOrExpiredTokenError()
    return payload


def extract_reset_token(url: str) -> str | None:
    """Pull a reset token out of the URL a reset link landed on.

    Providers put it either in the fragment (#access_token=...&type=recovery)
    or in the query string (?token=...). The fragment wins when both exist.
    """
    parsed = urlparse(url)
    fragment = parse_qs(parsed.fragment).get("access_token")
    if fragment and fragment[0]:
        return fragment[0]
    query = parse_qs(parsed.query).get("token")
    if query and query[0]:
        return query[0]
    return None
