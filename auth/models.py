"""
auth/models.py -- Domain dataclasses for the local identity provider.

Pattern: Data class (pure data container, zero logic). The directory's view
of an account is core.models.Principal; an Identity is the provider's side:
the login email and the credential.

Layer rule: no imports from api/ or directory/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Identity:
    """A credential record held by the local identity provider.

    credential_version starts at 1 and is incremented every time the password
    is set. Reset tokens embed the version they were issued against and are
    rejected once it moves on.
    """

    id: str
    email: str
    hashed_password: str
    credential_version: int = 1
    created_at: str | None = None
    last_sign_in: str | None = None
