"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and
authenticators do the work; these only own the shape.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("admin", "procurement", "supplier")
LINK_TOKEN_TYPES = ("login", "password_setup")


@dataclass
class User:
    """A credential record.

    email is stored normalized (lower-cased, trimmed) and is unique.

    password_hash is None for supplier accounts (magic-link only) and for
    staff accounts that have not completed password setup yet.
    """

    email: str
    role: str  # "admin", "procurement", "supplier"
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    password_hash: str | None = None
    password_set_at: str | None = None
    active: bool = True
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Supplier:
    """A business that can be invited to quote.

    email is the lookup key for magic-link login and OIDC claim matching. A
    supplier may exist without any User record until its first login.
    """

    supplier_name: str
    contact_person: str
    email: str
    id: int | None = None
    phone: str | None = None
    active: bool = True
    created_at: str | None = None


@dataclass
class LinkToken:
    """A single-use emailed token (magic login link or password setup link).

    Security design:
    - token_hash is SHA-256 of the raw secret. The raw secret only ever lives
      in the emailed URL; the database alone cannot be used to log in.
    - used_at is None until the token is consumed. It is set exactly once, by
      a conditional UPDATE in the store (see CredentialStore.claim_link_token).
    """

    email: str
    token_hash: str
    type: str  # "login" | "password_setup"
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    used_at: str | None = None
    created_at: str | None = None
