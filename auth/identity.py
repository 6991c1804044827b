"""
auth/identity.py -- One identity shape for three login strategies.

A session cookie carries exactly one of three identity variants, selected by
its auth_type claim:
  claims    OIDC login. Carries the provider subject and verified email; the
            credential is found by email.
  local     Password login. Carries the credential id.
  supplier  Magic-link login. Carries the credential id.

resolve_identity() turns any variant into a ResolvedIdentity so guards and
handlers never branch on how the caller logged in. The credential is
reloaded on every request, so role changes and deactivation apply
immediately.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from auth.models import User
from auth.store import CredentialStore

logger = logging.getLogger("supplierportal.auth.identity")


@dataclass(frozen=True)
class ClaimsIdentity:
    subject: str
    email: str
    auth_type: str = "claims"


@dataclass(frozen=True)
class LocalIdentity:
    user_id: int
    auth_type: str = "local"


@dataclass(frozen=True)
class SupplierIdentity:
    user_id: int
    auth_type: str = "supplier"


Identity = Union[ClaimsIdentity, LocalIdentity, SupplierIdentity]


@dataclass(frozen=True)
class ResolvedIdentity:
    auth_type: str
    user_id: int
    email: str
    role: str
    active: bool
    user: User


def identity_from_session(payload: dict | None) -> Identity | None:
    """Build the identity variant described by a decoded session payload."""
    if not payload:
        return None
    auth_type = payload.get("auth_type")
    subject = payload.get("sub")
    if auth_type == "claims":
        email = payload.get("email")
        if not subject or not email:
            return None
        return ClaimsIdentity(subject=subject, email=email)
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        return None
    if auth_type == "local":
        return LocalIdentity(user_id=user_id)
    if auth_type == "supplier":
        return SupplierIdentity(user_id=user_id)
    return None


def resolve_identity(identity: Identity | None, store: CredentialStore) -> ResolvedIdentity | None:
    """Load the credential behind an identity. None if it no longer exists."""
    if identity is None:
        return None
    if isinstance(identity, ClaimsIdentity):
        user = store.get_by_email(identity.email)
    else:
        user = store.get_by_id(identity.user_id)
    if user is None:
        logger.info("Session for %s no longer maps to a credential", identity)
        return None
    return ResolvedIdentity(
        auth_type=identity.auth_type,
        user_id=user.id,
        email=user.email,
        role=user.role,
        active=user.active,
        user=user,
    )
