"""
auth/dependencies.py -- FastAPI Depends() guards built on the identity façade.

read_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises 401 if nothing resolves or the
credential has been deactivated -- checked on every request, so
deactivation takes effect without waiting for logout.
require_staff() / require_admin() add role checks (403).
require_supplier_access() requires a Supplier matching the session email
with at least one invitation (403 otherwise).

Guards raise auth.errors exceptions; api/main.py renders them.

Layer rule: no imports from api/, rfq/, or notify/.
  The quote store is reached through request.app.state and used duck-typed
  (count_requests_for_supplier), so rfq/ is never imported here.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import AccountInactive, AuthenticationFailed, AuthorizationFailed
from auth.identity import Identity, ResolvedIdentity, identity_from_session, resolve_identity
from auth.models import Supplier
from auth.tokens import SESSION_COOKIE, decode_session_token

STAFF_ROLES = frozenset({"admin", "procurement"})


@dataclass(frozen=True)
class SupplierAccess:
    identity: ResolvedIdentity
    supplier: Supplier


def read_identity(request: Request) -> Identity | None:
    """Return the identity carried by the session cookie, or None. Never raises."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    return identity_from_session(decode_session_token(token))


def get_current_identity(request: Request) -> ResolvedIdentity:
    """Require an authenticated, active caller.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: ResolvedIdentity = Depends(get_current_identity)): ...
    """
    resolved = resolve_identity(read_identity(request), request.app.state.credential_store)
    if resolved is None:
        raise AuthenticationFailed("Authentication required")
    if not resolved.active:
        raise AccountInactive()
    return resolved


def require_staff(identity: ResolvedIdentity = Depends(get_current_identity)) -> ResolvedIdentity:
    if identity.role not in STAFF_ROLES:
        raise AuthorizationFailed("Forbidden: Staff access required")
    return identity


def require_admin(identity: ResolvedIdentity = Depends(get_current_identity)) -> ResolvedIdentity:
    if identity.role != "admin":
        raise AuthorizationFailed("Forbidden: Admin access required")
    return identity


def require_supplier_access(
    request: Request, identity: ResolvedIdentity = Depends(get_current_identity)
) -> SupplierAccess:
    """Require a registered supplier that has been invited to at least one request.

    A matching email with zero invitations is treated as not-yet-a-supplier.
    """
    supplier = request.app.state.credential_store.get_supplier_by_email(identity.email)
    if supplier is None:
        raise AuthorizationFailed("Not a registered supplier", code="NOT_REGISTERED_SUPPLIER")
    if request.app.state.quote_store.count_requests_for_supplier(supplier.id) == 0:
        raise AuthorizationFailed("No quote requests found for this supplier", code="NO_QUOTE_REQUESTS")
    return SupplierAccess(identity=identity, supplier=supplier)
