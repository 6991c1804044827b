"""
auth/access_token.py -- Scoped quote-access tokens for public quote submission.

Each (quote request, supplier) invitation carries its own random token,
embedded in the emailed URL /quote-submission/{request_id}?token=...
Presenting it proves "I am this supplier, for this request" and nothing
more. The token is a capability delivered in the link itself, so it is
stored in plaintext and compared in constant time.

Handlers must use the ids in the returned QuoteAccess. Supplier or request
ids in a request body are never trusted over them.

The invitation source is duck-typed (any object with
get_request_suppliers(request_id) returning records that expose id,
supplier_id, request_id, access_token and token_expires_at), so auth/ does
not import rfq/.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Request

from auth.errors import AuthenticationFailed
from core.clock import parse_iso, to_iso, utc_now

logger = logging.getLogger("supplierportal.auth.access_token")

QUOTE_ACCESS_TOKEN_DAYS = 30


@dataclass(frozen=True)
class QuoteAccess:
    supplier_id: int
    request_id: int
    request_supplier_id: int


def new_access_token_expiry(now: datetime | None = None) -> str:
    """Return the ISO expiry for a token issued at now."""
    return to_iso((now or utc_now()) + timedelta(days=QUOTE_ACCESS_TOKEN_DAYS))


def verify_quote_access(source, request_id: int, token: str, now: datetime | None = None) -> QuoteAccess:
    """Resolve a presented token to the invitation it belongs to.

    Raises AuthenticationFailed ("Invalid access token" or "Access token has
    expired"). An invitation without an expiry is treated as expired.
    """
    now = now or utc_now()
    presented = token.encode("utf-8")
    match = None
    for invitation in source.get_request_suppliers(request_id):
        stored = invitation.access_token
        if stored and hmac.compare_digest(stored.encode("utf-8"), presented):
            match = invitation
            break

    if match is None:
        logger.warning("Rejected quote access for request_id=%s: no matching token", request_id)
        raise AuthenticationFailed("Invalid access token", code="invalid_access_token")

    if not match.token_expires_at or parse_iso(match.token_expires_at) <= now:
        logger.warning(
            "Rejected quote access for request_id=%s supplier_id=%s: token expired", request_id, match.supplier_id
        )
        raise AuthenticationFailed("Access token has expired", code="access_token_expired")

    return QuoteAccess(supplier_id=match.supplier_id, request_id=match.request_id, request_supplier_id=match.id)


def require_quote_access(request: Request, request_id: int, token: str | None = None) -> QuoteAccess:
    """FastAPI dependency: resolve ?token= for the {request_id} path parameter.

    Usage:
        @router.get("/public/quote-requests/{request_id}")
        def get_request(access: QuoteAccess = Depends(require_quote_access)): ...
    """
    if not token:
        raise AuthenticationFailed("Access token required", code="access_token_required")
    return verify_quote_access(request.app.state.quote_store, request_id, token)
