"""
api/routes/supplier.py -- Supplier portal listing for logged-in suppliers.

Routes:
  GET /api/supplier/quote-requests -- every request the supplier was invited to

require_supplier_access resolves the Supplier from the session email and
rejects accounts with no invitations (403 NO_QUOTE_REQUESTS), so an email
that merely matches a supplier record sees nothing until it is invited.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import QuoteRequestResponse, QuoteResponse, SupplierPortalRequest
from auth.dependencies import SupplierAccess, require_supplier_access
from core.clock import parse_iso, utc_now
from rfq.store import QuoteStore

router = APIRouter()


def _is_past(value: str) -> bool:
    try:
        return parse_iso(value) <= utc_now()
    except ValueError:
        return False


@router.get("/supplier/quote-requests", response_model=list[SupplierPortalRequest])
def supplier_quote_requests(
    request: Request, access: SupplierAccess = Depends(require_supplier_access)
) -> list[SupplierPortalRequest]:
    quote_store: QuoteStore = request.app.state.quote_store
    rows = []
    for invitation in quote_store.list_invitations_for_supplier(access.supplier.id):
        rows.append(
            SupplierPortalRequest(
                request=QuoteRequestResponse.from_request(invitation.request),
                response_submitted_at=invitation.request_supplier.response_submitted_at,
                quote=QuoteResponse.from_quote(invitation.quote) if invitation.quote else None,
                has_quote=invitation.quote is not None,
                is_expired=_is_past(invitation.request.submit_by_date),
            )
        )
    return rows
