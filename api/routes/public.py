"""
api/routes/public.py -- Quote viewing and submission through a scoped access token.

Routes:
  GET  /api/public/quote-requests/{id}?token=...              -- request + supplier subset
  POST /api/public/quote-requests/{id}/submit-quote?token=... -- submit a quote (201)

No session is involved. require_quote_access proves the caller holds the
token of one (request, supplier) invitation; the handlers then act only on
the ids it resolved. A supplier_id or request_id in the body is ignored.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    PublicQuoteRequestResponse,
    QuoteRequestResponse,
    QuoteResponse,
    QuoteSubmission,
    QuoteSubmittedResponse,
    SupplierSummary,
)
from auth.access_token import QuoteAccess, require_quote_access
from auth.store import CredentialStore
from rfq.models import SupplierQuote
from rfq.store import QuoteStore

router = APIRouter()


@router.get("/public/quote-requests/{request_id}", response_model=PublicQuoteRequestResponse)
def get_public_quote_request(
    request: Request, access: QuoteAccess = Depends(require_quote_access)
) -> PublicQuoteRequestResponse:
    quote_store: QuoteStore = request.app.state.quote_store
    store: CredentialStore = request.app.state.credential_store

    quote_request = quote_store.get_request(access.request_id)
    if quote_request is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Quote request not found"})
    supplier = store.get_supplier(access.supplier_id)
    if supplier is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Supplier not found"})

    return PublicQuoteRequestResponse(
        request=QuoteRequestResponse.from_request(quote_request),
        supplier=SupplierSummary.from_supplier(supplier),
    )


@router.post(
    "/public/quote-requests/{request_id}/submit-quote",
    response_model=QuoteSubmittedResponse,
    status_code=201,
)
def submit_quote(
    request: Request, body: QuoteSubmission, access: QuoteAccess = Depends(require_quote_access)
) -> QuoteSubmittedResponse:
    if not body.price_per_unit or not body.lead_time:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Price and lead time are required"},
        )

    quote_store: QuoteStore = request.app.state.quote_store
    quote = quote_store.submit_quote(
        SupplierQuote(
            request_id=access.request_id,
            supplier_id=access.supplier_id,
            price_per_unit=body.price_per_unit,
            currency=body.currency or "AUD",
            moq=body.moq,
            lead_time=body.lead_time,
            validity_date=body.validity_date or None,
            payment_terms=body.payment_terms,
            additional_notes=body.additional_notes,
        ),
        access.request_supplier_id,
    )
    return QuoteSubmittedResponse(quote=QuoteResponse.from_quote(quote))
