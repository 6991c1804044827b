"""
rfq/models.py -- Domain dataclasses for quote requests and supplier responses.

Pattern: Data class (pure data container, zero logic). QuoteStore maps rows
into these.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class QuoteRequest:
    """A request for quote sent to one or more suppliers.

    request_number is RFQ-YYYY-NNN, assigned by QuoteStore.create_request().
    """

    material_name: str
    quantity_needed: str
    unit_of_measure: str
    submit_by_date: str  # ISO 8601
    id: Optional[int] = None
    request_number: Optional[str] = None
    additional_specifications: Optional[str] = None
    status: str = "active"
    created_by: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class RequestSupplier:
    """Invitation of one supplier to one request.

    access_token is the scoped quote-access token embedded in the emailed
    submission URL. Exactly one row exists per (request_id, supplier_id);
    reissuing a token overwrites it in place.
    """

    request_id: int
    supplier_id: int
    id: Optional[int] = None
    access_token: Optional[str] = None
    token_expires_at: Optional[str] = None
    email_sent_at: Optional[str] = None
    response_submitted_at: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class SupplierQuote:
    request_id: int
    supplier_id: int
    price_per_unit: str
    lead_time: str
    id: Optional[int] = None
    currency: str = "AUD"
    moq: Optional[str] = None
    validity_date: Optional[str] = None
    payment_terms: Optional[str] = None
    additional_notes: Optional[str] = None
    status: str = "submitted"
    submitted_at: Optional[str] = None


@dataclass
class SupplierInvitation:
    """Read model for the supplier portal: one invitation with its request and quote."""

    request: QuoteRequest
    request_supplier: RequestSupplier
    quote: Optional[SupplierQuote] = None
