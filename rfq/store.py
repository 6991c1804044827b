"""
rfq/store.py -- SQLAlchemy Core persistence for quote requests, invitations and quotes.

Pattern: Repository + Data Mapper (same as auth/store.py).

Invitations (request_suppliers) carry the scoped quote-access token. The
table enforces one row per (request_id, supplier_id) and a globally unique
access_token; invite_supplier() overwrites the token of an existing row
instead of adding a second one, so reissuing always invalidates the old
link.

QuoteStore satisfies the duck-typed invitation source the auth layer uses:
get_request_suppliers() for scoped-token checks and
count_requests_for_supplier() for the supplier-access guard.

Usage:
    store = QuoteStore()
    request_id = store.create_request(QuoteRequest(...))
    store.invite_supplier(request_id, supplier_id, token, expires_at)
    store.close()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.clock import to_iso, utc_now
from core.config import get_settings
from core.db import build_engine
from rfq.models import QuoteRequest, RequestSupplier, SupplierInvitation, SupplierQuote

logger = logging.getLogger("supplierportal.rfq")

# Attempts at claiming the next RFQ number before giving up.
_REQUEST_NUMBER_RETRIES = 5

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_quote_requests = Table(
    "quote_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("request_number", String(20), nullable=False, unique=True),
    Column("material_name", String(255), nullable=False),
    Column("quantity_needed", String(50), nullable=False),
    Column("unit_of_measure", String(50), nullable=False),
    Column("submit_by_date", String(40), nullable=False),
    Column("additional_specifications", Text),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_by", Integer),
    Column("created_at", String(40), nullable=False),
)

_request_suppliers = Table(
    "request_suppliers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("request_id", Integer, nullable=False, index=True),
    Column("supplier_id", Integer, nullable=False, index=True),
    Column("access_token", String(64), unique=True),
    Column("token_expires_at", String(40)),
    Column("email_sent_at", String(40)),
    Column("response_submitted_at", String(40)),
    Column("created_at", String(40), nullable=False),
    UniqueConstraint("request_id", "supplier_id", name="uq_request_supplier"),
)

_supplier_quotes = Table(
    "supplier_quotes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("request_id", Integer, nullable=False, index=True),
    Column("supplier_id", Integer, nullable=False, index=True),
    Column("price_per_unit", String(50), nullable=False),
    Column("currency", String(3), nullable=False, server_default="AUD"),
    Column("moq", String(50)),
    Column("lead_time", String(100), nullable=False),
    Column("validity_date", String(40)),
    Column("payment_terms", Text),
    Column("additional_notes", Text),
    Column("status", String(20), nullable=False, server_default="submitted"),
    Column("submitted_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class QuoteStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = build_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Quote requests
    # ------------------------------------------------------------------

    def next_request_number(self, now: datetime | None = None) -> str:
        """Return the next RFQ-YYYY-NNN number for the current year.

        Requests are never deleted, so the count of this year's numbers is
        the last sequence used. NNN widens past 999.
        """
        prefix = f"RFQ-{(now or utc_now()).year}-"
        with self.engine.connect() as conn:
            issued = conn.execute(
                select(func.count())
                .select_from(_quote_requests)
                .where(_quote_requests.c.request_number.like(f"{prefix}%"))
            ).scalar()
        return f"{prefix}{(issued or 0) + 1:03d}"

    def create_request(self, request: QuoteRequest) -> int:
        """Insert a request under a freshly assigned request_number and return its ID.

        Two creators can compute the same next number; the loser hits the
        UNIQUE constraint and tries the following one.
        """
        for _ in range(_REQUEST_NUMBER_RETRIES):
            number = self.next_request_number()
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _quote_requests.insert().values(
                            request_number=number,
                            material_name=request.material_name,
                            quantity_needed=request.quantity_needed,
                            unit_of_measure=request.unit_of_measure,
                            submit_by_date=request.submit_by_date,
                            additional_specifications=request.additional_specifications,
                            status=request.status,
                            created_by=request.created_by,
                            created_at=to_iso(utc_now()),
                        )
                    )
                    conn.commit()
            except IntegrityError:
                logger.info("Request number %s taken concurrently, retrying", number)
                continue
            request.request_number = number
            return result.inserted_primary_key[0]
        raise RuntimeError("Could not allocate a unique request number")

    def get_request(self, request_id: int) -> Optional[QuoteRequest]:
        with self.engine.connect() as conn:
            row = conn.execute(_quote_requests.select().where(_quote_requests.c.id == request_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(self) -> list[QuoteRequest]:
        """Return all requests, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_quote_requests.select().order_by(_quote_requests.c.id.desc())).fetchall()
        return [_row_to_request(r) for r in rows]

    # ------------------------------------------------------------------
    # Invitations (scoped access tokens)
    # ------------------------------------------------------------------

    def invite_supplier(
        self, request_id: int, supplier_id: int, access_token: str, token_expires_at: str
    ) -> RequestSupplier:
        """Create the invitation for (request, supplier) or overwrite its token."""
        existing = self.get_request_supplier(request_id, supplier_id)
        if existing is not None:
            self.update_access_token(existing.id, access_token, token_expires_at)
            return self.get_request_supplier(request_id, supplier_id)
        with self.engine.connect() as conn:
            conn.execute(
                _request_suppliers.insert().values(
                    request_id=request_id,
                    supplier_id=supplier_id,
                    access_token=access_token,
                    token_expires_at=token_expires_at,
                    created_at=to_iso(utc_now()),
                )
            )
            conn.commit()
        return self.get_request_supplier(request_id, supplier_id)

    def get_request_supplier(self, request_id: int, supplier_id: int) -> Optional[RequestSupplier]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _request_suppliers.select().where(
                    (_request_suppliers.c.request_id == request_id) & (_request_suppliers.c.supplier_id == supplier_id)
                )
            ).fetchone()
        return _row_to_request_supplier(row) if row is not None else None

    def get_request_suppliers(self, request_id: int) -> list[RequestSupplier]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _request_suppliers.select()
                .where(_request_suppliers.c.request_id == request_id)
                .order_by(_request_suppliers.c.id)
            ).fetchall()
        return [_row_to_request_supplier(r) for r in rows]

    def update_access_token(self, request_supplier_id: int, access_token: str, token_expires_at: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _request_suppliers.update()
                .where(_request_suppliers.c.id == request_supplier_id)
                .values(access_token=access_token, token_expires_at=token_expires_at)
            )
            conn.commit()

    def mark_email_sent(self, request_supplier_id: int) -> str:
        stamp = to_iso(utc_now())
        with self.engine.connect() as conn:
            conn.execute(
                _request_suppliers.update()
                .where(_request_suppliers.c.id == request_supplier_id)
                .values(email_sent_at=stamp)
            )
            conn.commit()
        return stamp

    def count_requests_for_supplier(self, supplier_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_request_suppliers).where(_request_suppliers.c.supplier_id == supplier_id)
            ).scalar()
        return result or 0

    def list_invitations_for_supplier(self, supplier_id: int) -> list[SupplierInvitation]:
        """Return every request the supplier was invited to, with its latest quote if any."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _request_suppliers.select()
                .where(_request_suppliers.c.supplier_id == supplier_id)
                .order_by(_request_suppliers.c.request_id.desc())
            ).fetchall()
        invitations = []
        for row in rows:
            request_supplier = _row_to_request_supplier(row)
            request = self.get_request(request_supplier.request_id)
            if request is None:
                continue
            invitations.append(
                SupplierInvitation(
                    request=request,
                    request_supplier=request_supplier,
                    quote=self.get_latest_quote(request.id, supplier_id),
                )
            )
        return invitations

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def submit_quote(self, quote: SupplierQuote, request_supplier_id: int) -> SupplierQuote:
        """Insert a quote and stamp the invitation's response time in one transaction."""
        stamp = to_iso(utc_now())
        with self.engine.begin() as conn:
            result = conn.execute(
                _supplier_quotes.insert().values(
                    request_id=quote.request_id,
                    supplier_id=quote.supplier_id,
                    price_per_unit=quote.price_per_unit,
                    currency=quote.currency,
                    moq=quote.moq,
                    lead_time=quote.lead_time,
                    validity_date=quote.validity_date,
                    payment_terms=quote.payment_terms,
                    additional_notes=quote.additional_notes,
                    status=quote.status,
                    submitted_at=stamp,
                )
            )
            conn.execute(
                _request_suppliers.update()
                .where(_request_suppliers.c.id == request_supplier_id)
                .values(response_submitted_at=stamp)
            )
            quote_id = result.inserted_primary_key[0]
        logger.info(
            "Quote %s submitted for request_id=%s supplier_id=%s", quote_id, quote.request_id, quote.supplier_id
        )
        return self.get_quote(quote_id)

    def get_quote(self, quote_id: int) -> Optional[SupplierQuote]:
        with self.engine.connect() as conn:
            row = conn.execute(_supplier_quotes.select().where(_supplier_quotes.c.id == quote_id)).fetchone()
        return _row_to_quote(row) if row is not None else None

    def get_latest_quote(self, request_id: int, supplier_id: int) -> Optional[SupplierQuote]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _supplier_quotes.select()
                .where((_supplier_quotes.c.request_id == request_id) & (_supplier_quotes.c.supplier_id == supplier_id))
                .order_by(_supplier_quotes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_quote(row) if row is not None else None

    def list_quotes(self, request_id: int) -> list[SupplierQuote]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _supplier_quotes.select()
                .where(_supplier_quotes.c.request_id == request_id)
                .order_by(_supplier_quotes.c.id)
            ).fetchall()
        return [_row_to_quote(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_request(row) -> QuoteRequest:
    return QuoteRequest(
        id=row.id,
        request_number=row.request_number,
        material_name=row.material_name,
        quantity_needed=row.quantity_needed,
        unit_of_measure=row.unit_of_measure,
        submit_by_date=row.submit_by_date,
        additional_specifications=row.additional_specifications,
        status=row.status,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _row_to_request_supplier(row) -> RequestSupplier:
    return RequestSupplier(
        id=row.id,
        request_id=row.request_id,
        supplier_id=row.supplier_id,
        access_token=row.access_token,
        token_expires_at=row.token_expires_at,
        email_sent_at=row.email_sent_at,
        response_submitted_at=row.response_submitted_at,
        created_at=row.created_at,
    )


def _row_to_quote(row) -> SupplierQuote:
    return SupplierQuote(
        id=row.id,
        request_id=row.request_id,
        supplier_id=row.supplier_id,
        price_per_unit=row.price_per_unit,
        currency=row.currency,
        moq=row.moq,
        lead_time=row.lead_time,
        validity_date=row.validity_date,
        payment_terms=row.payment_terms,
        additional_notes=row.additional_notes,
        status=row.status,
        submitted_at=row.submitted_at,
    )
