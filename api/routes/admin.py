"""
api/routes/admin.py -- Staff endpoints: users, suppliers, quote requests, invitations.

Routes:
  GET   /api/users                                     -- list credentials
  POST  /api/users                                     -- create; staff roles get a setup email
  PATCH /api/users/{id}/role                           -- change role
  PATCH /api/users/{id}/status                         -- activate / deactivate
  GET   /api/suppliers                                 -- list suppliers
  POST  /api/suppliers                                 -- create supplier
  GET   /api/quote-requests                            -- list requests
  POST  /api/quote-requests                            -- create + invite suppliers
  GET   /api/quote-requests/{id}                       -- request, invitations, quotes
  POST  /api/quote-requests/{id}/resend-notification/{supplier_id}

Every route requires admin or procurement (require_staff). Granting the
admin role, directly or by role change, requires an admin, and so does
changing the role or status of an existing admin.

Email failures never fail the write they follow: a user or invitation is
created even if its email cannot be delivered, and the failure is logged.
Only the explicit resend endpoint reports delivery failure to the caller.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    InvitationResponse,
    QuoteRequestCreate,
    QuoteRequestDetail,
    QuoteRequestResponse,
    QuoteResponse,
    ResendResponse,
    RoleUpdate,
    StatusUpdate,
    SupplierCreate,
    SupplierResponse,
    UserCreate,
    UserResponse,
)
from auth.access_token import QUOTE_ACCESS_TOKEN_DAYS, new_access_token_expiry
from auth.dependencies import STAFF_ROLES, require_staff
from auth.errors import AuthorizationFailed
from auth.identity import ResolvedIdentity
from auth.models import ROLES, Supplier, User
from auth.store import CredentialStore
from auth.tokens import generate_access_token, normalize_email
from core.clock import parse_iso, utc_now
from notify.email import EmailDeliveryError
from notify.messages import quote_submission_url
from rfq.models import QuoteRequest, RequestSupplier
from rfq.store import QuoteStore

logger = logging.getLogger("supplierportal.api.admin")

router = APIRouter()


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": message})


def _check_can_grant(actor: ResolvedIdentity, role: str) -> None:
    if role == "admin" and actor.role != "admin":
        raise AuthorizationFailed("Forbidden: Admin access required")


def _load_manageable_user(store: CredentialStore, actor: ResolvedIdentity, user_id: int) -> User:
    """Return the target credential. Only an admin may modify an admin account."""
    target = store.get_by_id(user_id)
    if target is None:
        raise _not_found("User not found")
    if target.role == "admin" and actor.role != "admin":
        logger.warning("user_id=%s (%s) tried to modify admin user_id=%s", actor.user_id, actor.role, user_id)
        raise AuthorizationFailed("Forbidden: Admin access required")
    return target


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, staff: ResolvedIdentity = Depends(require_staff)) -> list[UserResponse]:
    store: CredentialStore = request.app.state.credential_store
    return [UserResponse.from_user(u) for u in store.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request, body: UserCreate, staff: ResolvedIdentity = Depends(require_staff)
) -> UserResponse:
    """Create a credential. Admin and procurement accounts are emailed a password-setup link."""
    _check_can_grant(staff, body.role)
    store: CredentialStore = request.app.state.credential_store
    try:
        user_id = store.create_user(
            User(
                email=body.email,
                role=body.role,
                first_name=body.first_name,
                last_name=body.last_name,
                company_name=body.company_name,
            )
        )
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User with this email already exists"},
        )
    user = store.get_by_id(user_id)
    logger.info("User %s (%s) created by user_id=%s", user.email, user.role, staff.user_id)

    if user.role in STAFF_ROLES:
        try:
            request.app.state.magic_links.issue_password_setup(user)
        except EmailDeliveryError:
            logger.error("Password setup email for user_id=%s could not be delivered", user.id)
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    request: Request, user_id: int, body: RoleUpdate, staff: ResolvedIdentity = Depends(require_staff)
) -> UserResponse:
    if body.role not in ROLES:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": "Invalid role"})
    _check_can_grant(staff, body.role)
    store: CredentialStore = request.app.state.credential_store
    _load_manageable_user(store, staff, user_id)
    if not store.update_user(user_id, role=body.role):
        raise _not_found("User not found")
    logger.info("User %s role set to %s by user_id=%s", user_id, body.role, staff.user_id)
    return UserResponse.from_user(store.get_by_id(user_id))


@router.patch("/users/{user_id}/status", response_model=UserResponse)
def update_status(
    request: Request, user_id: int, body: StatusUpdate, staff: ResolvedIdentity = Depends(require_staff)
) -> UserResponse:
    """Activate or deactivate a credential. Takes effect on the user's next request."""
    if not isinstance(body.active, bool):
        raise HTTPException(
            status_code=400, detail={"code": "validation_error", "message": "Invalid status value"}
        )
    store: CredentialStore = request.app.state.credential_store
    _load_manageable_user(store, staff, user_id)
    if not store.update_user(user_id, active=body.active):
        raise _not_found("User not found")
    logger.info("User %s active=%s set by user_id=%s", user_id, body.active, staff.user_id)
    return UserResponse.from_user(store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


@router.get("/suppliers", response_model=list[SupplierResponse])
def list_suppliers(request: Request, staff: ResolvedIdentity = Depends(require_staff)) -> list[SupplierResponse]:
    store: CredentialStore = request.app.state.credential_store
    return [SupplierResponse.from_supplier(s) for s in store.list_suppliers()]


@router.post("/suppliers", response_model=SupplierResponse, status_code=201)
def create_supplier(
    request: Request, body: SupplierCreate, staff: ResolvedIdentity = Depends(require_staff)
) -> SupplierResponse:
    store: CredentialStore = request.app.state.credential_store
    try:
        supplier_id = store.create_supplier(
            Supplier(
                supplier_name=body.supplier_name,
                contact_person=body.contact_person,
                email=normalize_email(body.email),
                phone=body.phone,
            )
        )
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Supplier with this email already exists"},
        )
    logger.info("Supplier %s created by user_id=%s", supplier_id, staff.user_id)
    return SupplierResponse.from_supplier(store.get_supplier(supplier_id))


# ---------------------------------------------------------------------------
# Quote requests and invitations
# ---------------------------------------------------------------------------


def _send_invitation(request: Request, supplier: Supplier, quote_request: QuoteRequest, rs: RequestSupplier) -> str:
    """Email the scoped submission link and stamp email_sent_at. Returns the stamp."""
    quote_store: QuoteStore = request.app.state.quote_store
    link = quote_submission_url(request.app.state.settings.base_url, quote_request.id, rs.access_token)
    request.app.state.notifier.send_rfq_invitation(supplier, quote_request, link, QUOTE_ACCESS_TOKEN_DAYS)
    return quote_store.mark_email_sent(rs.id)


@router.get("/quote-requests", response_model=list[QuoteRequestResponse])
def list_quote_requests(
    request: Request, staff: ResolvedIdentity = Depends(require_staff)
) -> list[QuoteRequestResponse]:
    quote_store: QuoteStore = request.app.state.quote_store
    return [QuoteRequestResponse.from_request(r) for r in quote_store.list_requests()]


@router.post("/quote-requests", response_model=QuoteRequestResponse, status_code=201)
def create_quote_request(
    request: Request, body: QuoteRequestCreate, staff: ResolvedIdentity = Depends(require_staff)
) -> QuoteRequestResponse:
    """Create a request and invite each listed supplier with its own access token."""
    store: CredentialStore = request.app.state.credential_store
    quote_store: QuoteStore = request.app.state.quote_store

    request_id = quote_store.create_request(
        QuoteRequest(
            material_name=body.material_name,
            quantity_needed=body.quantity_needed,
            unit_of_measure=body.unit_of_measure,
            submit_by_date=body.submit_by_date,
            additional_specifications=body.additional_specifications,
            created_by=staff.user_id,
        )
    )
    quote_request = quote_store.get_request(request_id)
    logger.info("Quote request %s created by user_id=%s", quote_request.request_number, staff.user_id)

    for supplier_id in dict.fromkeys(body.supplier_ids):
        supplier = store.get_supplier(supplier_id)
        if supplier is None:
            logger.warning("Skipping unknown supplier_id=%s for request %s", supplier_id, request_id)
            continue
        rs = quote_store.invite_supplier(
            request_id, supplier_id, generate_access_token(), new_access_token_expiry()
        )
        try:
            _send_invitation(request, supplier, quote_request, rs)
        except EmailDeliveryError:
            logger.error("RFQ invitation for request_id=%s to supplier_id=%s not delivered", request_id, supplier_id)

    return QuoteRequestResponse.from_request(quote_request)


@router.get("/quote-requests/{request_id}", response_model=QuoteRequestDetail)
def get_quote_request(
    request: Request, request_id: int, staff: ResolvedIdentity = Depends(require_staff)
) -> QuoteRequestDetail:
    quote_store: QuoteStore = request.app.state.quote_store
    quote_request = quote_store.get_request(request_id)
    if quote_request is None:
        raise _not_found("Quote request not found")
    return QuoteRequestDetail(
        request=QuoteRequestResponse.from_request(quote_request),
        invitations=[InvitationResponse.from_request_supplier(rs) for rs in quote_store.get_request_suppliers(request_id)],
        quotes=[QuoteResponse.from_quote(q) for q in quote_store.list_quotes(request_id)],
    )


@router.post("/quote-requests/{request_id}/resend-notification/{supplier_id}", response_model=ResendResponse)
def resend_notification(
    request: Request, request_id: int, supplier_id: int, staff: ResolvedIdentity = Depends(require_staff)
) -> ResendResponse:
    """Resend the invitation email. A missing or expired token is replaced first."""
    store: CredentialStore = request.app.state.credential_store
    quote_store: QuoteStore = request.app.state.quote_store

    quote_request = quote_store.get_request(request_id)
    if quote_request is None:
        raise _not_found("Quote request not found")
    supplier = store.get_supplier(supplier_id)
    if supplier is None:
        raise _not_found("Supplier not found")
    rs = quote_store.get_request_supplier(request_id, supplier_id)
    if rs is None:
        raise _not_found("Supplier is not associated with this quote request")
    if quote_store.get_latest_quote(request_id, supplier_id) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "already_submitted", "message": "Supplier has already submitted a quote for this request"},
        )

    if not rs.access_token or not rs.token_expires_at or parse_iso(rs.token_expires_at) <= utc_now():
        rs = quote_store.invite_supplier(request_id, supplier_id, generate_access_token(), new_access_token_expiry())
        logger.info("Reissued access token for request_id=%s supplier_id=%s", request_id, supplier_id)

    try:
        sent_at = _send_invitation(request, supplier, quote_request, rs)
    except EmailDeliveryError:
        raise HTTPException(
            status_code=500,
            detail={"code": "email_failed", "message": "Failed to send email notification"},
        )
    return ResendResponse(message="Quote request reminder sent successfully", email_sent_at=sent_at)
