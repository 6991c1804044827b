"""
api/routes/auth.py -- Session identity, OIDC, supplier magic links and password setup.

Routes:
  GET  /api/auth/user                 -- current credential (auto-provisions suppliers on OIDC login)
  GET  /api/auth/providers            -- enabled OIDC providers (public)
  GET  /api/auth/oidc/login           -- redirect to the OIDC provider
  GET  /api/auth/oidc/callback        -- code exchange; sets a claims session
  POST /api/auth/request-magic-link   -- email a supplier login link
  GET  /api/auth/verify-magic-link    -- redeem a login link; sets a supplier session
  GET  /api/auth/verify-setup-token   -- check a password-setup link before showing the form
  POST /api/auth/setup-password       -- redeem a password-setup link

Security:
  request-magic-link answers every well-formed request with the same 200 body
  whether or not the email belongs to a supplier, and also when the
  per-email limit is exhausted. Only the per-IP limit is a visible 429.
  [H1] OIDC logins require a provider-verified email (auth/oauth.py).
  [M5] Cache-Control: no-store on responses that set a session cookie.
"""

from __future__ import annotations

import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.util import get_remote_address

from api.models import (
    MagicLinkRequest,
    MessageResponse,
    OAuthProviderInfo,
    SetupPasswordRequest,
    SetupPasswordResponse,
    SetupTokenResponse,
    SupplierSummary,
    UserResponse,
    VerifyMagicLinkResponse,
)
from auth.dependencies import read_identity
from auth.errors import AccountInactive, AuthenticationFailed, AuthorizationFailed, InvalidLinkToken, RateLimited
from auth.identity import ClaimsIdentity, resolve_identity
from auth.magic_link import GENERIC_LINK_SENT_MESSAGE, MagicLinkService
from auth.oauth import OIDC_PROVIDER, get_enabled_providers, get_oidc_claims
from auth.store import CredentialStore
from auth.tokens import create_session_token, normalize_email, set_session_cookie
from notify.email import EmailDeliveryError

logger = logging.getLogger("supplierportal.api.auth")

# Auth policy:
# - GET  /api/auth/user:               requires a session (any strategy)
# - GET  /api/auth/providers:          public
# - GET  /api/auth/oidc/*:             public -- authlib state cookie guards the callback
# - POST /api/auth/request-magic-link: public, IP + email rate limits
# - GET  /api/auth/verify-magic-link:  bearer link token
# - *    /api/auth/*-setup-*:          bearer link token
router = APIRouter()


# ---------------------------------------------------------------------------
# Session identity
# ---------------------------------------------------------------------------


@router.get("/auth/user", response_model=UserResponse)
def current_user(request: Request) -> UserResponse:
    """Return the credential behind the session.

    An OIDC session whose email has no credential yet is provisioned as a
    supplier credential when the email matches a Supplier, and rejected with
    NOT_REGISTERED_SUPPLIER otherwise.
    """
    store: CredentialStore = request.app.state.credential_store
    identity = read_identity(request)
    if identity is None:
        raise AuthenticationFailed("Authentication required")

    resolved = resolve_identity(identity, store)
    if resolved is not None:
        user = resolved.user
    elif isinstance(identity, ClaimsIdentity):
        supplier = store.get_supplier_by_email(identity.email)
        if supplier is None:
            logger.warning("OIDC session for %s matches no credential or supplier", identity.email)
            raise AuthorizationFailed("Not a registered supplier", code="NOT_REGISTERED_SUPPLIER")
        user = store.find_or_create_supplier_user(identity.email, supplier)
    else:
        raise AuthenticationFailed("Authentication required")

    if not user.active:
        raise AccountInactive()
    return UserResponse.from_user(user)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OIDC providers. Empty when OIDC env vars are unset."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# OIDC (claims strategy)
# ---------------------------------------------------------------------------


@router.get("/auth/oidc/login")
async def oidc_login(request: Request):
    if not get_enabled_providers():
        return RedirectResponse("/login?error=oauth_failed", status_code=302)
    client = request.app.state.oauth.create_client(OIDC_PROVIDER)
    redirect_uri = str(request.url_for("oidc_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oidc/callback", name="oidc_callback")
async def oidc_callback(request: Request) -> RedirectResponse:
    """Exchange the authorization code and store a claims session.

    The credential is resolved later by email on each request; a verified
    email with no credential is handled by GET /api/auth/user.
    """
    if not get_enabled_providers():
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    client = request.app.state.oauth.create_client(OIDC_PROVIDER)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OIDC token exchange failed")
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    try:
        email, subject = get_oidc_claims(token)
    except ValueError as e:
        logger.warning("OIDC login rejected: %s", e)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    resp = RedirectResponse("/", status_code=302)
    set_session_cookie(resp, create_session_token("claims", subject, normalize_email(email)))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    logger.info("OIDC login for %s", normalize_email(email))
    return resp


# ---------------------------------------------------------------------------
# Supplier magic links
# ---------------------------------------------------------------------------


@router.post("/auth/request-magic-link", response_model=MessageResponse)
def request_magic_link(request: Request, body: MagicLinkRequest) -> MessageResponse:
    """Email a login link to a supplier.

    Order: per-IP limit (429) -> email present (400) -> per-email limit
    (disguised 200) -> issue and send. Delivery failure is a 500.
    """
    ip_decision = request.app.state.magic_link_ip_limiter.check(get_remote_address(request))
    if not ip_decision.allowed:
        raise RateLimited(ip_decision.retry_after)

    if not body.email:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": "Email is required"})

    email = normalize_email(body.email)
    if not request.app.state.magic_link_email_limiter.check(email).allowed:
        return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)

    service: MagicLinkService = request.app.state.magic_links
    try:
        service.request_login_link(email)
    except EmailDeliveryError:
        raise HTTPException(
            status_code=500,
            detail={"code": "email_failed", "message": "Failed to send login link. Please try again later."},
        )
    return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)


@router.get("/auth/verify-magic-link", response_model=VerifyMagicLinkResponse)
def verify_magic_link(request: Request, token: Optional[str] = None) -> JSONResponse:
    """Redeem a login link. The session cookie is only set once the link is claimed."""
    if not token:
        raise InvalidLinkToken("Invalid token")

    service: MagicLinkService = request.app.state.magic_links
    result = service.verify_login_link(token)

    body = VerifyMagicLinkResponse(supplier=SupplierSummary.from_supplier(result.supplier))
    resp = JSONResponse(content=body.model_dump(by_alias=True))
    set_session_cookie(resp, result.session_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Staff password setup
# ---------------------------------------------------------------------------


@router.get("/auth/verify-setup-token", response_model=SetupTokenResponse)
def verify_setup_token(request: Request, token: Optional[str] = None) -> SetupTokenResponse:
    """Check a setup link without consuming it, so the client can show the form."""
    if not token:
        raise InvalidLinkToken("Invalid token")
    link = request.app.state.magic_links.check_password_setup(token)
    return SetupTokenResponse(email=link.email)


@router.post("/auth/setup-password", response_model=SetupPasswordResponse)
def setup_password(request: Request, body: SetupPasswordRequest, token: Optional[str] = None) -> SetupPasswordResponse:
    if not token:
        raise InvalidLinkToken("Invalid token")
    user = request.app.state.magic_links.complete_password_setup(token, body.password)
    logger.info("Password setup completed for user_id=%s", user.id)
    return SetupPasswordResponse(message="Password set successfully. You can now log in.")
