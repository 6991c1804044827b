"""
api/routes/local.py -- Staff password login, logout and admin password reset.

Routes:
  POST /api/local/login         -- email + password login; sets session cookie
  POST /api/local/logout        -- clears the session cookie
  POST /api/local/set-password  -- admin sets another user's password

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute)
       on top of the per-email lockout in auth/local.py.
  [C1] LocalAuthenticator runs bcrypt for unknown emails too -- never inline
       a store lookup + verify_password() here.
  [M5] Cache-Control: no-store on login responses.

No `from __future__ import annotations` here: FastAPI resolves string
annotations against the wrapper's module once slowapi has decorated the
handler, and LoginRequest would not be found there.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AdminSetPasswordRequest, LoginRequest, MessageResponse
from auth.dependencies import require_admin
from auth.errors import InvalidPassword
from auth.identity import ResolvedIdentity
from auth.local import LocalAuthenticator
from auth.store import CredentialStore
from auth.tokens import (
    clear_session_cookie,
    create_session_token,
    hash_password,
    password_complexity_error,
    set_session_cookie,
)
from core.config import get_settings

logger = logging.getLogger("supplierportal.api.local")

# Auth policy:
# - POST /api/local/login:        public -- login endpoint must be unauthenticated
# - POST /api/local/logout:       public -- clearing a cookie needs no prior auth
# - POST /api/local/set-password: requires admin (require_admin)
router = APIRouter()


@router.post("/local/login", response_model=MessageResponse)
@limiter.limit(get_settings().login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate a staff account and set the session cookie.

    Rejections (wrong credentials, lockout, inactive, password not set) are
    raised by LocalAuthenticator and rendered by the AuthError handler.
    """
    authenticator: LocalAuthenticator = request.app.state.local_authenticator
    user = authenticator.authenticate(body.email, body.password)

    token = create_session_token("local", str(user.id), user.email)
    resp = JSONResponse(content=MessageResponse(message="Login successful").model_dump())
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/local/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. Works for every login strategy."""
    resp = JSONResponse(content=MessageResponse(message="Logout successful").model_dump())
    clear_session_cookie(resp)
    return resp


@router.post("/local/set-password", response_model=MessageResponse)
def admin_set_password(
    request: Request,
    body: AdminSetPasswordRequest,
    admin: ResolvedIdentity = Depends(require_admin),
) -> MessageResponse:
    """Set a password for another account (initial setup, lockout recovery)."""
    if not body.target_user_id or not body.password:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_fields", "message": "Missing required fields"},
        )

    problem = password_complexity_error(body.password)
    if problem:
        raise InvalidPassword(problem)

    store: CredentialStore = request.app.state.credential_store
    if not store.set_password(body.target_user_id, hash_password(body.password)):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found"})

    logger.info("Admin user_id=%s set password for user_id=%s", admin.user_id, body.target_user_id)
    return MessageResponse(message="Password set successfully")
