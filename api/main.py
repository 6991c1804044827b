"""
api/main.py -- FastAPI application entry point for the supplier portal.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- authlib OIDC state between redirect and callback

Lifespan wires the stores, authenticators, rate limiters and email sender
onto app.state, starts the hourly link-token purge task, and tears it all
down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.local import router as local_router
from api.routes.public import router as public_router
from api.routes.supplier import router as supplier_router
from auth.errors import AuthError
from auth.local import LocalAuthenticator
from auth.lockout import AttemptStore, InMemoryAttemptStore
from auth.magic_link import MagicLinkService
from auth.oauth import oauth as oauth_client
from auth.ratelimit import (
    MAGIC_LINK_EMAIL_LIMIT,
    MAGIC_LINK_EMAIL_PREFIX,
    MAGIC_LINK_IP_LIMIT,
    MAGIC_LINK_IP_PREFIX,
    RateLimiter,
    build_rate_limit_storage,
)
from auth.store import CredentialStore
from core.config import Settings, get_settings
from notify.email import build_sender
from notify.messages import EmailNotifier
from rfq.store import QuoteStore

VERSION = "0.3.0"
PURGE_INTERVAL_SECONDS = 60 * 60

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("supplierportal.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired or used link tokens every hour.

    The store call is synchronous; it runs in a worker thread so a slow
    DELETE never blocks the event loop. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            await asyncio.to_thread(app.state.credential_store.purge_expired_link_tokens)
        except Exception:
            logger.exception("Link token purge failed; retrying next interval")


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def configure_state(
    app: FastAPI,
    settings: Settings,
    credential_store: CredentialStore,
    quote_store: QuoteStore,
    sender,
    attempts: AttemptStore | None = None,
) -> None:
    """Attach every service the routes read from app.state.

    Split out of lifespan so tests can wire in-memory stores and a
    recording sender through the same code path.
    """
    app.state.settings = settings
    app.state.credential_store = credential_store
    app.state.quote_store = quote_store
    app.state.attempt_store = attempts or InMemoryAttemptStore()
    app.state.local_authenticator = LocalAuthenticator(credential_store, app.state.attempt_store)

    app.state.rate_limit_storage = build_rate_limit_storage(settings.rate_limit_storage_uri)
    app.state.magic_link_ip_limiter = RateLimiter(
        app.state.rate_limit_storage, MAGIC_LINK_IP_LIMIT, MAGIC_LINK_IP_PREFIX
    )
    app.state.magic_link_email_limiter = RateLimiter(
        app.state.rate_limit_storage, MAGIC_LINK_EMAIL_LIMIT, MAGIC_LINK_EMAIL_PREFIX
    )

    app.state.email_sender = sender
    app.state.notifier = EmailNotifier(sender)
    app.state.magic_links = MagicLinkService(credential_store, app.state.notifier, settings.base_url)
    app.state.oauth = oauth_client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Stores first -- they create their tables.
      2. Services second -- they hold references to the stores.
      3. Purge task last -- references app.state.credential_store.
    """
    logger.info("Supplier portal API starting up")
    configure_state(
        app,
        _settings,
        credential_store=CredentialStore(_settings.database_url),
        quote_store=QuoteStore(_settings.database_url),
        sender=build_sender(_settings),
    )
    logger.info("Stores initialized (email provider: %s)", _settings.email_provider)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.credential_store.close()
    app.state.quote_store.close()
    logger.info("Supplier portal API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Supplier Portal API",
    description="Supplier request-for-quote portal: staff, supplier and quote-link access.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Authlib stores the OAuth state value here between the authorization redirect
# and the callback (CSRF protection for the code flow).
app.add_middleware(SessionMiddleware, secret_key=_settings.session_secret, https_only=_settings.secure_cookies)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(local_router, prefix="/api", tags=["Local auth"])
app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
app.include_router(supplier_router, prefix="/api", tags=["Supplier"])
app.include_router(public_router, prefix="/api", tags=["Public"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render access-core rejections. The message is already client-safe."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a slowapi limit is exceeded.

    slowapi does not put the reset time on the exception; the limit's full
    window is the upper bound a client has to wait.
    """
    retry_after = int(exc.limit.limit.get_expiry()) if getattr(exc, "limit", None) else 60
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests. Please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a dict, use it directly as the error field rather than
    stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The stack trace goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
