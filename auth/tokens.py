"""
auth/tokens.py -- Token codec, password hashing, and session cookie utilities.

Security design decisions:
  Bearer tokens (magic links, password setup): secrets.token_hex(32) gives
       256 bits of entropy. Only SHA-256(secret) is stored, so the database
       alone cannot be replayed as a login link. A plain digest (no bcrypt)
       is enough here because the input is random, not a human password, and
       it keeps lookups O(1) through the unique token_hash index.

  Scoped quote-access tokens: same generator, stored in plaintext. They are
       capability URLs sent to the supplier and compared on presentation.

  Passwords: bcrypt with cost factor 12. _DUMMY_HASH enables timing
       equalization in the local authenticator so response time does not
       reveal whether an email exists [C1].

  Sessions: python-jose HS256 JWT in an httpOnly cookie. The payload carries
       auth_type ("local", "supplier", "claims"), sub and email. Verification
       returns None on any failure -- the guard layer turns that into a 401.

Layer rule: no imports from api/, rfq/, or notify/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("supplierportal.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 12
SESSION_COOKIE = "session"
SESSION_AUTH_TYPES = ("local", "supplier", "claims")

# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


def generate_bearer_token() -> tuple[str, str]:
    """Return (secret, hash) for a new single-use emailed token.

    The secret goes into the URL and is never persisted; the hash is what the
    store keeps and what a presented token is re-hashed to match against.
    """
    secret = secrets.token_hex(32)
    return secret, hash_token(secret)


def hash_token(secret: str) -> str:
    """Return the SHA-256 hex digest of a bearer secret.

    Raises ValueError for empty or non-string input rather than hashing it --
    an empty query parameter must never match anything.
    """
    if not isinstance(secret, str) or not secret:
        raise ValueError("token must be a non-empty string")
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_access_token() -> str:
    """Return a new scoped quote-access token (64 hex chars, 256 bits)."""
    return secrets.token_hex(32)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash (cost 12) of the given plaintext password.

    bcrypt truncates at 72 bytes. The API layer caps passwords at 128 chars,
    and the complexity policy makes the prefix carry the entropy.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, never as a match.
        logger.error("Stored password hash is malformed")
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("supplierportal_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a full-cost bcrypt comparison whose result is discarded [C1]."""
    verify_password(plain, _DUMMY_HASH)


_COMPLEXITY_RULES = (
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
)


def password_complexity_error(password: str) -> str | None:
    """Return the first complexity rule the password breaks, or None if it passes."""
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    for pattern, message in _COMPLEXITY_RULES:
        if not pattern.search(password):
            return message
    return None


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(auth_type: str, subject: str, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT.

    Args:
        auth_type:      "local", "supplier" or "claims". Selects the identity
                        variant the guard layer rebuilds from this token.
        subject:        Credential id for local/supplier sessions; the OIDC
                        subject for claims sessions.
        email:          Email at issue time. Claims sessions resolve the
                        credential through it.
        expire_seconds: Session duration. 0 means Settings.session_expire_seconds.
    """
    if auth_type not in SESSION_AUTH_TYPES:
        raise ValueError(f"Unknown session auth_type: {auth_type!r}")
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    payload = {
        "sub": str(subject),
        "auth_type": auth_type,
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.session_secret, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and verify a session JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.session_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("auth_type") not in SESSION_AUTH_TYPES or "sub" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, samesite="lax", secure=_settings.secure_cookies)
