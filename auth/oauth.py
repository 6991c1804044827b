"""
auth/oauth.py -- Authlib OIDC provider configuration (the claims strategy).

Reads configuration from core.config.get_settings() at module load. The
single generic OIDC provider (Okta, Azure AD, Keycloak, Authentik, ...) is
registered only when client ID, secret and discovery URL are all set;
get_enabled_providers() tells the client whether to offer it.

Security notes:
  [H1] Email verification is mandatory. get_oidc_claims() raises ValueError
       if the provider does not confirm the email is verified. The session
       is keyed by that email, so an unverified address could impersonate
       a supplier or staff member.

  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. The session stores the state between the authorization
  redirect and the callback.

Layer rule: no imports from api/, rfq/, or notify/. Import from core/ is
allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("supplierportal.auth.oauth")

OIDC_PROVIDER = "oidc"

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()


def oidc_configured() -> bool:
    cfg = get_settings()
    return bool(cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url)


if oidc_configured():
    oauth.register(
        name=OIDC_PROVIDER,
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_discovery_url,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("OIDC provider registered (display name: %s)", _cfg.oidc_display_name)


def get_enabled_providers() -> list[dict]:
    """Return [{"name", "label"}] for every configured provider. Used by GET /api/auth/providers."""
    if not oidc_configured():
        return []
    return [{"name": OIDC_PROVIDER, "label": get_settings().oidc_display_name}]


# ---------------------------------------------------------------------------
# Claim extraction [H1]
# ---------------------------------------------------------------------------


def get_oidc_claims(token: dict) -> tuple[str, str]:
    """Extract (email, subject) from an OIDC token response.

    [H1] The email claim is only accepted when email_verified is True.
    Providers that omit email_verified are treated as unverified.

    Raises:
        ValueError: missing userinfo, unverified email, or missing claims.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("OIDC: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError("OIDC: email is not verified by the provider")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("OIDC: missing email or sub claim in userinfo")

    return email, str(subject)
