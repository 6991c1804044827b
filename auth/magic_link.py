"""
auth/magic_link.py -- Emailed single-use links: supplier login and staff password setup.

Both flows share the magic_links table and differ only in the type column:
  login           15 minutes; redeemed at /verify-login?token=...
  password_setup  24 hours;   redeemed at /set-password?token=...

A type mismatch is treated exactly like an unknown token, so a login link
can never be replayed to set a password and vice versa.

Consumption order for login links:
  validate -> resolve supplier -> find or create credential -> reject
  inactive -> mint session JWT -> claim the token (conditional UPDATE).
Minting first means a signing failure never burns the link; claiming before
the session is returned means only one of two racing clicks logs in.

Password setup consumes the token and writes the hash in one transaction
(CredentialStore.set_password_and_consume_token).

The raw token only ever appears in the emailed URL. Unknown supplier emails
get the same silent success as known ones.

Layer rule: no imports from api/, rfq/, or notify/. Delivery goes through the
LinkNotifier protocol, implemented in notify/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol
from urllib.parse import urlencode

from auth.errors import AccountInactive, InvalidLinkToken, InvalidPassword, TokenAlreadyUsed
from auth.models import LinkToken, Supplier, User
from auth.store import CredentialStore
from auth.tokens import (
    create_session_token,
    generate_bearer_token,
    hash_password,
    hash_token,
    normalize_email,
    password_complexity_error,
)
from core.clock import parse_iso, to_iso, utc_now

logger = logging.getLogger("supplierportal.auth.magic_link")

MAGIC_LINK_EXPIRY_MINUTES = 15
PASSWORD_SETUP_EXPIRY_MINUTES = 24 * 60

GENERIC_LINK_SENT_MESSAGE = "If an account exists with that email, a login link has been sent."


class LinkNotifier(Protocol):
    """Delivers the emails that carry link tokens. Raises on delivery failure."""

    def send_login_link(self, supplier: Supplier, link: str, expires_minutes: int) -> None: ...

    def send_password_setup(self, user: User, link: str, expires_minutes: int) -> None: ...


@dataclass
class LoginLinkResult:
    user: User
    supplier: Supplier
    session_token: str


@dataclass(frozen=True)
class _LinkMessages:
    invalid: str
    used: str
    expired: str


_LOGIN_MESSAGES = _LinkMessages(
    invalid="Invalid or expired login link",
    used="This login link has already been used",
    expired="This login link has expired",
)
_SETUP_MESSAGES = _LinkMessages(
    invalid="Invalid or expired setup link",
    used="This setup link has already been used",
    expired="This setup link has expired",
)


class MagicLinkService:
    def __init__(
        self,
        store: CredentialStore,
        notifier: LinkNotifier,
        base_url: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    # ------------------------------------------------------------------
    # Supplier login links
    # ------------------------------------------------------------------

    def request_login_link(self, email: str) -> None:
        """Issue and email a login link if email belongs to a supplier.

        Returns silently for unknown emails. Delivery errors propagate.
        """
        email = normalize_email(email)
        supplier = self.store.get_supplier_by_email(email)
        if supplier is None:
            logger.info("Login link requested for unknown supplier email %s", email)
            return

        secret = self._issue(email, "login", MAGIC_LINK_EXPIRY_MINUTES)
        self.notifier.send_login_link(supplier, self._link("/verify-login", secret), MAGIC_LINK_EXPIRY_MINUTES)
        logger.info("Login link sent to supplier_id=%s", supplier.id)
        self.store.purge_expired_link_tokens(self.clock())

    def verify_login_link(self, raw_token: str) -> LoginLinkResult:
        """Redeem a login link and return the supplier credential plus a session token."""
        token = self._validate(raw_token, "login", _LOGIN_MESSAGES)

        supplier = self.store.get_supplier_by_email(token.email)
        if supplier is None:
            logger.warning("Login link %s references missing supplier %s", token.id, token.email)
            raise InvalidLinkToken("Supplier account not found", code="supplier_not_found")

        user = self.store.find_or_create_supplier_user(token.email, supplier)
        if not user.active:
            logger.warning("Login link rejected for inactive user_id=%s", user.id)
            raise AccountInactive()

        session_token = create_session_token("supplier", str(user.id), user.email)

        if not self.store.claim_link_token(token.id, self.clock()):
            logger.warning("Login link %s lost the consumption race", token.id)
            raise TokenAlreadyUsed(_LOGIN_MESSAGES.used)

        self.store.update_last_login(user.id)
        logger.info("Supplier login via link for user_id=%s supplier_id=%s", user.id, supplier.id)
        return LoginLinkResult(user=user, supplier=supplier, session_token=session_token)

    # ------------------------------------------------------------------
    # Staff password setup
    # ------------------------------------------------------------------

    def issue_password_setup(self, user: User) -> str:
        """Store a password-setup token for user, email it, and return the link."""
        secret = self._issue(user.email, "password_setup", PASSWORD_SETUP_EXPIRY_MINUTES)
        link = self._link("/set-password", secret)
        self.notifier.send_password_setup(user, link, PASSWORD_SETUP_EXPIRY_MINUTES)
        logger.info("Password setup link issued for user_id=%s", user.id)
        return link

    def check_password_setup(self, raw_token: str) -> LinkToken:
        return self._validate(raw_token, "password_setup", _SETUP_MESSAGES)

    def complete_password_setup(self, raw_token: str, password: str) -> User:
        """Set the password for the token's owner and consume the token atomically."""
        problem = password_complexity_error(password)
        if problem:
            raise InvalidPassword(problem)

        token = self.check_password_setup(raw_token)
        user = self.store.get_by_email(token.email)
        if user is None:
            logger.warning("Setup link %s references missing user %s", token.id, token.email)
            raise InvalidLinkToken("User not found", code="user_not_found")

        try:
            self.store.set_password_and_consume_token(user.id, hash_password(password), token.id, self.clock())
        except TokenAlreadyUsed:
            logger.warning("Setup link %s lost the consumption race", token.id)
            raise TokenAlreadyUsed(_SETUP_MESSAGES.used)
        except LookupError:
            raise InvalidLinkToken("User not found", code="user_not_found")

        logger.info("Password set via setup link for user_id=%s", user.id)
        return self.store.get_by_id(user.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _issue(self, email: str, token_type: str, minutes: int) -> str:
        secret, token_hash = generate_bearer_token()
        expires_at = to_iso(self.clock() + timedelta(minutes=minutes))
        self.store.create_link_token(
            LinkToken(email=email, token_hash=token_hash, type=token_type, expires_at=expires_at)
        )
        return secret

    def _link(self, path: str, secret: str) -> str:
        return f"{self.base_url}{path}?{urlencode({'token': secret})}"

    def _validate(self, raw_token: str, token_type: str, messages: _LinkMessages) -> LinkToken:
        try:
            token_hash = hash_token(raw_token)
        except ValueError:
            raise InvalidLinkToken(messages.invalid)

        token = self.store.get_link_token_by_hash(token_hash)
        if token is None or token.type != token_type:
            logger.warning("Rejected %s link: unknown token", token_type)
            raise InvalidLinkToken(messages.invalid)
        if token.used_at is not None:
            logger.warning("Rejected %s link %s: already used", token_type, token.id)
            raise InvalidLinkToken(messages.used)
        if parse_iso(token.expires_at) <= self.clock():
            logger.warning("Rejected %s link %s: expired", token_type, token.id)
            raise InvalidLinkToken(messages.expired)
        return token
