"""
auth/local.py -- Email + password authentication for staff accounts.

Lockout policy (per normalized email):
  MAX_ATTEMPTS failures inside ATTEMPT_WINDOW_SECONDS lock the account for
  LOCKOUT_SECONDS. A lock that has run out, or a window that has elapsed
  since the last failure, starts the count again from zero. Success clears
  the record.

Security:
  [C1] Unknown emails and ineligible roles still pay for a full bcrypt
       comparison against a dummy hash, so timing does not reveal which
       emails exist.
  [C2] Unknown email, wrong role and wrong password all produce the same
       client message. The specific reason is only logged.
  Failures for unknown emails are counted too; an attacker trying an email
  cannot tell whether it is real from when the lock kicks in.

Only admin and procurement accounts may log in with a password. Suppliers
use magic links.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from auth.errors import GENERIC_CREDENTIALS_MESSAGE, AccountInactive, AuthenticationFailed
from auth.lockout import AttemptStore
from auth.models import User
from auth.store import CredentialStore
from auth.tokens import burn_password_check, normalize_email, verify_password

logger = logging.getLogger("supplierportal.auth.local")

MAX_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60
ATTEMPT_WINDOW_SECONDS = 15 * 60
LOCAL_AUTH_ROLES = frozenset({"admin", "procurement"})

PASSWORD_NOT_SET_MESSAGE = "Password not set. Use the link in your setup email or contact an administrator."


class LocalAuthenticator:
    """Password authenticator with per-email lockout.

    clock returns epoch seconds; tests inject a fake one to move through the
    lockout window without sleeping.
    """

    def __init__(
        self,
        store: CredentialStore,
        attempts: AttemptStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.attempts = attempts
        self.clock = clock

    def authenticate(self, email: str, password: str) -> User:
        """Return the authenticated User or raise AuthenticationFailed / AccountInactive."""
        email = normalize_email(email)
        now = self.clock()

        attempt = self.attempts.get(email)
        if attempt is not None:
            if attempt.locked_until is not None and now < attempt.locked_until:
                minutes = math.ceil((attempt.locked_until - now) / 60)
                logger.warning("Login rejected for %s: account locked (%d min left)", email, minutes)
                raise AuthenticationFailed(
                    f"Account temporarily locked. Try again in {minutes} minutes.", code="account_locked"
                )
            if attempt.locked_until is not None or now - attempt.last_attempt > ATTEMPT_WINDOW_SECONDS:
                self.attempts.clear(email)

        user = self.store.get_by_email(email)
        if user is None or user.role not in LOCAL_AUTH_ROLES:
            burn_password_check(password)
            self._record_failure(email, now)
            reason = "unknown email" if user is None else f"role {user.role} not allowed"
            logger.warning("Login rejected for %s: %s", email, reason)
            raise AuthenticationFailed(GENERIC_CREDENTIALS_MESSAGE)

        if not user.active:
            logger.warning("Login rejected for %s: account inactive", email)
            raise AccountInactive()

        if not user.password_hash:
            logger.warning("Login rejected for %s: password not set", email)
            raise AuthenticationFailed(PASSWORD_NOT_SET_MESSAGE, code="password_not_set")

        if not verify_password(password, user.password_hash):
            self._record_failure(email, now)
            logger.warning("Login rejected for %s: wrong password", email)
            raise AuthenticationFailed(GENERIC_CREDENTIALS_MESSAGE)

        self.attempts.clear(email)
        self.store.update_last_login(user.id)
        logger.info("Local login succeeded for user_id=%s", user.id)
        return user

    def _record_failure(self, email: str, now: float) -> None:
        attempt = self.attempts.record_failure(email, now, MAX_ATTEMPTS, LOCKOUT_SECONDS)
        if attempt.count == MAX_ATTEMPTS:
            logger.warning("Account %s locked for %d seconds after %d failures", email, LOCKOUT_SECONDS, attempt.count)
