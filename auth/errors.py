"""
auth/errors.py -- Exception taxonomy for authentication and authorization.

Every exception carries the HTTP status, a machine-readable code and the
client-facing message. The API layer renders them through one exception
handler; the auth package itself never touches HTTP responses.

Messages here are what the client sees. Anything more specific (which email,
which reason) goes to the server log at the raise site, never into the
message.
"""

from __future__ import annotations

GENERIC_CREDENTIALS_MESSAGE = "Invalid credentials"
LINK_ALREADY_USED_MESSAGE = "This link has already been used"


class AuthError(Exception):
    """Base class for every rejection raised by the access core."""

    status_code: int = 401
    code: str = "unauthorized"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def headers(self) -> dict[str, str]:
        return {}


class AuthenticationFailed(AuthError):
    """Wrong credentials, invalid scoped token, or no session at all."""

    status_code = 401
    code = "unauthorized"


class InvalidLinkToken(AuthError):
    """A magic-link or password-setup token that is unknown, expired, used, or of the wrong type."""

    status_code = 400
    code = "invalid_token"


class TokenAlreadyUsed(InvalidLinkToken):
    """Raised when an atomic claim loses the race to another redemption.

    Rendered identically to the ordinary "already used" check so a client
    cannot tell a genuine race from a slow second click.
    """

    def __init__(self, message: str = LINK_ALREADY_USED_MESSAGE) -> None:
        super().__init__(message)


class InvalidPassword(AuthError):
    """A new password that fails the complexity policy."""

    status_code = 400
    code = "invalid_password"


class AuthorizationFailed(AuthError):
    """Identity is known but not allowed to perform the operation."""

    status_code = 403
    code = "forbidden"


class AccountInactive(AuthError):
    """The resolved credential has been deactivated."""

    status_code = 401
    code = "account_inactive"

    def __init__(self, message: str = "Account is inactive") -> None:
        super().__init__(message)


class RateLimited(AuthError):
    """Too many requests from one client IP within the window."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int, message: str = "Too many requests. Please try again later.") -> None:
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}
