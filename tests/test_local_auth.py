"""
tests/test_local_auth.py -- Unit tests for LocalAuthenticator (auth/local.py).

The authenticator takes an injectable clock, so the lockout window is walked
through without sleeping.

Covers:
  - Successful login, email normalization, last_login stamp
  - Generic rejection for wrong password, unknown email and supplier role
  - Distinct rejections for inactive accounts and unset passwords
  - Lockout after MAX_ATTEMPTS failures, remaining-minutes message, unlock
    after LOCKOUT_SECONDS with the counter reset
  - Attempt window expiry resets an accumulating counter
  - InMemoryAttemptStore counts concurrent failures individually
"""

from __future__ import annotations

import threading

import pytest

from auth.errors import AccountInactive, AuthenticationFailed
from auth.local import LOCKOUT_SECONDS, MAX_ATTEMPTS, LocalAuthenticator
from auth.lockout import InMemoryAttemptStore
from auth.models import User
from auth.tokens import hash_password

STRONG_PASSWORD = "Correct1Horse"


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def attempts() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def authenticator(stores, attempts, clock) -> LocalAuthenticator:
    credential_store, _ = stores
    return LocalAuthenticator(credential_store, attempts, clock=clock)


class TestAuthenticate:
    def test_success_returns_user_and_stamps_last_login(self, authenticator, staff_user, stores) -> None:
        user = staff_user("admin@x.com")
        result = authenticator.authenticate("admin@x.com", STRONG_PASSWORD)
        assert result.id == user.id
        assert stores[0].get_by_id(user.id).last_login is not None

    def test_email_is_normalized(self, authenticator, staff_user) -> None:
        staff_user("admin@x.com")
        assert authenticator.authenticate("  ADMIN@X.com ", STRONG_PASSWORD).email == "admin@x.com"

    def test_procurement_may_log_in(self, authenticator, staff_user) -> None:
        staff_user("buyer@x.com", role="procurement")
        assert authenticator.authenticate("buyer@x.com", STRONG_PASSWORD).role == "procurement"

    def test_wrong_password_is_generic(self, authenticator, staff_user) -> None:
        staff_user("admin@x.com")
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("admin@x.com", "Wrong1Password")
        assert exc.value.message == "Invalid credentials"
        assert exc.value.status_code == 401

    def test_unknown_email_matches_wrong_password(self, authenticator, staff_user) -> None:
        staff_user("admin@x.com")
        with pytest.raises(AuthenticationFailed) as unknown:
            authenticator.authenticate("nobody@x.com", STRONG_PASSWORD)
        with pytest.raises(AuthenticationFailed) as wrong:
            authenticator.authenticate("admin@x.com", "Wrong1Password")
        assert (unknown.value.code, unknown.value.message) == (wrong.value.code, wrong.value.message)

    def test_supplier_role_is_rejected_even_with_correct_hash(self, authenticator, stores) -> None:
        stores[0].create_user(User(email="sales@acme.test", role="supplier", password_hash=hash_password(STRONG_PASSWORD)))
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("sales@acme.test", STRONG_PASSWORD)
        assert exc.value.message == "Invalid credentials"

    def test_inactive_account(self, authenticator, staff_user) -> None:
        staff_user("admin@x.com", active=False)
        with pytest.raises(AccountInactive) as exc:
            authenticator.authenticate("admin@x.com", STRONG_PASSWORD)
        assert exc.value.message == "Account is inactive"

    def test_password_not_set(self, authenticator, staff_user) -> None:
        staff_user("pending@x.com", role="procurement", password=None)
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("pending@x.com", "Anything1")
        assert exc.value.code == "password_not_set"
        assert "Password not set" in exc.value.message


class TestLockout:
    def test_lockout_then_unlock(self, authenticator, staff_user, attempts, clock) -> None:
        """Five wrong passwords within ten minutes lock the account; the lock outlasts a correct password."""
        staff_user("admin@x.com")
        for _ in range(MAX_ATTEMPTS):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("admin@x.com", "Wrong1Password")
            clock.advance(60)
        # Last failure at +240s locked until +1140s; now is +300s.
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("admin@x.com", STRONG_PASSWORD)
        assert exc.value.code == "account_locked"
        assert exc.value.message == "Account temporarily locked. Try again in 14 minutes."

        clock.advance(LOCKOUT_SECONDS - 300 + 241)
        assert authenticator.authenticate("admin@x.com", STRONG_PASSWORD).email == "admin@x.com"
        assert attempts.get("admin@x.com") is None

    def test_lock_rejects_without_extending(self, authenticator, staff_user, attempts) -> None:
        staff_user("admin@x.com")
        for _ in range(MAX_ATTEMPTS):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("admin@x.com", "Wrong1Password")
        locked_until = attempts.get("admin@x.com").locked_until
        for _ in range(3):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("admin@x.com", STRONG_PASSWORD)
        assert attempts.get("admin@x.com").locked_until == locked_until

    def test_four_failures_do_not_lock(self, authenticator, staff_user) -> None:
        staff_user("admin@x.com")
        for _ in range(MAX_ATTEMPTS - 1):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("admin@x.com", "Wrong1Password")
        assert authenticator.authenticate("admin@x.com", STRONG_PASSWORD).email == "admin@x.com"

    def test_success_clears_counter(self, authenticator, staff_user, attempts) -> None:
        staff_user("admin@x.com")
        with pytest.raises(AuthenticationFailed):
            authenticator.authenticate("admin@x.com", "Wrong1Password")
        assert attempts.get("admin@x.com").count == 1
        authenticator.authenticate("admin@x.com", STRONG_PASSWORD)
        assert attempts.get("admin@x.com") is None

    def test_elapsed_window_resets_counter(self, authenticator, staff_user, attempts, clock) -> None:
        staff_user("admin@x.com")
        for _ in range(MAX_ATTEMPTS - 1):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("admin@x.com", "Wrong1Password")
        clock.advance(LOCKOUT_SECONDS + 1)
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("admin@x.com", "Wrong1Password")
        assert exc.value.message == "Invalid credentials"
        assert attempts.get("admin@x.com").count == 1

    def test_unknown_emails_lock_too(self, authenticator, attempts) -> None:
        for _ in range(MAX_ATTEMPTS):
            with pytest.raises(AuthenticationFailed):
                authenticator.authenticate("ghost@x.com", "Wrong1Password")
        assert attempts.get("ghost@x.com").locked_until is not None
        with pytest.raises(AuthenticationFailed) as exc:
            authenticator.authenticate("ghost@x.com", "Wrong1Password")
        assert exc.value.code == "account_locked"


class TestInMemoryAttemptStore:
    def test_concurrent_failures_are_each_counted(self, attempts) -> None:
        barrier = threading.Barrier(8)

        def fail() -> None:
            barrier.wait()
            for _ in range(25):
                attempts.record_failure("admin@x.com", 1000.0, 10_000, LOCKOUT_SECONDS)

        threads = [threading.Thread(target=fail) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert attempts.get("admin@x.com").count == 200

    def test_lock_set_once_at_threshold(self, attempts) -> None:
        for n in range(MAX_ATTEMPTS - 1):
            assert attempts.record_failure("a@x.com", 100.0 + n, MAX_ATTEMPTS, 60).locked_until is None
        locked = attempts.record_failure("a@x.com", 200.0, MAX_ATTEMPTS, 60)
        assert locked.locked_until == 260.0
        again = attempts.record_failure("a@x.com", 230.0, MAX_ATTEMPTS, 60)
        assert (again.count, again.locked_until) == (MAX_ATTEMPTS + 1, 260.0)

    def test_returned_record_is_a_copy(self, attempts) -> None:
        returned = attempts.record_failure("a@x.com", 100.0, MAX_ATTEMPTS, 60)
        returned.count = 99
        assert attempts.get("a@x.com").count == 1
