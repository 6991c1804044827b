"""
tests/test_magic_link.py -- Unit tests for MagicLinkService (auth/magic_link.py).

A recording notifier stands in for email delivery and a settable clock
drives expiry.

Covers:
  - Login link issue: silent for unknown emails, hashed storage, link shape
  - Login link verify: auto-provisioning, session token, single use,
    expiry, type confusion, missing supplier, inactive credential
  - Lost consumption race surfaces as "already used"
  - Concurrent verifications of one link on a file database: one winner
  - Password setup: complexity first, atomic set-and-consume, replay refused
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from auth.errors import AccountInactive, InvalidLinkToken, InvalidPassword, TokenAlreadyUsed
from auth.magic_link import MAGIC_LINK_EXPIRY_MINUTES, MagicLinkService
from auth.models import LinkToken, Supplier, User
from auth.store import CredentialStore
from auth.tokens import decode_session_token, hash_token, verify_password
from core.clock import to_iso
from notify.email import EmailDeliveryError

BASE_URL = "https://portal.example"


class RecordingNotifier:
    def __init__(self) -> None:
        self.login_links: list[tuple[Supplier, str, int]] = []
        self.setup_links: list[tuple[User, str, int]] = []
        self.fail = False

    def send_login_link(self, supplier: Supplier, link: str, expires_minutes: int) -> None:
        if self.fail:
            raise EmailDeliveryError("mail API down")
        self.login_links.append((supplier, link, expires_minutes))

    def send_password_setup(self, user: User, link: str, expires_minutes: int) -> None:
        self.setup_links.append((user, link, expires_minutes))


class SettableClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _secret(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> SettableClock:
    return SettableClock()


@pytest.fixture
def service(stores, notifier, clock) -> MagicLinkService:
    return MagicLinkService(stores[0], notifier, BASE_URL + "/", clock=clock)


class TestRequestLoginLink:
    def test_unknown_email_is_silent(self, service, notifier) -> None:
        service.request_login_link("nobody@x.com")
        assert notifier.login_links == []

    def test_known_supplier_gets_link(self, service, notifier, supplier_record, stores) -> None:
        supplier_record(email="sales@acme.test")
        service.request_login_link("  Sales@Acme.TEST ")

        assert len(notifier.login_links) == 1
        supplier, link, minutes = notifier.login_links[0]
        assert supplier.email == "sales@acme.test"
        assert minutes == MAGIC_LINK_EXPIRY_MINUTES
        assert link.startswith(f"{BASE_URL}/verify-login?token=")

        secret = _secret(link)
        stored = stores[0].get_link_token_by_hash(hash_token(secret))
        assert stored.type == "login"
        assert stored.token_hash != secret
        assert stores[0].get_link_token_by_hash(secret) is None

    def test_delivery_failure_propagates(self, service, notifier, supplier_record) -> None:
        supplier_record(email="sales@acme.test")
        notifier.fail = True
        with pytest.raises(EmailDeliveryError):
            service.request_login_link("sales@acme.test")

    def test_request_purges_expired_tokens(self, service, supplier_record, stores, clock) -> None:
        supplier_record(email="sales@acme.test")
        stale_hash = hash_token("stale")
        stores[0].create_link_token(
            LinkToken(
                email="sales@acme.test",
                token_hash=stale_hash,
                type="login",
                expires_at=to_iso(clock.now - timedelta(minutes=1)),
            )
        )
        service.request_login_link("sales@acme.test")
        assert stores[0].get_link_token_by_hash(stale_hash) is None


class TestVerifyLoginLink:
    def _issue(self, service, notifier, supplier_record) -> str:
        supplier_record(email="sales@acme.test", contact="Jane Q Smith")
        service.request_login_link("sales@acme.test")
        return _secret(notifier.login_links[-1][1])

    def test_verify_provisions_supplier_and_mints_session(self, service, notifier, supplier_record) -> None:
        secret = self._issue(service, notifier, supplier_record)
        result = service.verify_login_link(secret)

        assert result.user.role == "supplier"
        assert result.user.active is True
        assert result.user.first_name == "Jane"
        assert result.supplier.email == "sales@acme.test"
        payload = decode_session_token(result.session_token)
        assert payload["auth_type"] == "supplier"
        assert payload["sub"] == str(result.user.id)

    def test_second_verify_is_already_used(self, service, notifier, supplier_record) -> None:
        secret = self._issue(service, notifier, supplier_record)
        service.verify_login_link(secret)
        with pytest.raises(InvalidLinkToken) as exc:
            service.verify_login_link(secret)
        assert exc.value.message == "This login link has already been used"
        assert exc.value.status_code == 400

    def test_expired_link(self, service, notifier, supplier_record, clock) -> None:
        secret = self._issue(service, notifier, supplier_record)
        clock.now += timedelta(minutes=MAGIC_LINK_EXPIRY_MINUTES, seconds=1)
        with pytest.raises(InvalidLinkToken) as exc:
            service.verify_login_link(secret)
        assert exc.value.message == "This login link has expired"

    @pytest.mark.parametrize("raw", ["", "0" * 64, "not-a-token"])
    def test_unknown_or_empty_token(self, service, raw) -> None:
        with pytest.raises(InvalidLinkToken) as exc:
            service.verify_login_link(raw)
        assert exc.value.message == "Invalid or expired login link"

    def test_setup_token_cannot_log_in(self, service, staff_user) -> None:
        link = service.issue_password_setup(staff_user("buyer@x.com", role="procurement", password=None))
        with pytest.raises(InvalidLinkToken) as exc:
            service.verify_login_link(_secret(link))
        assert exc.value.message == "Invalid or expired login link"

    def test_missing_supplier(self, service, stores, clock) -> None:
        stores[0].create_link_token(
            LinkToken(
                email="ghost@x.com",
                token_hash=hash_token("ghost-secret"),
                type="login",
                expires_at=to_iso(clock.now + timedelta(minutes=5)),
            )
        )
        with pytest.raises(InvalidLinkToken) as exc:
            service.verify_login_link("ghost-secret")
        assert exc.value.code == "supplier_not_found"
        assert exc.value.message == "Supplier account not found"

    def test_inactive_credential_does_not_burn_link(self, service, notifier, supplier_record, stores) -> None:
        secret = self._issue(service, notifier, supplier_record)
        user = stores[0].find_or_create_supplier_user("sales@acme.test", stores[0].get_supplier_by_email("sales@acme.test"))
        stores[0].update_user(user.id, active=False)

        with pytest.raises(AccountInactive):
            service.verify_login_link(secret)
        assert stores[0].get_link_token_by_hash(hash_token(secret)).used_at is None

    def test_lost_claim_is_already_used(self, service, notifier, supplier_record, stores, monkeypatch) -> None:
        secret = self._issue(service, notifier, supplier_record)
        monkeypatch.setattr(stores[0], "claim_link_token", lambda token_id, now=None: False)
        with pytest.raises(TokenAlreadyUsed) as exc:
            service.verify_login_link(secret)
        assert exc.value.message == "This login link has already been used"

    def test_concurrent_verifications_have_one_winner(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'links.db'}")
        store.create_supplier(Supplier(supplier_name="Acme", contact_person="Jane Smith", email="sales@acme.test"))
        notifier = RecordingNotifier()
        service = MagicLinkService(store, notifier, BASE_URL)
        service.request_login_link("sales@acme.test")
        secret = _secret(notifier.login_links[0][1])

        barrier = threading.Barrier(6)
        outcomes: list[str] = []
        lock = threading.Lock()

        def verify() -> None:
            barrier.wait()
            try:
                service.verify_login_link(secret)
                outcome = "ok"
            except InvalidLinkToken as e:
                outcome = e.message
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=verify) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.close()

        assert outcomes.count("ok") == 1
        assert all(o == "This login link has already been used" for o in outcomes if o != "ok")


class TestPasswordSetup:
    def test_issue_link_shape(self, service, notifier, staff_user) -> None:
        user = staff_user("buyer@x.com", role="procurement", password=None)
        link = service.issue_password_setup(user)
        assert link.startswith(f"{BASE_URL}/set-password?token=")
        assert notifier.setup_links[0][0].id == user.id
        assert notifier.setup_links[0][2] == 24 * 60

    def test_check_returns_token_without_consuming(self, service, staff_user, stores) -> None:
        link = service.issue_password_setup(staff_user("buyer@x.com", role="procurement", password=None))
        token = service.check_password_setup(_secret(link))
        assert token.email == "buyer@x.com"
        assert stores[0].get_link_token_by_hash(hash_token(_secret(link))).used_at is None

    def test_complete_sets_password_once(self, service, staff_user, stores) -> None:
        user = staff_user("buyer@x.com", role="procurement", password=None)
        secret = _secret(service.issue_password_setup(user))

        updated = service.complete_password_setup(secret, "Fresh1Password")
        assert verify_password("Fresh1Password", updated.password_hash)

        with pytest.raises(InvalidLinkToken) as exc:
            service.complete_password_setup(secret, "Other1Password")
        assert exc.value.message == "This setup link has already been used"
        assert stores[0].get_by_id(user.id).password_hash == updated.password_hash

    def test_weak_password_leaves_token_usable(self, service, staff_user) -> None:
        secret = _secret(service.issue_password_setup(staff_user("buyer@x.com", role="procurement", password=None)))
        with pytest.raises(InvalidPassword) as exc:
            service.complete_password_setup(secret, "weak")
        assert exc.value.message == "Password must be at least 8 characters long"
        service.complete_password_setup(secret, "Fresh1Password")

    def test_login_token_cannot_set_password(self, service, notifier, supplier_record) -> None:
        supplier_record(email="sales@acme.test")
        service.request_login_link("sales@acme.test")
        with pytest.raises(InvalidLinkToken) as exc:
            service.complete_password_setup(_secret(notifier.login_links[0][1]), "Fresh1Password")
        assert exc.value.message == "Invalid or expired setup link"

    def test_expired_setup_link(self, service, staff_user, clock) -> None:
        secret = _secret(service.issue_password_setup(staff_user("buyer@x.com", role="procurement", password=None)))
        clock.now += timedelta(hours=24, seconds=1)
        with pytest.raises(InvalidLinkToken) as exc:
            service.check_password_setup(secret)
        assert exc.value.message == "This setup link has expired"

    def test_race_lost_between_check_and_write(self, service, staff_user, stores, monkeypatch) -> None:
        user = staff_user("buyer@x.com", role="procurement", password=None)
        secret = _secret(service.issue_password_setup(user))
        original = stores[0].set_password_and_consume_token

        def racing(user_id, password_hash, token_id, now=None):
            # Another submission wins between validation and the atomic write.
            stores[0].claim_link_token(token_id)
            return original(user_id, password_hash, token_id, now)

        monkeypatch.setattr(stores[0], "set_password_and_consume_token", racing)
        with pytest.raises(TokenAlreadyUsed) as exc:
            service.complete_password_setup(secret, "Fresh1Password")
        assert exc.value.message == "This setup link has already been used"
        assert stores[0].get_by_id(user.id).password_hash is None

    def test_token_for_deleted_user(self, service, stores, clock) -> None:
        stores[0].create_link_token(
            LinkToken(
                email="gone@x.com",
                token_hash=hash_token("gone-secret"),
                type="password_setup",
                expires_at=to_iso(clock.now + timedelta(hours=1)),
            )
        )
        with pytest.raises(InvalidLinkToken) as exc:
            service.complete_password_setup("gone-secret", "Fresh1Password")
        assert exc.value.code == "user_not_found"
