"""
tests/test_notify.py -- Tests for email composition and delivery (notify/).

Covers:
  - Staff-entered fields are escaped in HTML bodies, left readable in text
  - LogEmailSender keeps a bounded outbox
  - HttpEmailSender payload and bearer header
  - Transport and HTTP failures surface as EmailDeliveryError
  - build_sender() provider selection
"""

from __future__ import annotations

import pytest
import requests

import notify.email as email_module
from auth.models import Supplier, User
from core.config import get_settings
from notify.email import EmailDeliveryError, HttpEmailSender, LogEmailSender, OutboundEmail, build_sender
from notify.messages import EmailNotifier, quote_submission_url
from rfq.models import QuoteRequest


class _FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


def _message() -> OutboundEmail:
    return OutboundEmail(to="sales@acme.test", subject="Hello", html="<p>Hi</p>", text="Hi", tags={"type": "login"})


class TestEmailNotifier:
    def test_rfq_invitation_escapes_html(self) -> None:
        sender = LogEmailSender("procurement@test.local")
        supplier = Supplier(id=3, supplier_name="<b>Acme</b>", contact_person="Jane", email="sales@acme.test")
        request = QuoteRequest(
            id=7,
            request_number="RFQ-2026-001",
            material_name="Steel <plate>",
            quantity_needed="100",
            unit_of_measure="kg",
            submit_by_date="2026-12-01",
        )
        link = quote_submission_url("https://portal.example/", 7, "a" * 64)

        EmailNotifier(sender).send_rfq_invitation(supplier, request, link, 30)

        sent = sender.outbox[0]
        assert sent.to == "sales@acme.test"
        assert sent.subject == "Request for quote RFQ-2026-001: Steel <plate>"
        assert "&lt;b&gt;Acme&lt;/b&gt;" in sent.html
        assert "<b>Acme</b>" not in sent.html
        assert "Hello <b>Acme</b>," in sent.text
        assert "https://portal.example/quote-submission/7?token=" + "a" * 64 in sent.text
        assert sent.tags == {"type": "rfq_invitation", "request_id": "7"}

    def test_password_setup_greets_by_name(self) -> None:
        sender = LogEmailSender("procurement@test.local")
        user = User(id=1, email="buyer@x.com", role="procurement", first_name="Bo")

        EmailNotifier(sender).send_password_setup(user, "https://portal.example/set-password?token=x", 24 * 60)

        assert sender.outbox[0].to == "buyer@x.com"
        assert "Bo" in sender.outbox[0].text
        assert "https://portal.example/set-password?token=x" in sender.outbox[0].text


class TestLogEmailSender:
    def test_outbox_keeps_only_recent_messages(self) -> None:
        sender = LogEmailSender("procurement@test.local", outbox_size=3)
        for n in range(5):
            sender.send(OutboundEmail(to=f"u{n}@acme.test", subject="Hello", html="", text=""))
        assert [m.to for m in sender.outbox] == ["u2@acme.test", "u3@acme.test", "u4@acme.test"]

    def test_default_outbox_is_bounded(self) -> None:
        sender = LogEmailSender("procurement@test.local")
        for _ in range(email_module.OUTBOX_SIZE + 10):
            sender.send(_message())
        assert len(sender.outbox) == email_module.OUTBOX_SIZE


class TestHttpEmailSender:
    def test_posts_json_with_bearer_key(self, monkeypatch) -> None:
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append((url, json, headers, timeout))
            return _FakeResponse(202)

        monkeypatch.setattr(email_module._session, "post", fake_post)
        HttpEmailSender("https://mail.example/send", "key-123", "procurement@acme.test").send(_message())

        url, payload, headers, timeout = calls[0]
        assert url == "https://mail.example/send"
        assert headers == {"Authorization": "Bearer key-123"}
        assert payload["from"] == "procurement@acme.test"
        assert payload["to"] == ["sales@acme.test"]
        assert timeout == 10

    def test_connection_error(self, monkeypatch) -> None:
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(email_module._session, "post", fake_post)
        with pytest.raises(EmailDeliveryError):
            HttpEmailSender("https://mail.example/send", "", "procurement@acme.test").send(_message())

    def test_http_error_status(self, monkeypatch) -> None:
        monkeypatch.setattr(email_module._session, "post", lambda *a, **kw: _FakeResponse(503))
        with pytest.raises(EmailDeliveryError):
            HttpEmailSender("https://mail.example/send", "", "procurement@acme.test").send(_message())


class TestBuildSender:
    def test_log_provider_by_default(self) -> None:
        assert isinstance(build_sender(get_settings()), LogEmailSender)

    def test_http_provider_override(self) -> None:
        settings = get_settings().model_copy(update={"email_api_url": "https://mail.example/send"})
        sender = build_sender(settings, provider="http")
        assert isinstance(sender, HttpEmailSender)
        assert sender.api_url == "https://mail.example/send"
