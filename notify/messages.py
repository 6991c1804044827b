"""
notify/messages.py -- Email composition for link tokens and RFQ invitations.

EmailNotifier renders Jinja2 templates from notify/templates/ and hands the
result to a sender from notify/email.py. It implements the LinkNotifier
protocol auth/magic_link.py depends on, plus the RFQ invitation email the
quote-request routes send.

HTML templates are autoescaped; supplier names and request fields come from
staff input and must not inject markup into supplier inboxes.
"""

import logging
from pathlib import Path
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from auth.models import Supplier, User
from notify.email import OutboundEmail
from rfq.models import QuoteRequest

logger = logging.getLogger("supplierportal.notify")

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


def quote_submission_url(base_url: str, request_id: int, access_token: str) -> str:
    return f"{base_url.rstrip('/')}/quote-submission/{request_id}?{urlencode({'token': access_token})}"


def render(template: str, **context) -> tuple[str, str]:
    """Render <template>.html and <template>.txt with the same context."""
    html = _env.get_template(f"{template}.html").render(**context)
    text = _env.get_template(f"{template}.txt").render(**context)
    return html, text


class EmailNotifier:
    def __init__(self, sender) -> None:
        self.sender = sender

    def send_login_link(self, supplier: Supplier, link: str, expires_minutes: int) -> None:
        html, text = render(
            "login_link",
            contact_name=supplier.contact_person,
            supplier_name=supplier.supplier_name,
            link=link,
            expires_minutes=expires_minutes,
        )
        self.sender.send(
            OutboundEmail(
                to=supplier.email,
                subject="Your supplier portal login link",
                html=html,
                text=text,
                tags={"type": "login"},
            )
        )

    def send_password_setup(self, user: User, link: str, expires_minutes: int) -> None:
        html, text = render(
            "password_setup",
            first_name=user.first_name or "User",
            last_name=user.last_name or "",
            link=link,
            expires_hours=expires_minutes // 60,
        )
        self.sender.send(
            OutboundEmail(
                to=user.email,
                subject="Set up your supplier portal password",
                html=html,
                text=text,
                tags={"type": "password_setup"},
            )
        )

    def send_rfq_invitation(self, supplier: Supplier, request: QuoteRequest, link: str, expires_days: int) -> None:
        html, text = render(
            "rfq_invitation",
            supplier_name=supplier.supplier_name,
            request=request,
            link=link,
            expires_days=expires_days,
        )
        self.sender.send(
            OutboundEmail(
                to=supplier.email,
                subject=f"Request for quote {request.request_number}: {request.material_name}",
                html=html,
                text=text,
                tags={"type": "rfq_invitation", "request_id": str(request.id)},
            )
        )
        logger.info("RFQ invitation for request_id=%s sent to supplier_id=%s", request.id, supplier.id)
