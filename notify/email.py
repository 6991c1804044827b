"""
notify/email.py -- Outbound email delivery.

Two senders, chosen by EMAIL_PROVIDER:
  log   Writes each message to the log and keeps the most recent OUTBOX_SIZE
        in an in-process outbox. Development default; tests read the outbox
        to follow emailed links.
  http  POSTs JSON to a transactional email API (EMAIL_API_URL) with a
        bearer key. Any transport or HTTP error becomes EmailDeliveryError.

Senders know nothing about tokens or templates; notify/messages.py composes
the content.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import requests

from core.config import Settings

logger = logging.getLogger("supplierportal.email")

# Module-level session shared across sends for connection pooling.
# max_redirects=3: the email API is a fixed endpoint; a long redirect chain is
# a misconfiguration, not something to follow.
_session = requests.Session()
_session.max_redirects = 3

# Emails carry live link secrets; keep only enough for a developer to inspect.
OUTBOX_SIZE = 50


class EmailDeliveryError(Exception):
    """The email collaborator failed to accept a message."""


@dataclass
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str
    tags: dict = field(default_factory=dict)


class LogEmailSender:
    """Development sender: log the message and remember it."""

    def __init__(self, sender: str, outbox_size: int = OUTBOX_SIZE) -> None:
        self.sender = sender
        self.outbox: deque[OutboundEmail] = deque(maxlen=outbox_size)

    def send(self, message: OutboundEmail) -> None:
        self.outbox.append(message)
        logger.info("Email (log provider) from=%s to=%s subject=%r", self.sender, message.to, message.subject)
        logger.debug("Email body:\n%s", message.text)


class HttpEmailSender:
    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, message: OutboundEmail) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "tags": message.tags,
        }
        try:
            resp = _session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Email delivery to %s failed: %s", message.to, e)
            raise EmailDeliveryError(f"Email delivery failed: {e}") from e
        logger.info("Email sent to %s subject=%r", message.to, message.subject)


def build_sender(settings: Settings, provider: Optional[str] = None):
    """Return the sender configured by EMAIL_PROVIDER (or the explicit override)."""
    provider = provider or settings.email_provider
    if provider == "http":
        return HttpEmailSender(settings.email_api_url, settings.email_api_key, settings.email_from)
    return LogEmailSender(settings.email_from)
