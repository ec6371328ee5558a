"""Notification sender interface and the senders shipped with the service.

Delivery itself (SMTP, push) happens outside this package; senders render
the message from a template kind and hand it on.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Protocol, Tuple

import structlog
from jinja2 import Environment, StrictUndefined, UndefinedError
from kombu.exceptions import OperationalError as BrokerError

from ..errors import FormatError

log = structlog.get_logger(__name__)

_env = Environment(autoescape=True, undefined=StrictUndefined)

TEMPLATES: Dict[str, Tuple[str, str]] = {
    "email_verification": (
        "DocVault email verification",
        "<h1>Please verify your email address</h1>"
        "<p>Thank you for registering. Open the link below to verify your address:</p>"
        '<a href="{{ link }}">Verify email</a>',
    ),
    "password_reset": (
        "DocVault password reset",
        "<p>Your password reset code is <strong>{{ code }}</strong>.</p>"
        "<p>It expires in {{ minutes }} minutes. Ignore this message if you did not ask for it.</p>",
    ),
    "welcome_authority": (
        "Your DocVault authority account",
        "<p>An authority account <strong>{{ login }}</strong> was created for {{ organization }}.</p>",
    ),
}


@dataclass(frozen=True)
class RenderedMessage:
    address: str
    kind: str
    subject: str
    html: str


def render(address: str, template_kind: str, params: Mapping[str, Any]) -> RenderedMessage:
    try:
        subject, body = TEMPLATES[template_kind]
    except KeyError as exc:
        raise FormatError(f"unknown notification template {template_kind!r}") from exc
    try:
        html = _env.from_string(body).render(**params)
    except UndefinedError as exc:
        raise FormatError(f"missing parameter for {template_kind}: {exc}") from exc
    return RenderedMessage(address=address, kind=template_kind, subject=subject, html=html)


class NotificationSender(Protocol):
    def send(self, address: str, template_kind: str, params: Mapping[str, Any]) -> bool: ...


class OutboxSender:
    """Renders and keeps messages in memory; the development default."""

    def __init__(self) -> None:
        self.outbox: List[RenderedMessage] = []

    def send(self, address: str, template_kind: str, params: Mapping[str, Any]) -> bool:
        message = render(address, template_kind, params)
        self.outbox.append(message)
        log.info("notification_rendered", kind=template_kind, address=address)
        return True


class QueuedSender:
    """Hands messages to the celery worker."""

    def send(self, address: str, template_kind: str, params: Mapping[str, Any]) -> bool:
        from ..tasks.notifications import send_notification

        render(address, template_kind, params)  # fail fast on bad templates
        try:
            send_notification.delay(address, template_kind, dict(params))
        except BrokerError as exc:
            log.warning("notification_not_queued", kind=template_kind, error=str(exc))
            return False
        return True
