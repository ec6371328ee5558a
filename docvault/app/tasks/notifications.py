"""Celery tasks for notification delivery.

The worker renders each message into an in-memory outbox. Handing the
outbox to SMTP or a push gateway happens outside this package, so queuing a
message here does not by itself deliver email.
"""
from __future__ import annotations

from celery import Celery

from docvault.app.config import get_settings
from docvault.app.infra.notify import OutboxSender

_settings = get_settings()

celery_app = Celery(
    "docvault",
    broker=_settings.celery_broker_url,
    backend=_settings.celery_result_backend,
)

_sender = OutboxSender()


@celery_app.task(name="notifications.send")
def send_notification(address: str, template_kind: str, params: dict) -> bool:
    """Render a notification into the worker outbox."""
    return _sender.send(address, template_kind, params)
