"""Webhook handler registry."""

from __future__ import annotations

from tenant_access.services.webhooks.base import WebhookHandler
from tenant_access.services.webhooks.email_feedback import EmailFeedbackWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "email": EmailFeedbackWebhookHandler(),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
