"""Invitation email dispatch through a Resend-compatible HTTP API.

Sending is best-effort and runs after the invitation is committed
(FastAPI BackgroundTasks). Failures are logged and never reach the caller;
bounces come back through the delivery feedback webhook.
"""

from __future__ import annotations

import html
import logging

import httpx

from tenant_access.core.config import settings
from tenant_access.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

EMAIL_MAX_ATTEMPTS = 3
EMAIL_RETRY_BASE_DELAY = 0.5
EMAIL_RETRY_MAX_DELAY = 4.0
EMAIL_TIMEOUT_SECONDS = 20.0


def build_invite_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/invite/{token}"


def build_invitation_payload(
    *,
    to_email: str,
    org_name: str,
    role: str,
    token: str,
    inviter_name: str | None = None,
) -> dict[str, object]:
    url = build_invite_url(token)
    inviter = html.escape(inviter_name) if inviter_name else "A teammate"
    org = html.escape(org_name)
    body = (
        f"<p>{inviter} invited you to join <strong>{org}</strong> as {html.escape(role)}.</p>"
        f'<p><a href="{url}">Accept the invitation</a></p>'
        f"<p>This link expires in {settings.INVITE_EXPIRY_DAYS} days.</p>"
    )
    return {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": f"You're invited to join {org_name}",
        "html": body,
        "text": f"{inviter_name or 'A teammate'} invited you to join {org_name}: {url}",
    }


async def send_invitation_email(
    *,
    invitation_id: str,
    to_email: str,
    org_name: str,
    role: str,
    token: str,
    inviter_name: str | None = None,
) -> bool:
    """
    Send one invitation email. Returns True on provider acceptance.

    Uses the invitation id as idempotency key so retries never double-send.
    """
    if not settings.email_enabled:
        logger.info("Email provider not configured; skipping invitation %s", invitation_id)
        return False

    payload = build_invitation_payload(
        to_email=to_email,
        org_name=org_name,
        role=role,
        token=token,
        inviter_name=inviter_name,
    )
    headers = {
        "Authorization": f"Bearer {settings.EMAIL_PROVIDER_API_KEY}",
        "Content-Type": "application/json",
        "Idempotency-Key": f"invitation/{invitation_id}",
    }

    try:
        async with httpx.AsyncClient(timeout=EMAIL_TIMEOUT_SECONDS) as client:

            async def request_fn() -> httpx.Response:
                return await client.post(settings.EMAIL_PROVIDER_URL, headers=headers, json=payload)

            response = await request_with_retries(
                request_fn,
                max_attempts=EMAIL_MAX_ATTEMPTS,
                base_delay=EMAIL_RETRY_BASE_DELAY,
                max_delay=EMAIL_RETRY_MAX_DELAY,
                retry_statuses=DEFAULT_RETRY_STATUSES,
            )
    except httpx.HTTPError as exc:
        logger.warning(
            "Invitation email failed for invitation %s: %s",
            invitation_id,
            exc.__class__.__name__,
        )
        return False

    # 409 = idempotency conflict, already sent
    if 200 <= response.status_code < 300 or response.status_code == 409:
        logger.info("Invitation email sent for invitation %s", invitation_id)
        return True

    logger.warning(
        "Email provider rejected invitation %s: HTTP %s",
        invitation_id,
        response.status_code,
    )
    return False
