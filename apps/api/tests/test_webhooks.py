"""Email delivery feedback webhook."""

import json
import time

import pytest

from tenant_access.core.config import settings
from tenant_access.db.models import Invitation
from tenant_access.services import invite_service
from tenant_access.services.webhooks.email_feedback import sign_payload, verify_svix_signature


def _signed_headers(body: bytes, msg_id: str = "msg_1", timestamp: int | None = None) -> dict:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = sign_payload(body, msg_id, ts, settings.EMAIL_WEBHOOK_SECRET)
    return {
        "svix-id": msg_id,
        "svix-timestamp": ts,
        "svix-signature": f"v1,{signature}",
        "content-type": "application/json",
    }


def test_signature_roundtrip():
    body = b'{"type": "email.sent"}'
    headers = _signed_headers(body)
    assert verify_svix_signature(body, headers, settings.EMAIL_WEBHOOK_SECRET) is True
    assert verify_svix_signature(body + b" ", headers, settings.EMAIL_WEBHOOK_SECRET) is False


def test_signature_rejects_stale_timestamp():
    body = b"{}"
    headers = _signed_headers(body, timestamp=int(time.time()) - 3600)
    assert verify_svix_signature(body, headers, settings.EMAIL_WEBHOOK_SECRET) is False


def test_signature_accepts_any_listed_signature():
    body = b"{}"
    headers = _signed_headers(body)
    headers["svix-signature"] = f"v1,bogus {headers['svix-signature']}"
    assert verify_svix_signature(body, headers, settings.EMAIL_WEBHOOK_SECRET) is True


@pytest.mark.asyncio
async def test_bounce_flags_pending_invitation(client, db, test_org, owner):
    created = invite_service.create_invitation(db, test_org.id, owner.id, "bounce@test.com", "member")
    body = json.dumps({"type": "email.bounced", "data": {"to": ["Bounce@Test.com"]}}).encode()

    response = await client.post("/webhooks/email", content=body, headers=_signed_headers(body))

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "flagged": 1}
    db.expire_all()
    assert db.get(Invitation, created.invitation.id).email_bounced is True


@pytest.mark.asyncio
async def test_bad_signature_rejected(client):
    body = json.dumps({"type": "email.bounced", "data": {"to": "x@test.com"}}).encode()
    headers = _signed_headers(body)
    headers["svix-signature"] = "v1,AAAA"

    response = await client.post("/webhooks/email", content=body, headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_other_events_ignored(client):
    body = json.dumps({"type": "email.delivered", "data": {"to": ["x@test.com"]}}).encode()
    response = await client.post("/webhooks/email", content=body, headers=_signed_headers(body))
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_unknown_provider(client):
    response = await client.post("/webhooks/nope", content=b"{}")
    assert response.status_code == 404
