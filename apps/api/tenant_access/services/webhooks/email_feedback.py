"""Delivery feedback webhook for invitation emails (Resend/Svix format)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from tenant_access.core.config import settings
from tenant_access.services import invite_service

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 256 * 1024
SIGNATURE_TOLERANCE_SECONDS = 300
UNDELIVERABLE_EVENTS = frozenset({"email.bounced", "email.complained"})


def _decode_secret(secret: str) -> bytes | None:
    """Svix secrets are 'whsec_' + base64; anything else is used as raw bytes."""
    if not secret.startswith("whsec_"):
        return secret.encode("utf-8")
    encoded = secret[len("whsec_"):]
    encoded += "=" * (-len(encoded) % 4)
    for decoder in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            decoded = decoder(encoded)
        except (binascii.Error, ValueError):
            continue
        if decoded:
            return decoded
    return None


def sign_payload(body: bytes, msg_id: str, timestamp: str, secret: str) -> str:
    """Base64 HMAC-SHA256 over '<id>.<timestamp>.<body>'."""
    secret_bytes = _decode_secret(secret)
    if secret_bytes is None:
        raise ValueError("Malformed whsec_ secret")
    signed_payload = f"{msg_id}.{timestamp}.{body.decode('utf-8')}"
    digest = hmac.new(secret_bytes, signed_payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_svix_signature(body: bytes, headers: dict, secret: str, now: float | None = None) -> bool:
    """
    Verify a Svix signature.

    Headers: svix-id, svix-timestamp, svix-signature ("v1,<sig> v1,<sig2>").
    Stale timestamps (more than 5 minutes off) are rejected to prevent replay.
    """
    msg_id = headers.get("svix-id", "")
    timestamp = headers.get("svix-timestamp", "")
    signature_header = headers.get("svix-signature", "")
    if not msg_id or not timestamp or not signature_header:
        return False

    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    if abs(current - ts) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    try:
        expected = sign_payload(body, msg_id, timestamp, secret)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Email webhook: cannot compute signature (bad secret or body encoding)")
        return False

    for entry in signature_header.split(" "):
        version, _, sig = entry.partition(",")
        if version == "v1" and sig and hmac.compare_digest(sig, expected):
            return True
    return False


def _recipients(data: dict) -> list[str]:
    to = data.get("to") or []
    if isinstance(to, str):
        to = [to]
    return [addr for addr in to if isinstance(addr, str) and addr]


class EmailFeedbackWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs) -> dict:
        """
        Receive delivery events for invitation emails.

        - email.bounced / email.complained: flag pending invitations to the recipient
        - anything else: acknowledged and ignored

        Security:
        - Signature verified BEFORE parsing
        - Unconfigured secret rejects every request
        """
        body = await request.body()
        if len(body) > MAX_PAYLOAD_BYTES:
            logger.warning("Email webhook payload too large")
            raise HTTPException(status_code=413, detail="Payload too large")

        secret = settings.EMAIL_WEBHOOK_SECRET
        headers = {k.lower(): v for k, v in request.headers.items()}
        if not secret or not verify_svix_signature(body, headers, secret):
            logger.warning("Email webhook invalid signature")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("Email webhook invalid JSON")
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        event_type = payload.get("type")
        if event_type not in UNDELIVERABLE_EVENTS:
            return {"status": "ignored"}

        data = payload.get("data") or {}
        flagged = 0
        for email in _recipients(data if isinstance(data, dict) else {}):
            flagged += invite_service.mark_email_bounced(db, email)

        logger.info("Email webhook %s flagged %d invitation(s)", event_type, flagged)
        return {"status": "ok", "flagged": flagged}
