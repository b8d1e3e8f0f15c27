"""Security utilities for identity tokens and opaque bearer tokens."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from tenant_access.core.config import settings


# =============================================================================
# Session Token (issued by the identity provider)
# =============================================================================

def create_session_token(user_id: UUID, org_id: UUID, expires_hours: int | None = None) -> str:
    """
    Create signed session JWT.

    The identity provider normally issues these; the API only verifies them.
    Used by the CLI and tests. Always signs with the current secret.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "iat": now,
        "exp": now + timedelta(hours=expires_hours or settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"], options={"require": ["sub", "exp"]})
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Opaque tokens (share links, invitations)
# =============================================================================

def generate_token() -> str:
    """Generate cryptographically random token (32 bytes, URL-safe base64)."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest; the only form in which share tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
