"""Audit logging service - append-only record of access changes.

Audit writes are a side channel: they run inside a SAVEPOINT so a failed
insert never takes the primary mutation down with it. Failures are logged
and counted instead.

Security guidelines:
- NEVER record tokens (share tokens, invitation tokens, JWTs)
- Hash emails in meta (use hash_email)
- Use IDs instead of raw data where possible
"""

import hashlib
import json
import logging
import threading
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_access.core.config import settings
from tenant_access.core.structured_logging import build_log_context
from tenant_access.db.enums import AuditActionType
from tenant_access.db.models import AuditEvent

logger = logging.getLogger(__name__)


class FailureCounter:
    """Process-wide monotonic counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value


AUDIT_WRITE_FAILURES = FailureCounter()


def hash_email(email: str) -> str:
    """Hash email for audit meta (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    return ua[:500] if ua else None


def _json_safe(meta: dict[str, Any] | None) -> dict[str, Any] | None:
    """UUIDs, datetimes and enums become strings so meta is valid JSON on every backend."""
    if meta is None:
        return None
    return json.loads(json.dumps(meta, sort_keys=True, default=str))


def record_event(
    db: Session,
    org_id: UUID,
    action_type: AuditActionType,
    actor_member_id: UUID | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    meta: dict[str, Any] | None = None,
    request: Request | None = None,
) -> AuditEvent | None:
    """
    Append an audit event to the caller's transaction.

    The caller's pending changes are flushed first, so errors in the primary
    mutation still propagate. Only the audit insert itself is guarded.

    Returns:
        The created event, or None if the write failed.
    """
    db.flush()

    details = dict(meta or {})
    if request is not None:
        details["ip"] = get_client_ip(request)
        details["user_agent"] = get_user_agent(request)

    entry = AuditEvent(
        organization_id=org_id,
        actor_member_id=actor_member_id,
        action_type=action_type.value,
        resource_type=resource_type,
        resource_id=resource_id,
        meta=_json_safe(details) if details else None,
    )
    try:
        with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        failures = AUDIT_WRITE_FAILURES.increment()
        logger.warning(
            "Audit write failed for %s (failures=%d)",
            action_type.value,
            failures,
            extra=build_log_context(
                member_id=actor_member_id,
                org_id=org_id,
                action_type=action_type.value,
            ),
            exc_info=True,
        )
        return None
    return entry


def query_events(
    db: Session,
    org_id: UUID,
    action_type: AuditActionType | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    since: datetime | None = None,
    limit: int = 50,
) -> list[AuditEvent]:
    """Newest-first audit events for one organization. ``limit`` is clamped to 1..AUDIT_QUERY_MAX_LIMIT."""
    limit = max(1, min(limit, settings.AUDIT_QUERY_MAX_LIMIT))

    query = db.query(AuditEvent).filter(AuditEvent.organization_id == org_id)
    if action_type is not None:
        query = query.filter(AuditEvent.action_type == action_type.value)
    if resource_type:
        query = query.filter(AuditEvent.resource_type == resource_type)
    if resource_id is not None:
        query = query.filter(AuditEvent.resource_id == resource_id)
    if since is not None:
        query = query.filter(AuditEvent.created_at >= since)

    return query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
