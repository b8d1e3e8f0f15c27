"""Share link service - unauthenticated read access to one resource.

Tokens are 32 random bytes (URL-safe base64). Only their SHA-256 digest is
stored, so a leaked database does not leak working links. The raw token is
returned exactly once, at creation.

Validation order: not_found -> revoked -> expired -> valid.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fastapi import Request
from sqlalchemy import update
from sqlalchemy.orm import Session

from tenant_access.core.catalog import SUBVIEW_REGISTRY
from tenant_access.core.config import settings
from tenant_access.core.exceptions import InvalidInputError, NotFoundError
from tenant_access.core.security import generate_token, hash_token
from tenant_access.db.enums import AuditActionType, ShareResourceType, ShareTokenStatus
from tenant_access.db.models import ShareLink
from tenant_access.db.types import utcnow
from tenant_access.services import audit_service, member_service

logger = logging.getLogger(__name__)

DEFAULT_SHARE_PERMISSIONS = {"read": True}
ALLOWED_PERMISSION_KEYS = frozenset({"read", "subviews"})
MAX_TOKEN_LENGTH = 256


@dataclass(frozen=True)
class ShareLinkCreated:
    """Creation result. ``token`` is the only copy of the raw secret."""
    link: ShareLink
    token: str
    share_url: str

    @property
    def id(self) -> uuid.UUID:
        return self.link.id

    @property
    def expires_at(self) -> datetime | None:
        return self.link.expires_at


@dataclass(frozen=True)
class ShareTokenValidation:
    status: ShareTokenStatus
    link: ShareLink | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == ShareTokenStatus.VALID


# =============================================================================
# Validation helpers
# =============================================================================

def _parse_resource_type(value: ShareResourceType | str) -> ShareResourceType:
    if isinstance(value, ShareResourceType):
        return value
    if not isinstance(value, str) or not ShareResourceType.has_value(value):
        raise InvalidInputError(f"Unknown resource type: {value!r}", field="resource_type")
    return ShareResourceType(value)


def _resolve_expiry(expires_in_days: int | None) -> datetime | None:
    if expires_in_days is None:
        expires_in_days = settings.SHARE_LINK_DEFAULT_EXPIRY_DAYS
    if expires_in_days is None:
        return None
    if isinstance(expires_in_days, bool) or not isinstance(expires_in_days, int):
        raise InvalidInputError("expires_in_days must be an integer", field="expires_in_days")
    if not 1 <= expires_in_days <= settings.SHARE_LINK_MAX_EXPIRY_DAYS:
        raise InvalidInputError(
            f"expires_in_days must be between 1 and {settings.SHARE_LINK_MAX_EXPIRY_DAYS}",
            field="expires_in_days",
        )
    return utcnow() + timedelta(days=expires_in_days)


def _normalize_permissions(permissions: dict[str, Any] | None) -> dict[str, Any]:
    if permissions is None:
        return dict(DEFAULT_SHARE_PERMISSIONS)
    if not isinstance(permissions, dict):
        raise InvalidInputError("permissions must be an object", field="permissions")
    unknown = set(permissions) - ALLOWED_PERMISSION_KEYS
    if unknown:
        raise InvalidInputError(
            f"Unknown share permission keys: {sorted(unknown)}", field="permissions"
        )
    result: dict[str, Any] = {"read": bool(permissions.get("read", True))}
    if "subviews" in permissions:
        subviews = permissions["subviews"]
        if not isinstance(subviews, list) or not all(isinstance(s, str) for s in subviews):
            raise InvalidInputError("subviews must be a list of subview keys", field="permissions")
        for key in subviews:
            if key not in SUBVIEW_REGISTRY:
                raise InvalidInputError(f"Unknown subview: {key!r}", field="permissions")
        result["subviews"] = sorted(set(subviews))
    return result


def build_share_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/share/{token}"


# =============================================================================
# Operations
# =============================================================================

def create_share_link(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    resource_type: ShareResourceType | str,
    resource_id: uuid.UUID,
    expires_in_days: int | None = None,
    permissions: dict[str, Any] | None = None,
) -> ShareLinkCreated:
    """
    Create a share link for one resource.

    Raises:
        InvalidInputError: bad resource type, expiry or permissions
        ForbiddenError: actor is not an owner/admin
    """
    resource_type = _parse_resource_type(resource_type)
    expires_at = _resolve_expiry(expires_in_days)
    link_permissions = _normalize_permissions(permissions)
    actor = member_service.require_manager(db, org_id, actor_member_id)

    token = generate_token()
    try:
        link = ShareLink(
            organization_id=org_id,
            resource_type=resource_type.value,
            resource_id=resource_id,
            token_hash=hash_token(token),
            permissions=link_permissions,
            expires_at=expires_at,
            created_by_member_id=actor.id,
        )
        db.add(link)
        db.flush()
        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.SHARE_CREATED,
            actor_member_id=actor.id,
            resource_type=resource_type.value,
            resource_id=resource_id,
            meta={"share_link_id": link.id, "expires_at": expires_at},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Share link %s created for %s %s", link.id, resource_type.value, resource_id)
    return ShareLinkCreated(link=link, token=token, share_url=build_share_url(token))


def validate_share_token(
    db: Session,
    token: str,
    request: Request | None = None,
) -> ShareTokenValidation:
    """
    Resolve a raw token to its link.

    Only a valid result carries the link. A valid lookup increments the
    access counter atomically in SQL and records share.accessed.
    """
    if not token or len(token) > MAX_TOKEN_LENGTH:
        return ShareTokenValidation(ShareTokenStatus.NOT_FOUND)

    link = db.query(ShareLink).filter(ShareLink.token_hash == hash_token(token)).first()
    if link is None:
        return ShareTokenValidation(ShareTokenStatus.NOT_FOUND)
    if link.revoked_at is not None:
        return ShareTokenValidation(ShareTokenStatus.REVOKED)
    now = utcnow()
    if link.expires_at is not None and link.expires_at <= now:
        return ShareTokenValidation(ShareTokenStatus.EXPIRED)

    try:
        result = db.execute(
            update(ShareLink)
            .where(ShareLink.id == link.id, ShareLink.revoked_at.is_(None))
            .values(access_count=ShareLink.access_count + 1, last_accessed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Revoked between the read and the increment
            db.rollback()
            return ShareTokenValidation(ShareTokenStatus.REVOKED)

        audit_service.record_event(
            db=db,
            org_id=link.organization_id,
            action_type=AuditActionType.SHARE_ACCESSED,
            actor_member_id=None,
            resource_type=link.resource_type,
            resource_id=link.resource_id,
            meta={"share_link_id": link.id},
            request=request,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(link)
    return ShareTokenValidation(ShareTokenStatus.VALID, link)


def get_share_link(db: Session, org_id: uuid.UUID, share_link_id: uuid.UUID) -> ShareLink:
    link = db.query(ShareLink).filter(
        ShareLink.id == share_link_id,
        ShareLink.organization_id == org_id,
    ).first()
    if not link:
        raise NotFoundError("Share link not found")
    return link


def list_share_links(
    db: Session,
    org_id: uuid.UUID,
    resource_type: ShareResourceType | str | None = None,
    resource_id: uuid.UUID | None = None,
    include_revoked: bool = False,
) -> list[ShareLink]:
    query = db.query(ShareLink).filter(ShareLink.organization_id == org_id)
    if resource_type is not None:
        query = query.filter(ShareLink.resource_type == _parse_resource_type(resource_type).value)
    if resource_id is not None:
        query = query.filter(ShareLink.resource_id == resource_id)
    if not include_revoked:
        query = query.filter(ShareLink.revoked_at.is_(None))
    return query.order_by(ShareLink.created_at.desc()).all()


def revoke_share_link(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    share_link_id: uuid.UUID,
) -> ShareLink:
    """
    Revoke a link. Revoking an already revoked link is a no-op success.

    Only the call that actually flips revoked_at records share.revoked.
    """
    actor = member_service.require_manager(db, org_id, actor_member_id)
    link = get_share_link(db, org_id, share_link_id)

    try:
        result = db.execute(
            update(ShareLink)
            .where(
                ShareLink.id == link.id,
                ShareLink.organization_id == org_id,
                ShareLink.revoked_at.is_(None),
            )
            .values(revoked_at=utcnow(), revoked_by_member_id=actor.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            audit_service.record_event(
                db=db,
                org_id=org_id,
                action_type=AuditActionType.SHARE_REVOKED,
                actor_member_id=actor.id,
                resource_type=link.resource_type,
                resource_id=link.resource_id,
                meta={"share_link_id": link.id},
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(link)
    if result.rowcount:
        logger.info("Share link %s revoked", link.id)
    return link
