"""Share links - management (owner/admin) and the public token lookup."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_db, require_admin, require_csrf_header
from tenant_access.core.rate_limit import limiter, share_rate_limit
from tenant_access.db.enums import ShareResourceType, ShareTokenStatus
from tenant_access.db.models import ShareLink
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import share_link_service


router = APIRouter(prefix="/share-links", tags=["Share Links"])
public_router = APIRouter(prefix="/share", tags=["Share Links"])


# =============================================================================
# Schemas
# =============================================================================

class ShareLinkCreate(BaseModel):
    resource_type: ShareResourceType
    resource_id: UUID
    expires_in_days: int | None = Field(default=None, ge=1)
    permissions: dict[str, Any] | None = None


class ShareLinkRead(BaseModel):
    id: UUID
    resource_type: ShareResourceType
    resource_id: UUID
    permissions: dict[str, Any]
    expires_at: datetime | None
    revoked_at: datetime | None
    access_count: int
    last_accessed_at: datetime | None
    created_by_member_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ShareLinkCreatedRead(ShareLinkRead):
    # Only returned here; the server keeps a digest
    token: str
    share_url: str


class SharedResourceRead(BaseModel):
    resource_type: ShareResourceType
    resource_id: UUID
    permissions: dict[str, Any]
    expires_at: datetime | None


def _created_read(created: share_link_service.ShareLinkCreated) -> ShareLinkCreatedRead:
    base = ShareLinkRead.model_validate(created.link).model_dump()
    return ShareLinkCreatedRead(**base, token=created.token, share_url=created.share_url)


# =============================================================================
# Management (owner/admin)
# =============================================================================

@router.post(
    "",
    response_model=ShareLinkCreatedRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_share_link(
    data: ShareLinkCreate,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    created = share_link_service.create_share_link(
        db,
        session.org_id,
        session.member_id,
        data.resource_type,
        data.resource_id,
        expires_in_days=data.expires_in_days,
        permissions=data.permissions,
    )
    return _created_read(created)


@router.get("", response_model=list[ShareLinkRead])
def list_share_links(
    resource_type: ShareResourceType | None = None,
    resource_id: UUID | None = None,
    include_revoked: bool = False,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return share_link_service.list_share_links(
        db, session.org_id, resource_type, resource_id, include_revoked
    )


@router.get("/{share_link_id}", response_model=ShareLinkRead)
def read_share_link(
    share_link_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return share_link_service.get_share_link(db, session.org_id, share_link_id)


@router.post(
    "/{share_link_id}/revoke",
    response_model=ShareLinkRead,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_share_link(
    share_link_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Idempotent: revoking twice returns the same revoked link."""
    return share_link_service.revoke_share_link(db, session.org_id, session.member_id, share_link_id)


# =============================================================================
# Public lookup
# =============================================================================

_STATUS_CODES = {
    ShareTokenStatus.NOT_FOUND: 404,
    ShareTokenStatus.REVOKED: 410,
    ShareTokenStatus.EXPIRED: 410,
}


@public_router.get("/{token}", response_model=SharedResourceRead)
@limiter.limit(share_rate_limit)
def resolve_share_token(request: Request, token: str, db: Session = Depends(get_db)):
    """
    Resolve a share token to the resource it exposes.

    404 for unknown tokens, 410 for revoked or expired ones.
    """
    result = share_link_service.validate_share_token(db, token, request=request)
    if not result.is_valid:
        return JSONResponse(
            status_code=_STATUS_CODES[result.status],
            content={"detail": "Share link is not available", "code": result.status.value},
        )
    link: ShareLink = result.link
    return SharedResourceRead(
        resource_type=ShareResourceType(link.resource_type),
        resource_id=link.resource_id,
        permissions=link.permissions or {},
        expires_at=link.expires_at,
    )
