"""Audit trail router (owner/admin, read-only)."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tenant_access.core.config import settings
from tenant_access.core.deps import get_db, require_admin
from tenant_access.db.enums import AuditActionType
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import audit_service


router = APIRouter(prefix="/audit", tags=["Audit"])


class AuditEventRead(BaseModel):
    id: UUID
    actor_member_id: UUID | None
    action_type: str
    resource_type: str | None
    resource_id: UUID | None
    meta: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}


@router.get("", response_model=list[AuditEventRead])
def list_audit_events(
    action_type: AuditActionType | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    since: datetime | None = None,
    limit: int = Query(50, ge=1, le=settings.AUDIT_QUERY_MAX_LIMIT),
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Newest first. There is no write endpoint; the trail is append-only."""
    return audit_service.query_events(
        db,
        session.org_id,
        action_type=action_type,
        resource_type=resource_type,
        resource_id=resource_id,
        since=since,
        limit=limit,
    )
