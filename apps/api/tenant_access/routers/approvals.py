"""Approvals router - sign-off requests and their single decision."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenant_access.core.deps import (
    get_current_member,
    get_db,
    require_csrf_header,
    require_project_access,
)
from tenant_access.core.exceptions import ForbiddenError
from tenant_access.db.enums import Action, ApprovalStatus, Module
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import approval_service, project_access_service


router = APIRouter(prefix="/approvals", tags=["Approvals"])
project_router = APIRouter(prefix="/projects/{project_id}/approvals", tags=["Approvals"])


# =============================================================================
# Schemas
# =============================================================================

class ApprovalCreate(BaseModel):
    resource_type: str = Field(min_length=1, max_length=50)
    resource_id: UUID
    project_id: UUID | None = None
    comment: str | None = None


class ApprovalDecision(BaseModel):
    decision: str
    comment: str | None = None


class ApprovalRead(BaseModel):
    id: UUID
    project_id: UUID | None
    resource_type: str
    resource_id: UUID
    status: ApprovalStatus
    requested_by_member_id: UUID | None
    decided_by_member_id: UUID | None
    comment: str | None
    created_at: datetime
    decided_at: datetime | None

    model_config = {"from_attributes": True}


def _require_visible(db: Session, session: MemberSession, project_id: UUID | None) -> None:
    """Org-wide listings are for managers; a project listing needs project read access."""
    if project_id is None:
        if not session.is_manager:
            raise ForbiddenError("Access denied")
        return
    project_access_service.authorize(
        db, session.org_id, session.member_id, Module.PROJECTS, Action.READ, project_id=project_id
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "",
    response_model=ApprovalRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def request_approval(
    data: ApprovalCreate,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    return approval_service.request_approval(
        db,
        session.org_id,
        session.member_id,
        data.resource_type,
        data.resource_id,
        project_id=data.project_id,
        comment=data.comment,
    )


@router.get("", response_model=list[ApprovalRead])
def list_approvals(
    project_id: UUID | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=approval_service.MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    _require_visible(db, session, project_id)
    return approval_service.list_approvals(
        db,
        session.org_id,
        project_id=project_id,
        resource_type=resource_type,
        resource_id=resource_id,
        status=status,
        limit=limit,
    )


@router.get("/{approval_id}", response_model=ApprovalRead)
def read_approval(
    approval_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    """404 for approvals on projects the caller cannot read, exactly as for unknown ids."""
    return approval_service.get_visible_approval(db, session.org_id, session.member_id, approval_id)


@router.post(
    "/{approval_id}/decision",
    response_model=ApprovalRead,
    dependencies=[Depends(require_csrf_header)],
)
def decide_approval(
    approval_id: UUID,
    data: ApprovalDecision,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    """409 when the approval was already decided, even by a concurrent request."""
    return approval_service.decide_approval(
        db, session.org_id, session.member_id, approval_id, data.decision, data.comment
    )


@project_router.get("", response_model=list[ApprovalRead])
def list_project_pending(
    project_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_project_access(Module.PROJECTS, Action.READ)),
):
    """Pending approvals on one project."""
    return approval_service.list_pending_for_project(db, session.org_id, project_id)
