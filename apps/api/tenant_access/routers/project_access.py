"""Project access router - guest grants on individual projects."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_current_member, get_db, require_admin, require_csrf_header
from tenant_access.db.enums import ProjectAccessLevel
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import member_service, project_access_service


router = APIRouter(prefix="/project-access", tags=["Project Access"])


# =============================================================================
# Schemas
# =============================================================================

class GrantRead(BaseModel):
    id: UUID
    member_id: UUID
    project_id: UUID
    access_level: ProjectAccessLevel
    granted_by_member_id: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class GrantWrite(BaseModel):
    access_level: ProjectAccessLevel = ProjectAccessLevel.READ


class AccessibleProjectsRead(BaseModel):
    # None: the caller is not project-scoped and sees every project
    project_ids: list[UUID] | None


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/me", response_model=AccessibleProjectsRead)
def my_projects(
    min_level: ProjectAccessLevel = ProjectAccessLevel.READ,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    member = member_service.get_member(db, session.org_id, session.member_id)
    ids = project_access_service.list_accessible_project_ids(db, member, min_level)
    return AccessibleProjectsRead(project_ids=sorted(ids, key=str) if ids is not None else None)


@router.get("/members/{member_id}", response_model=list[GrantRead])
def list_member_grants(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return project_access_service.list_project_access(db, session.org_id, member_id)


@router.get("/projects/{project_id}", response_model=list[GrantRead])
def list_project_grants(
    project_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return project_access_service.list_project_grants(db, session.org_id, project_id)


@router.put(
    "/members/{member_id}/projects/{project_id}",
    response_model=GrantRead,
    dependencies=[Depends(require_csrf_header)],
)
def grant_access(
    member_id: UUID,
    project_id: UUID,
    data: GrantWrite,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Create or update a guest's grant on one project."""
    return project_access_service.grant_project_access(
        db, session.org_id, session.member_id, member_id, project_id, data.access_level
    )


@router.delete(
    "/members/{member_id}/projects/{project_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_access(
    member_id: UUID,
    project_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    project_access_service.revoke_project_access(
        db, session.org_id, session.member_id, member_id, project_id
    )
