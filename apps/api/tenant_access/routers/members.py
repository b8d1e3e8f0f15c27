"""Members router - list members, change roles, remove members."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_current_member, get_db, require_admin, require_csrf_header
from tenant_access.db.enums import MemberStatus, Role
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import member_service


router = APIRouter(prefix="/members", tags=["Members"])


# =============================================================================
# Schemas
# =============================================================================

class MemberRead(BaseModel):
    id: UUID
    user_id: UUID
    email: str
    display_name: str | None
    role: Role
    status: MemberStatus
    is_owner: bool
    permission_pack_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RoleUpdate(BaseModel):
    role: Role


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/me", response_model=MemberRead)
def read_me(
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    return member_service.get_member(db, session.org_id, session.member_id)


@router.get("", response_model=list[MemberRead])
def list_members(
    role: Role | None = None,
    status: MemberStatus | None = None,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """List organization members (owner/admin)."""
    return member_service.list_members(db, session.org_id, role=role, status=status)


@router.get("/{member_id}", response_model=MemberRead)
def read_member(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return member_service.get_member(db, session.org_id, member_id)


@router.patch(
    "/{member_id}/role",
    response_model=MemberRead,
    dependencies=[Depends(require_csrf_header)],
)
def change_role(
    member_id: UUID,
    data: RoleUpdate,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Change role; the member's permissions reset to the new role's pack."""
    return member_service.change_role(db, session.org_id, session.member_id, member_id, data.role)


@router.delete("/{member_id}", status_code=204, dependencies=[Depends(require_csrf_header)])
def remove_member(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    member_service.remove_member(db, session.org_id, session.member_id, member_id)
