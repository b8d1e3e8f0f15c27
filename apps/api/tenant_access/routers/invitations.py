"""Invitation endpoints: manage invitations (owner/admin) and accept them."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_db, get_token_payload, require_admin, require_csrf_header
from tenant_access.db.enums import Role
from tenant_access.db.models import Invitation
from tenant_access.schemas.auth import MemberSession, TokenPayload
from tenant_access.services import email_service, invite_service, organization_service


router = APIRouter(prefix="/invitations", tags=["Invitations"])


# =============================================================================
# Schemas
# =============================================================================

class InvitationCreate(BaseModel):
    email: EmailStr
    role: Role = Role.MEMBER


class InvitationRead(BaseModel):
    id: UUID
    email: str
    role: Role
    status: str  # pending, accepted, revoked, expired
    email_bounced: bool
    invited_by_member_id: UUID | None
    expires_at: datetime
    created_at: datetime


class InvitationListResponse(BaseModel):
    invitations: list[InvitationRead]
    pending_count: int


class InvitationAccept(BaseModel):
    token: str
    display_name: str | None = None


class AcceptedRead(BaseModel):
    member_id: UUID
    org_id: UUID
    role: Role


def _invitation_read(invitation: Invitation) -> InvitationRead:
    return InvitationRead(
        id=invitation.id,
        email=invitation.email,
        role=Role(invitation.role),
        status=invite_service.get_invitation_status(invitation),
        email_bounced=invitation.email_bounced,
        invited_by_member_id=invitation.invited_by_member_id,
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
    )


# =============================================================================
# Management (owner/admin)
# =============================================================================

@router.get("", response_model=InvitationListResponse)
def list_invitations(
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    invitations = invite_service.list_invitations(db, session.org_id)
    return InvitationListResponse(
        invitations=[_invitation_read(inv) for inv in invitations],
        pending_count=invite_service.count_pending_invitations(db, session.org_id),
    )


@router.post(
    "",
    response_model=InvitationRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_invitation(
    data: InvitationCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Create an invitation; the email goes out after the response, best-effort."""
    created = invite_service.create_invitation(
        db, session.org_id, session.member_id, data.email, data.role
    )
    org = organization_service.get_organization(db, session.org_id)
    background_tasks.add_task(
        email_service.send_invitation_email,
        invitation_id=str(created.invitation.id),
        to_email=created.invitation.email,
        org_name=org.name,
        role=created.invitation.role,
        token=created.token,
        inviter_name=session.display_name,
    )
    return _invitation_read(created.invitation)


@router.post(
    "/{invitation_id}/revoke",
    response_model=InvitationRead,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_invitation(
    invitation_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    invitation = invite_service.revoke_invitation(db, session.org_id, session.member_id, invitation_id)
    return _invitation_read(invitation)


# =============================================================================
# Acceptance (identity token, no membership yet)
# =============================================================================

@router.post("/accept", response_model=AcceptedRead, dependencies=[Depends(require_csrf_header)])
def accept_invitation(
    data: InvitationAccept,
    db: Session = Depends(get_db),
    payload: TokenPayload = Depends(get_token_payload),
):
    if not data.token:
        raise HTTPException(status_code=422, detail="token is required")
    member = invite_service.accept_invitation(db, data.token, payload.sub, data.display_name)
    return AcceptedRead(member_id=member.id, org_id=member.organization_id, role=Role(member.role))
