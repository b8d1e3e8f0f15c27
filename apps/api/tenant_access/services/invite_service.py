"""Invitation management service.

Invitations are single-use. Accepting and revoking are both compare-and-set
updates on status = 'pending', so an accept racing a revoke has exactly
one winner. Only the token's SHA-256 digest is stored.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from tenant_access.core.catalog import parse_role
from tenant_access.core.config import settings
from tenant_access.core.exceptions import ConflictError, ExpiredError, InvalidInputError, NotFoundError
from tenant_access.core.security import generate_token, hash_token
from tenant_access.db.enums import AuditActionType, InvitationStatus, MemberStatus, Role
from tenant_access.db.models import Invitation, Member
from tenant_access.db.types import utcnow
from tenant_access.services import audit_service, member_service, permission_service

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class InvitationCreated:
    invitation: Invitation
    token: str


def normalize_email(email: str) -> str:
    value = (email or "").strip().lower()
    if len(value) > 255 or not EMAIL_PATTERN.match(value):
        raise InvalidInputError("Invalid email address", field="email")
    return value


def get_invitation_status(invitation: Invitation) -> Literal["pending", "accepted", "expired", "revoked"]:
    """Stored status, with 'expired' derived for pending invitations past their deadline."""
    if invitation.status == InvitationStatus.PENDING.value and invitation.expires_at <= utcnow():
        return "expired"
    return invitation.status


# =============================================================================
# Queries
# =============================================================================

def get_invitation(db: Session, org_id: uuid.UUID, invitation_id: uuid.UUID) -> Invitation:
    invitation = db.query(Invitation).filter(
        Invitation.id == invitation_id,
        Invitation.organization_id == org_id,
    ).first()
    if not invitation:
        raise NotFoundError("Invitation not found")
    return invitation


def get_invitation_by_token(db: Session, token: str) -> Invitation | None:
    if not token:
        return None
    return db.query(Invitation).filter(Invitation.token_hash == hash_token(token)).first()


def list_invitations(db: Session, org_id: uuid.UUID, limit: int = 100) -> list[Invitation]:
    """All invitations including accepted/revoked, newest first."""
    return db.query(Invitation).filter(
        Invitation.organization_id == org_id,
    ).order_by(Invitation.created_at.desc()).limit(limit).all()


def _pending_filter(org_id: uuid.UUID):
    return (
        Invitation.organization_id == org_id,
        Invitation.status == InvitationStatus.PENDING.value,
        Invitation.expires_at > utcnow(),
    )


def list_pending_invitations(db: Session, org_id: uuid.UUID) -> list[Invitation]:
    return db.query(Invitation).filter(
        *_pending_filter(org_id)
    ).order_by(Invitation.created_at.desc()).all()


def count_pending_invitations(db: Session, org_id: uuid.UUID) -> int:
    return db.query(func.count(Invitation.id)).filter(*_pending_filter(org_id)).scalar() or 0


# =============================================================================
# Lifecycle
# =============================================================================

def create_invitation(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    email: str,
    role: Role | str,
) -> InvitationCreated:
    """
    Create a pending invitation.

    Raises:
        InvalidInputError: bad email or role
        ConflictError: already a member, already invited, or too many pending invitations
        ForbiddenError: actor is not an owner/admin
    """
    email = normalize_email(email)
    role = parse_role(role)
    actor = member_service.require_manager(db, org_id, actor_member_id)

    existing_member = db.query(Member.id).filter(
        Member.organization_id == org_id,
        func.lower(Member.email) == email,
    ).first()
    if existing_member:
        raise ConflictError("User is already a member of this organization")

    existing_invite = db.query(Invitation.id).filter(
        *_pending_filter(org_id),
        Invitation.email == email,
    ).first()
    if existing_invite:
        raise ConflictError("A pending invitation already exists for this email")

    if count_pending_invitations(db, org_id) >= settings.MAX_PENDING_INVITES_PER_ORG:
        raise ConflictError(
            f"Maximum of {settings.MAX_PENDING_INVITES_PER_ORG} pending invitations reached"
        )

    token = generate_token()
    try:
        invitation = Invitation(
            organization_id=org_id,
            email=email,
            role=role.value,
            token_hash=hash_token(token),
            status=InvitationStatus.PENDING.value,
            invited_by_member_id=actor.id,
            expires_at=utcnow() + timedelta(days=settings.INVITE_EXPIRY_DAYS),
        )
        db.add(invitation)
        db.flush()
        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.MEMBER_INVITED,
            actor_member_id=actor.id,
            resource_type="invitation",
            resource_id=invitation.id,
            meta={"email": audit_service.hash_email(email), "role": role.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Invitation %s created (role=%s)", invitation.id, role.value)
    return InvitationCreated(invitation=invitation, token=token)


def accept_invitation(
    db: Session,
    token: str,
    user_id: uuid.UUID,
    display_name: str | None = None,
) -> Member:
    """
    Turn a pending invitation into an active member with the role's default pack.

    Raises:
        NotFoundError: unknown token
        ExpiredError: invitation past its deadline
        ConflictError: already accepted or revoked, or user already a member
    """
    invitation = get_invitation_by_token(db, token)
    if invitation is None:
        raise NotFoundError("Invitation not found")

    if member_service.get_member_for_user(db, invitation.organization_id, user_id):
        raise ConflictError("User is already a member of this organization")

    now = utcnow()
    try:
        result = db.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation.id,
                Invitation.status == InvitationStatus.PENDING.value,
                Invitation.expires_at > now,
            )
            .values(status=InvitationStatus.ACCEPTED.value, accepted_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            db.refresh(invitation)
            if invitation.status == InvitationStatus.PENDING.value:
                raise ExpiredError("Invitation has expired")
            raise ConflictError(f"Invitation is already {invitation.status}")

        member = Member(
            organization_id=invitation.organization_id,
            user_id=user_id,
            email=invitation.email,
            display_name=display_name,
            role=invitation.role,
            status=MemberStatus.ACTIVE.value,
            is_owner=False,
        )
        db.add(member)
        db.flush()
        permission_service.reset_to_role_defaults(db, member)
        invitation.accepted_member_id = member.id

        audit_service.record_event(
            db=db,
            org_id=invitation.organization_id,
            action_type=AuditActionType.MEMBER_JOINED,
            actor_member_id=member.id,
            resource_type="member",
            resource_id=member.id,
            meta={"invitation_id": invitation.id, "role": invitation.role},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(invitation)
    logger.info("Invitation %s accepted by member %s", invitation.id, member.id)
    return member


def revoke_invitation(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    invitation_id: uuid.UUID,
) -> Invitation:
    """
    Revoke a pending invitation. Repeating the call is a no-op.

    Raises:
        ConflictError: the invitation was already accepted
    """
    actor = member_service.require_manager(db, org_id, actor_member_id)
    invitation = get_invitation(db, org_id, invitation_id)

    try:
        result = db.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation.id,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .values(status=InvitationStatus.REVOKED.value, revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            audit_service.record_event(
                db=db,
                org_id=org_id,
                action_type=AuditActionType.MEMBER_INVITATION_REVOKED,
                actor_member_id=actor.id,
                resource_type="invitation",
                resource_id=invitation.id,
                meta={"email": audit_service.hash_email(invitation.email)},
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(invitation)
    if invitation.status == InvitationStatus.ACCEPTED.value:
        raise ConflictError("Invitation was already accepted")
    return invitation


def mark_email_bounced(db: Session, email: str, org_id: uuid.UUID | None = None) -> int:
    """Flag pending invitations to ``email`` as undeliverable. Returns rows touched."""
    stmt = (
        update(Invitation)
        .where(
            Invitation.email == (email or "").strip().lower(),
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .values(email_bounced=True)
        .execution_options(synchronize_session=False)
    )
    if org_id is not None:
        stmt = stmt.where(Invitation.organization_id == org_id)
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount
