"""Member service - lookups, role changes and removal.

Owners are immune to role changes and removal. Role changes reset the
member's explicit permissions to the new role's default pack.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from tenant_access.core.catalog import parse_role
from tenant_access.core.exceptions import ForbiddenError, NotFoundError
from tenant_access.db.enums import AuditActionType, MemberStatus, Role
from tenant_access.db.models import Member, ModuleView, Permission, ProjectAccessGrant
from tenant_access.services import audit_service

logger = logging.getLogger(__name__)


# =============================================================================
# Lookups
# =============================================================================

def get_member(db: Session, org_id: UUID, member_id: UUID) -> Member:
    """Member in the given organization; NotFound for other tenants' members."""
    member = db.query(Member).filter(
        Member.id == member_id,
        Member.organization_id == org_id,
    ).first()
    if not member:
        raise NotFoundError("Member not found")
    return member


def lock_member(db: Session, org_id: UUID, member_id: UUID) -> Member:
    """Load the member row with FOR UPDATE; serializes writers on one member's capabilities."""
    member = db.query(Member).filter(
        Member.id == member_id,
        Member.organization_id == org_id,
    ).with_for_update().first()
    if not member:
        raise NotFoundError("Member not found")
    return member


def get_member_for_user(db: Session, org_id: UUID, user_id: UUID) -> Member | None:
    return db.query(Member).filter(
        Member.organization_id == org_id,
        Member.user_id == user_id,
    ).first()


def list_members(
    db: Session,
    org_id: UUID,
    role: Role | None = None,
    status: MemberStatus | None = None,
) -> list[Member]:
    query = db.query(Member).filter(Member.organization_id == org_id)
    if role is not None:
        query = query.filter(Member.role == role.value)
    if status is not None:
        query = query.filter(Member.status == status.value)
    return query.order_by(Member.created_at.asc()).all()


def is_manager(member: Member) -> bool:
    """Owner or admin: may manage members, packs, views and share links."""
    return member.is_owner or member.role == Role.ADMIN.value


def require_manager(db: Session, org_id: UUID, actor_member_id: UUID) -> Member:
    actor = get_member(db, org_id, actor_member_id)
    if actor.status != MemberStatus.ACTIVE.value or not is_manager(actor):
        raise ForbiddenError("Only owners and admins can manage access")
    return actor


def check_can_modify(actor: Member, target: Member) -> None:
    """
    Raise ForbiddenError unless ``actor`` may change ``target``'s access.

    Nobody modifies the owner; non-owners cannot modify themselves.
    """
    if target.is_owner:
        raise ForbiddenError("The organization owner cannot be modified")
    if actor.id == target.id and not actor.is_owner:
        raise ForbiddenError("Cannot modify your own access")


# =============================================================================
# Mutations
# =============================================================================

def change_role(
    db: Session,
    org_id: UUID,
    actor_member_id: UUID,
    member_id: UUID,
    role: Role | str,
) -> Member:
    """
    Change a member's role and reset their permissions to the role pack.

    The reset replaces every explicit Permission and ModuleView row.
    """
    # Import here to avoid circular imports
    from tenant_access.services import permission_service

    new_role = parse_role(role)
    actor = require_manager(db, org_id, actor_member_id)
    try:
        member = lock_member(db, org_id, member_id)
        check_can_modify(actor, member)

        old_role = member.role
        member.role = new_role.value
        permission_service.reset_to_role_defaults(db, member)

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.MEMBER_ROLE_CHANGED,
            actor_member_id=actor.id,
            resource_type="member",
            resource_id=member.id,
            meta={"before": old_role, "after": new_role.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Member %s role changed %s -> %s", member.id, old_role, new_role.value)
    return member


def remove_member(db: Session, org_id: UUID, actor_member_id: UUID, member_id: UUID) -> None:
    """Delete a member with their permissions, views and project grants."""
    actor = require_manager(db, org_id, actor_member_id)
    try:
        member = lock_member(db, org_id, member_id)
        check_can_modify(actor, member)

        db.query(Permission).filter(Permission.member_id == member.id).delete(synchronize_session=False)
        db.query(ModuleView).filter(ModuleView.member_id == member.id).delete(synchronize_session=False)
        db.query(ProjectAccessGrant).filter(
            ProjectAccessGrant.member_id == member.id
        ).delete(synchronize_session=False)

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.MEMBER_REMOVED,
            actor_member_id=actor.id,
            resource_type="member",
            resource_id=member.id,
            meta={
                "role": member.role,
                "email": audit_service.hash_email(member.email),
            },
        )
        db.delete(member)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Member %s removed from org %s", member_id, org_id)
