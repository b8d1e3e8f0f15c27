"""Project scope guard - per-project access for guests.

Non-guests are never project-scoped. A guest may act on a project only with
a grant whose level satisfies the level the action requires.
"""

import logging
import uuid

from sqlalchemy.orm import Session

from tenant_access.core.catalog import ACTION_ACCESS_LEVEL, parse_access_level, parse_action, parse_module
from tenant_access.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from tenant_access.db.enums import (
    Action,
    AuditActionType,
    MemberStatus,
    Module,
    ProjectAccessLevel,
)
from tenant_access.db.models import Member, ProjectAccessGrant
from tenant_access.services import audit_service, member_service, permission_service

logger = logging.getLogger(__name__)


# =============================================================================
# Guard
# =============================================================================

def get_grant(db: Session, member_id: uuid.UUID, project_id: uuid.UUID) -> ProjectAccessGrant | None:
    return db.query(ProjectAccessGrant).filter(
        ProjectAccessGrant.member_id == member_id,
        ProjectAccessGrant.project_id == project_id,
    ).first()


def check_project_scope(
    db: Session,
    member: Member,
    project_id: uuid.UUID,
    required_level: ProjectAccessLevel,
) -> bool:
    """True when ``member`` may act on ``project_id`` at ``required_level``."""
    if not member.is_guest:
        return True
    grant = get_grant(db, member.id, project_id)
    if grant is None:
        return False
    return ProjectAccessLevel(grant.access_level).satisfies(required_level)


def authorize(
    db: Session,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
    action: Action | str,
    project_id: uuid.UUID | None = None,
    subview_key: str | None = None,
    required_level: ProjectAccessLevel | str | None = None,
) -> Member:
    """
    Capability check followed by the project scope check.

    Call before loading the target resource. Denials never say whether the
    project exists.

    Raises:
        ForbiddenError: either check fails, or the member is unknown/inactive
        InvalidInputError: unknown module/action/subview/level
    """
    module = parse_module(module)
    action = parse_action(action)
    level = (
        parse_access_level(required_level)
        if required_level is not None
        else ACTION_ACCESS_LEVEL[action]
    )

    try:
        member = member_service.get_member(db, org_id, member_id)
    except NotFoundError:
        raise ForbiddenError("Access denied") from None
    if member.status != MemberStatus.ACTIVE.value:
        raise ForbiddenError("Access denied")

    if not permission_service.resolve_permission(db, org_id, member.id, module, action, subview_key):
        raise ForbiddenError(f"Missing permission: {module.value}.{action.value}")

    if project_id is not None and not check_project_scope(db, member, project_id, level):
        raise ForbiddenError("Access denied")

    return member


# =============================================================================
# Grants
# =============================================================================

def grant_project_access(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    project_id: uuid.UUID,
    access_level: ProjectAccessLevel | str = ProjectAccessLevel.READ,
) -> ProjectAccessGrant:
    """Create or update a guest's grant on one project."""
    level = parse_access_level(access_level)
    actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        if not member.is_guest:
            raise InvalidInputError("Project access can only be granted to guests", field="member_id")

        grant = get_grant(db, member.id, project_id)
        previous = grant.access_level if grant else None
        if grant is None:
            grant = ProjectAccessGrant(
                organization_id=org_id,
                member_id=member.id,
                project_id=project_id,
                access_level=level.value,
                granted_by_member_id=actor.id,
            )
            db.add(grant)
        else:
            grant.access_level = level.value
            grant.granted_by_member_id = actor.id

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.PROJECT_ACCESS_GRANTED,
            actor_member_id=actor.id,
            resource_type="project",
            resource_id=project_id,
            meta={"member_id": member.id, "access_level": level.value, "previous": previous},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Granted %s on project %s to member %s", level.value, project_id, member.id)
    return grant


def revoke_project_access(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    project_id: uuid.UUID,
) -> None:
    actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        grant = get_grant(db, member.id, project_id)
        if grant is None:
            raise NotFoundError("Project access grant not found")
        access_level = grant.access_level
        db.delete(grant)

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.PROJECT_ACCESS_REVOKED,
            actor_member_id=actor.id,
            resource_type="project",
            resource_id=project_id,
            meta={"member_id": member.id, "access_level": access_level},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Revoked project %s access for member %s", project_id, member.id)


def list_project_access(db: Session, org_id: uuid.UUID, member_id: uuid.UUID) -> list[ProjectAccessGrant]:
    member = member_service.get_member(db, org_id, member_id)
    return db.query(ProjectAccessGrant).filter(
        ProjectAccessGrant.member_id == member.id,
    ).order_by(ProjectAccessGrant.created_at.asc()).all()


def list_project_grants(db: Session, org_id: uuid.UUID, project_id: uuid.UUID) -> list[ProjectAccessGrant]:
    """All guest grants on one project."""
    return db.query(ProjectAccessGrant).filter(
        ProjectAccessGrant.organization_id == org_id,
        ProjectAccessGrant.project_id == project_id,
    ).order_by(ProjectAccessGrant.created_at.asc()).all()


def list_accessible_project_ids(
    db: Session,
    member: Member,
    min_level: ProjectAccessLevel = ProjectAccessLevel.READ,
) -> set[uuid.UUID] | None:
    """
    Project ids a guest may see at ``min_level``.

    Returns None for non-guests, meaning "not project-scoped".
    """
    if not member.is_guest:
        return None
    grants = db.query(ProjectAccessGrant.project_id, ProjectAccessGrant.access_level).filter(
        ProjectAccessGrant.member_id == member.id,
    ).all()
    return {
        project_id
        for project_id, level in grants
        if ProjectAccessLevel(level).satisfies(min_level)
    }
