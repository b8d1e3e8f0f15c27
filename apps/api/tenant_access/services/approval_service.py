"""Approval workflow - sign-off requests on resources.

An approval is created in 'requested' and decided exactly once. The decision
is a compare-and-set UPDATE guarded by status = 'requested', so two
concurrent deciders cannot both win.
"""

import logging
import uuid

from sqlalchemy import update
from sqlalchemy.orm import Session

from tenant_access.core.exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from tenant_access.db.enums import (
    APPROVAL_DECISIONS,
    ApprovalStatus,
    AuditActionType,
    MemberStatus,
    ProjectAccessLevel,
)
from tenant_access.db.models import Approval, Member
from tenant_access.db.types import utcnow
from tenant_access.services import audit_service, member_service, project_access_service

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200
MAX_COMMENT_LENGTH = 5000
# Signing off is at least commenting on the project
SIGN_OFF_LEVEL = ProjectAccessLevel.COMMENT


def _require_active(db: Session, org_id: uuid.UUID, actor_member_id: uuid.UUID) -> Member:
    try:
        actor = member_service.get_member(db, org_id, actor_member_id)
    except NotFoundError:
        raise ForbiddenError("Access denied") from None
    if actor.status != MemberStatus.ACTIVE.value:
        raise ForbiddenError("Access denied")
    return actor


def _require_participant(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    project_id: uuid.UUID | None,
) -> Member:
    """Active member who, when a project is involved, passes the project scope check."""
    actor = _require_active(db, org_id, actor_member_id)
    if project_id is not None and not project_access_service.check_project_scope(
        db, actor, project_id, SIGN_OFF_LEVEL
    ):
        raise ForbiddenError("Access denied")
    return actor


def _parse_decision(decision: ApprovalStatus | str) -> ApprovalStatus:
    if not isinstance(decision, ApprovalStatus):
        if not isinstance(decision, str) or not ApprovalStatus.has_value(decision):
            raise InvalidInputError(f"Unknown decision: {decision!r}", field="decision")
        decision = ApprovalStatus(decision)
    if decision not in APPROVAL_DECISIONS:
        raise InvalidInputError(
            f"Decision must be one of {sorted(d.value for d in APPROVAL_DECISIONS)}",
            field="decision",
        )
    return decision


def _check_comment(comment: str | None) -> str | None:
    if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
        raise InvalidInputError("Comment too long", field="comment")
    return comment


# =============================================================================
# Queries
# =============================================================================

def get_approval(db: Session, org_id: uuid.UUID, approval_id: uuid.UUID) -> Approval:
    approval = db.query(Approval).filter(
        Approval.id == approval_id,
        Approval.organization_id == org_id,
    ).first()
    if not approval:
        raise NotFoundError("Approval not found")
    return approval


def get_visible_approval(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    approval_id: uuid.UUID,
) -> Approval:
    """
    Approval as seen by ``actor_member_id``.

    An approval on a project the actor cannot read raises the same
    NotFoundError as a missing one.
    """
    actor = _require_active(db, org_id, actor_member_id)
    approval = get_approval(db, org_id, approval_id)
    if approval.project_id is not None and not project_access_service.check_project_scope(
        db, actor, approval.project_id, ProjectAccessLevel.READ
    ):
        raise NotFoundError("Approval not found")
    return approval


def list_approvals(
    db: Session,
    org_id: uuid.UUID,
    project_id: uuid.UUID | None = None,
    resource_type: str | None = None,
    resource_id: uuid.UUID | None = None,
    status: ApprovalStatus | str | None = None,
    limit: int = 50,
) -> list[Approval]:
    """Newest first."""
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    query = db.query(Approval).filter(Approval.organization_id == org_id)
    if project_id is not None:
        query = query.filter(Approval.project_id == project_id)
    if resource_type:
        query = query.filter(Approval.resource_type == resource_type)
    if resource_id is not None:
        query = query.filter(Approval.resource_id == resource_id)
    if status is not None:
        if not isinstance(status, ApprovalStatus):
            if not ApprovalStatus.has_value(status):
                raise InvalidInputError(f"Unknown status: {status!r}", field="status")
            status = ApprovalStatus(status)
        query = query.filter(Approval.status == status.value)
    return query.order_by(Approval.created_at.desc()).limit(limit).all()


def list_pending_for_project(db: Session, org_id: uuid.UUID, project_id: uuid.UUID) -> list[Approval]:
    return list_approvals(
        db, org_id, project_id=project_id, status=ApprovalStatus.REQUESTED, limit=MAX_LIST_LIMIT
    )


# =============================================================================
# Lifecycle
# =============================================================================

def request_approval(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    resource_type: str,
    resource_id: uuid.UUID,
    project_id: uuid.UUID | None = None,
    comment: str | None = None,
) -> Approval:
    """Open a new approval in 'requested'. A new review cycle is a new row."""
    if not resource_type or len(resource_type) > 50:
        raise InvalidInputError("resource_type is required (max 50 chars)", field="resource_type")
    comment = _check_comment(comment)
    actor = _require_participant(db, org_id, actor_member_id, project_id)

    try:
        approval = Approval(
            organization_id=org_id,
            project_id=project_id,
            resource_type=resource_type,
            resource_id=resource_id,
            status=ApprovalStatus.REQUESTED.value,
            requested_by_member_id=actor.id,
            comment=comment,
        )
        db.add(approval)
        db.flush()
        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.APPROVAL_REQUESTED,
            actor_member_id=actor.id,
            resource_type=resource_type,
            resource_id=resource_id,
            meta={"approval_id": approval.id, "project_id": project_id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return approval


def decide_approval(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    approval_id: uuid.UUID,
    decision: ApprovalStatus | str,
    comment: str | None = None,
) -> Approval:
    """
    Record the single decision on a requested approval.

    Raises:
        InvalidInputError: decision is not terminal
        NotFoundError: no such approval, or its project is hidden from the actor
        ConflictError: already decided (including by a concurrent caller)
        ForbiddenError: actor may read the project but not sign off on it
    """
    decision = _parse_decision(decision)
    comment = _check_comment(comment)
    approval = get_visible_approval(db, org_id, actor_member_id, approval_id)
    actor = _require_participant(db, org_id, actor_member_id, approval.project_id)

    values = {
        "status": decision.value,
        "decided_by_member_id": actor.id,
        "decided_at": utcnow(),
    }
    if comment is not None:
        values["comment"] = comment

    try:
        result = db.execute(
            update(Approval)
            .where(
                Approval.id == approval.id,
                Approval.organization_id == org_id,
                Approval.status == ApprovalStatus.REQUESTED.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("Approval has already been decided", approval_id=str(approval.id))

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.APPROVAL_DECIDED,
            actor_member_id=actor.id,
            resource_type=approval.resource_type,
            resource_id=approval.resource_id,
            meta={
                "approval_id": approval.id,
                "decision": decision.value,
                "project_id": approval.project_id,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(approval)
    logger.info("Approval %s decided: %s", approval.id, decision.value)
    return approval
