"""
Approval workflow.

A decision is a compare-and-set on status = 'requested'; the second decider
gets a conflict, even from a different session.
"""

import uuid

import pytest

from tenant_access.core.exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from tenant_access.db.enums import ApprovalStatus, AuditActionType
from tenant_access.db.models import Approval, AuditEvent
from tenant_access.services import approval_service, organization_service, project_access_service


def _request(db, member, project_id=None, resource_type="document"):
    return approval_service.request_approval(
        db, member.organization_id, member.id, resource_type, uuid.uuid4(), project_id=project_id
    )


def test_request_then_approve(db, member, admin):
    approval = _request(db, member)
    assert approval.status == ApprovalStatus.REQUESTED.value
    assert approval.requested_by_member_id == member.id

    decided = approval_service.decide_approval(
        db, admin.organization_id, admin.id, approval.id, "approved", "Looks good"
    )
    assert decided.status == ApprovalStatus.APPROVED.value
    assert decided.decided_by_member_id == admin.id
    assert decided.decided_at is not None
    assert decided.comment == "Looks good"


def test_second_decision_conflicts_across_sessions(db, other_session, member, admin):
    approval = _request(db, member)
    approval_id = approval.id

    approval_service.decide_approval(db, admin.organization_id, admin.id, approval_id, "rejected")
    db.commit()

    with pytest.raises(ConflictError):
        approval_service.decide_approval(
            other_session, member.organization_id, member.id, approval_id, "approved"
        )
    other_session.commit()

    stored = db.get(Approval, approval_id)
    db.refresh(stored)
    assert stored.status == ApprovalStatus.REJECTED.value
    assert stored.decided_by_member_id == admin.id
    decided_events = db.query(AuditEvent).filter(
        AuditEvent.action_type == AuditActionType.APPROVAL_DECIDED.value
    ).all()
    assert len(decided_events) == 1


@pytest.mark.parametrize("decision", ["requested", "maybe", ""])
def test_decision_must_be_terminal(db, member, admin, decision):
    approval = _request(db, member)
    with pytest.raises(InvalidInputError):
        approval_service.decide_approval(db, admin.organization_id, admin.id, approval.id, decision)


def test_changes_requested_is_terminal(db, member, admin):
    approval = _request(db, member)
    approval_service.decide_approval(db, admin.organization_id, admin.id, approval.id, "changes_requested")
    with pytest.raises(ConflictError):
        approval_service.decide_approval(db, admin.organization_id, admin.id, approval.id, "approved")


def test_guest_needs_comment_grant_to_participate(db, owner, guest, member):
    org_id = owner.organization_id
    project_id = uuid.uuid4()
    approval = _request(db, member, project_id=project_id)

    with pytest.raises(NotFoundError):
        approval_service.decide_approval(db, org_id, guest.id, approval.id, "approved")

    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "read")
    with pytest.raises(ForbiddenError):
        approval_service.decide_approval(db, org_id, guest.id, approval.id, "approved")

    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "comment")
    decided = approval_service.decide_approval(db, org_id, guest.id, approval.id, "approved")
    assert decided.decided_by_member_id == guest.id


def test_hidden_approval_looks_missing_to_guests(db, guest, member):
    hidden = _request(db, member, project_id=uuid.uuid4())
    org_id = guest.organization_id

    outcomes = []
    for approval_id in (hidden.id, uuid.uuid4()):
        with pytest.raises(NotFoundError) as excinfo:
            approval_service.get_visible_approval(db, org_id, guest.id, approval_id)
        outcomes.append((excinfo.value.kind, excinfo.value.message))
        with pytest.raises(NotFoundError) as excinfo:
            approval_service.decide_approval(db, org_id, guest.id, approval_id, "approved")
        outcomes.append((excinfo.value.kind, excinfo.value.message))

    assert len(set(outcomes)) == 1
    assert db.get(Approval, hidden.id).status == ApprovalStatus.REQUESTED.value


def test_granted_guest_sees_project_approval(db, owner, guest, member):
    project_id = uuid.uuid4()
    approval = _request(db, member, project_id=project_id)
    project_access_service.grant_project_access(
        db, owner.organization_id, owner.id, guest.id, project_id, "read"
    )
    visible = approval_service.get_visible_approval(db, guest.organization_id, guest.id, approval.id)
    assert visible.id == approval.id


def test_guest_cannot_request_outside_granted_projects(db, guest):
    with pytest.raises(ForbiddenError):
        _request(db, guest, project_id=uuid.uuid4())


def test_approvals_are_org_scoped(db, member):
    approval = _request(db, member)
    other_org, other_owner = organization_service.bootstrap_organization(
        db, "Other", f"other-{uuid.uuid4().hex[:8]}", uuid.uuid4(), "boss@other.com"
    )
    with pytest.raises(NotFoundError):
        approval_service.get_approval(db, other_org.id, approval.id)
    with pytest.raises(NotFoundError):
        approval_service.decide_approval(db, other_org.id, other_owner.id, approval.id, "approved")


def test_list_filters_and_pending(db, member, admin):
    project_id = uuid.uuid4()
    first = _request(db, member, project_id=project_id)
    second = _request(db, member, project_id=project_id)
    _request(db, member, resource_type="roadmap")
    approval_service.decide_approval(db, admin.organization_id, admin.id, first.id, "approved")

    org_id = member.organization_id
    assert len(approval_service.list_approvals(db, org_id)) == 3
    assert len(approval_service.list_approvals(db, org_id, resource_type="roadmap")) == 1
    assert [a.id for a in approval_service.list_pending_for_project(db, org_id, project_id)] == [second.id]
    assert len(approval_service.list_approvals(db, org_id, status="approved")) == 1
    assert len(approval_service.list_approvals(db, org_id, limit=0)) == 1
    with pytest.raises(InvalidInputError):
        approval_service.list_approvals(db, org_id, status="pending")


def test_request_validates_input(db, member):
    with pytest.raises(InvalidInputError):
        _request(db, member, resource_type="")
    with pytest.raises(InvalidInputError):
        approval_service.request_approval(
            db, member.organization_id, member.id, "document", uuid.uuid4(), comment="x" * 5001
        )
