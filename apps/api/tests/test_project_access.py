"""
Project scope guard tests.

Guests must hold a grant on the project at the required level, in addition
to the capability. Non-guests are not project-scoped.
"""

import uuid

import pytest

from tenant_access.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from tenant_access.db.enums import AuditActionType, MemberStatus, ProjectAccessLevel
from tenant_access.db.models import AuditEvent
from tenant_access.services import permission_service, project_access_service


def _authorize(db, member, action, project_id, **kwargs):
    return project_access_service.authorize(
        db, member.organization_id, member.id, "projects", action, project_id=project_id, **kwargs
    )


def test_guest_without_grant_is_denied(db, guest):
    with pytest.raises(ForbiddenError) as exc:
        _authorize(db, guest, "read", uuid.uuid4())
    assert exc.value.message == "Access denied"


def test_guest_with_read_grant_can_read(db, owner, guest):
    project_id = uuid.uuid4()
    project_access_service.grant_project_access(db, owner.organization_id, owner.id, guest.id, project_id)

    assert _authorize(db, guest, "read", project_id).id == guest.id
    with pytest.raises(ForbiddenError):
        _authorize(db, guest, "read", uuid.uuid4())


def test_capability_is_checked_before_scope(db, owner, guest):
    project_id = uuid.uuid4()
    project_access_service.grant_project_access(
        db, owner.organization_id, owner.id, guest.id, project_id, ProjectAccessLevel.WRITE
    )
    with pytest.raises(ForbiddenError) as exc:
        _authorize(db, guest, "update", project_id)
    assert exc.value.message.startswith("Missing permission")


def test_write_actions_need_write_grant(db, owner, guest):
    org_id = owner.organization_id
    project_id = uuid.uuid4()
    permission_service.set_permission(db, org_id, owner.id, guest.id, "projects", "update", True)
    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "comment")

    with pytest.raises(ForbiddenError):
        _authorize(db, guest, "update", project_id)

    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "write")
    assert _authorize(db, guest, "update", project_id)


def test_explicit_required_level(db, owner, guest):
    project_id = uuid.uuid4()
    project_access_service.grant_project_access(db, owner.organization_id, owner.id, guest.id, project_id, "read")
    with pytest.raises(ForbiddenError):
        _authorize(db, guest, "read", project_id, required_level="comment")


def test_non_guests_are_not_project_scoped(db, member):
    assert _authorize(db, member, "read", uuid.uuid4()).id == member.id


def test_inactive_member_is_denied(db, member):
    member.status = MemberStatus.INVITED.value
    db.commit()
    with pytest.raises(ForbiddenError):
        _authorize(db, member, "read", None)


def test_unknown_member_is_denied_not_found(db, test_org):
    with pytest.raises(ForbiddenError):
        project_access_service.authorize(db, test_org.id, uuid.uuid4(), "projects", "read")


def test_grant_only_for_guests(db, owner, member):
    with pytest.raises(InvalidInputError):
        project_access_service.grant_project_access(db, owner.organization_id, owner.id, member.id, uuid.uuid4())


def test_grant_requires_manager(db, member, guest):
    with pytest.raises(ForbiddenError):
        project_access_service.grant_project_access(db, member.organization_id, member.id, guest.id, uuid.uuid4())


def test_regrant_updates_level_and_audits(db, owner, guest):
    org_id = owner.organization_id
    project_id = uuid.uuid4()
    first = project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "read")
    second = project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id, "write")

    assert first.id == second.id
    assert second.access_level == "write"
    events = db.query(AuditEvent).filter(
        AuditEvent.action_type == AuditActionType.PROJECT_ACCESS_GRANTED.value
    ).order_by(AuditEvent.created_at).all()
    assert [e.meta["previous"] for e in events] == [None, "read"]


def test_revoke_removes_access(db, owner, guest):
    org_id = owner.organization_id
    project_id = uuid.uuid4()
    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, project_id)
    project_access_service.revoke_project_access(db, org_id, owner.id, guest.id, project_id)

    with pytest.raises(ForbiddenError):
        _authorize(db, guest, "read", project_id)
    with pytest.raises(NotFoundError):
        project_access_service.revoke_project_access(db, org_id, owner.id, guest.id, project_id)


def test_accessible_project_ids(db, owner, guest, member):
    org_id = owner.organization_id
    read_project, comment_project = uuid.uuid4(), uuid.uuid4()
    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, read_project, "read")
    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, comment_project, "comment")

    assert project_access_service.list_accessible_project_ids(db, guest) == {read_project, comment_project}
    assert project_access_service.list_accessible_project_ids(
        db, guest, ProjectAccessLevel.COMMENT
    ) == {comment_project}
    assert project_access_service.list_accessible_project_ids(db, member) is None


def test_project_grant_listings(db, owner, make_member):
    from tenant_access.db.enums import Role

    org_id = owner.organization_id
    project_id = uuid.uuid4()
    guests = [make_member(Role.GUEST), make_member(Role.GUEST)]
    for g in guests:
        project_access_service.grant_project_access(db, org_id, owner.id, g.id, project_id)

    grants = project_access_service.list_project_grants(db, org_id, project_id)
    assert {g.member_id for g in grants} == {g.id for g in guests}
    assert len(project_access_service.list_project_access(db, org_id, guests[0].id)) == 1
