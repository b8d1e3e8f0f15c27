"""Member management: role changes, removal, owner protection."""

import uuid

import pytest

from tenant_access.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from tenant_access.db.enums import AuditActionType, Role
from tenant_access.db.models import AuditEvent, Member, ModuleView, Permission, ProjectAccessGrant
from tenant_access.services import member_service, permission_service, project_access_service


def test_change_role_resets_permissions(db, owner, member):
    org_id = owner.organization_id
    permission_service.set_permission(db, org_id, owner.id, member.id, "crm", "delete", True)

    updated = member_service.change_role(db, org_id, owner.id, member.id, "guest")
    assert updated.role == Role.GUEST.value
    assert updated.permission_pack_id == "guest"
    assert permission_service.resolve_permission(db, org_id, member.id, "crm", "delete") is False
    assert permission_service.resolve_permission(db, org_id, member.id, "crm", "read") is False

    event = db.query(AuditEvent).filter(
        AuditEvent.action_type == AuditActionType.MEMBER_ROLE_CHANGED.value
    ).one()
    assert event.meta == {"after": "guest", "before": "member"}


def test_change_role_rejects_unknown_role(db, owner, member):
    with pytest.raises(InvalidInputError):
        member_service.change_role(db, owner.organization_id, owner.id, member.id, "owner")


def test_owner_role_cannot_be_changed(db, owner, admin):
    with pytest.raises(ForbiddenError):
        member_service.change_role(db, admin.organization_id, admin.id, owner.id, "member")


def test_admin_cannot_demote_self(db, admin):
    with pytest.raises(ForbiddenError):
        member_service.change_role(db, admin.organization_id, admin.id, admin.id, "member")


def test_remove_member_deletes_access_rows(db, owner, guest):
    org_id = owner.organization_id
    project_access_service.grant_project_access(db, org_id, owner.id, guest.id, uuid.uuid4())
    guest_id = guest.id

    member_service.remove_member(db, org_id, owner.id, guest_id)

    assert db.get(Member, guest_id) is None
    assert db.query(Permission).filter(Permission.member_id == guest_id).count() == 0
    assert db.query(ModuleView).filter(ModuleView.member_id == guest_id).count() == 0
    assert db.query(ProjectAccessGrant).filter(ProjectAccessGrant.member_id == guest_id).count() == 0

    removed = db.query(AuditEvent).filter(AuditEvent.action_type == AuditActionType.MEMBER_REMOVED.value).one()
    assert removed.resource_id == guest_id
    # Audit history survives the member
    assert db.query(AuditEvent).filter(AuditEvent.resource_id == guest_id).count() >= 2


def test_owner_cannot_be_removed(db, owner, admin):
    with pytest.raises(ForbiddenError):
        member_service.remove_member(db, admin.organization_id, admin.id, owner.id)


def test_members_cannot_remove_members(db, member, guest):
    with pytest.raises(ForbiddenError):
        member_service.remove_member(db, member.organization_id, member.id, guest.id)


def test_list_members_filters(db, owner, member, guest):
    org_id = owner.organization_id
    assert {m.id for m in member_service.list_members(db, org_id)} == {owner.id, member.id, guest.id}
    assert [m.id for m in member_service.list_members(db, org_id, role=Role.GUEST)] == [guest.id]


def test_get_member_other_org(db, member):
    with pytest.raises(NotFoundError):
        member_service.get_member(db, uuid.uuid4(), member.id)
