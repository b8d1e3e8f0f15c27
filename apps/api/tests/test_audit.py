"""
Audit trail tests.

- Events are append-only through the ORM
- A failing audit insert never rolls back the primary mutation
- Query filters, ordering and limit clamping
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from tenant_access.db.enums import AuditActionType
from tenant_access.db.models import AppendOnlyViolation, AuditEvent, Permission
from tenant_access.db.types import utcnow
from tenant_access.services import audit_service, permission_service


def test_record_event_makes_meta_json_safe(db, owner):
    resource_id = uuid.uuid4()
    entry = audit_service.record_event(
        db=db,
        org_id=owner.organization_id,
        action_type=AuditActionType.SHARE_CREATED,
        actor_member_id=owner.id,
        resource_type="project",
        resource_id=resource_id,
        meta={"share_link_id": resource_id, "expires_at": None},
    )
    db.commit()

    assert entry is not None
    assert entry.meta == {"expires_at": None, "share_link_id": str(resource_id)}


def test_audit_events_cannot_be_updated(db, owner):
    entry = db.query(AuditEvent).filter(AuditEvent.organization_id == owner.organization_id).first()
    entry.action_type = "tampered"
    with pytest.raises(AppendOnlyViolation):
        db.flush()
    db.rollback()


def test_audit_events_cannot_be_deleted(db, owner):
    entry = db.query(AuditEvent).filter(AuditEvent.organization_id == owner.organization_id).first()
    db.delete(entry)
    with pytest.raises(AppendOnlyViolation):
        db.flush()
    db.rollback()


def test_failed_audit_write_keeps_primary_mutation(db, owner, member):
    def fail_insert(mapper, connection, target):
        raise OperationalError("INSERT INTO audit_events", {}, Exception("disk I/O error"))

    failures_before = audit_service.AUDIT_WRITE_FAILURES.value
    events_before = db.query(AuditEvent).count()

    event.listen(AuditEvent, "before_insert", fail_insert)
    try:
        permission_service.set_permission(
            db, owner.organization_id, owner.id, member.id, "crm", "delete", True
        )
    finally:
        event.remove(AuditEvent, "before_insert", fail_insert)

    assert audit_service.AUDIT_WRITE_FAILURES.value == failures_before + 1
    assert db.query(AuditEvent).count() == events_before
    row = db.query(Permission).filter(
        Permission.member_id == member.id,
        Permission.module == "crm",
        Permission.action == "delete",
        Permission.subview_key.is_(None),
    ).one()
    assert row.allowed is True


def test_query_events_filters_newest_first(db, owner, member):
    org_id = owner.organization_id
    permission_service.set_permission(db, org_id, owner.id, member.id, "crm", "delete", True)
    permission_service.apply_permission_pack(db, org_id, owner.id, member.id, "collaborator")

    events = audit_service.query_events(db, org_id)
    assert [e.created_at for e in events] == sorted((e.created_at for e in events), reverse=True)
    assert events[0].action_type == AuditActionType.PACK_APPLIED.value

    only_updates = audit_service.query_events(db, org_id, action_type=AuditActionType.PERMISSION_UPDATED)
    assert len(only_updates) == 1
    assert only_updates[0].resource_id == member.id

    for_member = audit_service.query_events(db, org_id, resource_type="member", resource_id=member.id)
    assert {e.action_type for e in for_member} >= {"permission.updated", "pack.applied", "member.joined"}

    assert audit_service.query_events(db, org_id, since=utcnow() + timedelta(minutes=1)) == []
    assert len(audit_service.query_events(db, org_id, limit=0)) == 1


def test_query_events_is_org_scoped(db, owner):
    assert audit_service.query_events(db, uuid.uuid4()) == []


def test_hash_email_hides_address():
    hashed = audit_service.hash_email("Jane.Doe@example.com")
    assert hashed.startswith("Jan...@[hash:")
    assert "example.com" not in hashed
    assert audit_service.hash_email("") == ""
