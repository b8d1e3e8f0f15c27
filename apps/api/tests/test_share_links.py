"""
Share link lifecycle.

Validation precedence: not_found -> revoked -> expired -> valid.
Only the SHA-256 digest of a token is stored.
"""

import uuid
from datetime import timedelta

import pytest

from tenant_access.core.exceptions import ForbiddenError, InvalidInputError
from tenant_access.core.security import hash_token
from tenant_access.db.enums import AuditActionType, ShareResourceType, ShareTokenStatus
from tenant_access.db.models import AuditEvent, ShareLink
from tenant_access.db.types import utcnow
from tenant_access.services import share_link_service


def _create(db, owner, **kwargs):
    return share_link_service.create_share_link(
        db, owner.organization_id, owner.id, kwargs.pop("resource_type", "project"), uuid.uuid4(), **kwargs
    )


def _freeze(monkeypatch, when):
    monkeypatch.setattr(share_link_service, "utcnow", lambda: when)


def test_create_stores_only_token_digest(db, owner):
    created = _create(db, owner)

    assert len(created.token) >= 43
    link = db.get(ShareLink, created.id)
    assert link.token_hash == hash_token(created.token)
    assert created.token not in link.token_hash
    assert created.share_url.endswith(f"/share/{created.token}")
    assert link.permissions == {"read": True}
    assert link.expires_at is None


def test_valid_lookup_counts_and_audits(db, owner):
    created = _create(db, owner, resource_type=ShareResourceType.DOCUMENT)

    result = share_link_service.validate_share_token(db, created.token)
    assert result.status == ShareTokenStatus.VALID
    assert result.is_valid
    assert result.link.access_count == 1
    assert result.link.last_accessed_at is not None

    accessed = db.query(AuditEvent).filter(
        AuditEvent.action_type == AuditActionType.SHARE_ACCESSED.value
    ).one()
    assert accessed.actor_member_id is None
    assert accessed.resource_type == "document"


@pytest.mark.parametrize("token", ["", "nope", "x" * 300])
def test_unknown_token_is_not_found(db, owner, token):
    _create(db, owner)
    result = share_link_service.validate_share_token(db, token)
    assert result.status == ShareTokenStatus.NOT_FOUND
    assert result.link is None


def test_expired_link(db, owner, monkeypatch):
    now = utcnow()
    _freeze(monkeypatch, now)
    created = _create(db, owner, expires_in_days=1)
    assert created.expires_at == now + timedelta(days=1)

    _freeze(monkeypatch, now + timedelta(days=1, seconds=1))
    result = share_link_service.validate_share_token(db, created.token)
    assert result.status == ShareTokenStatus.EXPIRED
    assert db.get(ShareLink, created.id).access_count == 0


def test_revoked_wins_over_expired(db, owner, monkeypatch):
    now = utcnow()
    _freeze(monkeypatch, now)
    created = _create(db, owner, expires_in_days=1)
    share_link_service.revoke_share_link(db, owner.organization_id, owner.id, created.id)

    _freeze(monkeypatch, now + timedelta(days=3))
    assert share_link_service.validate_share_token(db, created.token).status == ShareTokenStatus.REVOKED


def test_revoke_is_idempotent(db, owner):
    created = _create(db, owner)
    first = share_link_service.revoke_share_link(db, owner.organization_id, owner.id, created.id)
    revoked_at = first.revoked_at
    second = share_link_service.revoke_share_link(db, owner.organization_id, owner.id, created.id)

    assert second.revoked_at == revoked_at
    assert second.revoked_by_member_id == owner.id
    events = db.query(AuditEvent).filter(
        AuditEvent.action_type == AuditActionType.SHARE_REVOKED.value
    ).all()
    assert len(events) == 1


def test_access_counter_is_atomic_across_sessions(db, owner, other_session):
    created = _create(db, owner)

    share_link_service.validate_share_token(db, created.token)
    db.commit()
    share_link_service.validate_share_token(other_session, created.token)
    other_session.commit()
    share_link_service.validate_share_token(db, created.token)
    db.commit()

    assert db.get(ShareLink, created.id).access_count == 3


@pytest.mark.parametrize("days", [0, -1, 366])
def test_expiry_bounds(db, owner, days):
    with pytest.raises(InvalidInputError):
        _create(db, owner, expires_in_days=days)


def test_default_expiry_from_settings(db, owner, monkeypatch):
    from tenant_access.core.config import settings

    monkeypatch.setattr(settings, "SHARE_LINK_DEFAULT_EXPIRY_DAYS", 30)
    created = _create(db, owner)
    assert created.expires_at is not None


def test_permissions_are_validated(db, owner):
    created = _create(db, owner, permissions={"read": True, "subviews": ["roadmap.output", "roadmap.output"]})
    assert db.get(ShareLink, created.id).permissions == {"read": True, "subviews": ["roadmap.output"]}

    with pytest.raises(InvalidInputError):
        _create(db, owner, permissions={"write": True})
    with pytest.raises(InvalidInputError):
        _create(db, owner, permissions={"subviews": ["roadmap.unknown"]})


def test_unknown_resource_type(db, owner):
    with pytest.raises(InvalidInputError):
        _create(db, owner, resource_type="invoice")


def test_only_managers_create_or_revoke(db, owner, member):
    with pytest.raises(ForbiddenError):
        _create(db, member)
    created = _create(db, owner)
    with pytest.raises(ForbiddenError):
        share_link_service.revoke_share_link(db, member.organization_id, member.id, created.id)


def test_list_hides_revoked_by_default(db, owner):
    kept = _create(db, owner)
    gone = _create(db, owner)
    share_link_service.revoke_share_link(db, owner.organization_id, owner.id, gone.id)

    active = share_link_service.list_share_links(db, owner.organization_id)
    assert [link.id for link in active] == [kept.id]
    everything = share_link_service.list_share_links(db, owner.organization_id, include_revoked=True)
    assert {link.id for link in everything} == {kept.id, gone.id}
