"""Organization bootstrap and lookup."""

import logging
import re
import uuid

from sqlalchemy.orm import Session

from tenant_access.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from tenant_access.core.permission_packs import get_role_default_pack
from tenant_access.db.enums import AuditActionType, MemberStatus, Role
from tenant_access.db.models import Member, Organization
from tenant_access.services import audit_service, permission_service

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,98}[a-z0-9]$")


def get_organization(db: Session, org_id: uuid.UUID) -> Organization:
    org = db.query(Organization).filter(Organization.id == org_id).first()
    if not org:
        raise NotFoundError("Organization not found")
    return org


def get_organization_by_slug(db: Session, slug: str) -> Organization | None:
    return db.query(Organization).filter(Organization.slug == slug).first()


def bootstrap_organization(
    db: Session,
    name: str,
    slug: str,
    owner_user_id: uuid.UUID,
    owner_email: str,
    owner_display_name: str | None = None,
) -> tuple[Organization, Member]:
    """
    Create an organization and its owner in one transaction.

    The owner is an active admin with the owner flag and the admin pack
    materialized as explicit rows.

    Raises:
        InvalidInputError: empty name or malformed slug
        ConflictError: slug already taken
    """
    # Import here to avoid circular imports
    from tenant_access.services.invite_service import normalize_email

    name = (name or "").strip()
    if not name or len(name) > 255:
        raise InvalidInputError("Organization name is required (max 255 chars)", field="name")
    slug = (slug or "").strip().lower()
    if not SLUG_PATTERN.match(slug):
        raise InvalidInputError(
            "Slug must be 3-100 chars of lowercase letters, digits and hyphens", field="slug"
        )
    email = normalize_email(owner_email)

    if get_organization_by_slug(db, slug):
        raise ConflictError(f"Organization slug {slug!r} already exists")

    try:
        org = Organization(name=name, slug=slug)
        db.add(org)
        db.flush()

        owner = Member(
            organization_id=org.id,
            user_id=owner_user_id,
            email=email,
            display_name=owner_display_name,
            role=Role.ADMIN.value,
            status=MemberStatus.ACTIVE.value,
            is_owner=True,
        )
        db.add(owner)
        db.flush()
        permission_service.replace_with_pack(db, owner, get_role_default_pack(Role.ADMIN))

        audit_service.record_event(
            db=db,
            org_id=org.id,
            action_type=AuditActionType.ORGANIZATION_CREATED,
            actor_member_id=owner.id,
            resource_type="organization",
            resource_id=org.id,
            meta={"slug": slug, "owner_email": audit_service.hash_email(email)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Organization %s bootstrapped with owner member %s", org.id, owner.id)
    return org, owner
