"""SQLAlchemy ORM models for tenants, members, capabilities, sharing and audit."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, event, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenant_access.db.base import Base
from tenant_access.db.enums import (
    Action, ApprovalStatus, InvitationStatus, MemberStatus, Module,
    PermissionScope, ProjectAccessLevel, Role, ShareResourceType
)
from tenant_access.db.types import JSONType, utcnow


def _one_of(column: str, enum_cls) -> str:
    values = ", ".join(f"'{value}'" for value in enum_cls.values())
    return f"{column} IN ({values})"


# =============================================================================
# Tenants & Members
# =============================================================================

class Organization(Base):
    """
    A tenant.

    Every other row belongs to exactly one organization and
    must be scoped by organization_id in all queries.
    """
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    members: Mapped[list["Member"]] = relationship(
        back_populates="organization", passive_deletes=True
    )


class Member(Base):
    """
    A user's membership in one organization.

    user_id comes from the external identity provider. The owner flag is
    independent of role; owners bypass every capability check.
    """
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
        Index("idx_members_org_role", "organization_id", "role"),
        CheckConstraint(_one_of("role", Role), name="ck_members_role"),
        CheckConstraint(_one_of("status", MemberStatus), name="ck_members_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=MemberStatus.ACTIVE.value, nullable=False
    )
    is_owner: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    # Last pack applied; fallback for capabilities without explicit rows
    permission_pack_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="members")

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    @property
    def is_guest(self) -> bool:
        return self.role == Role.GUEST.value


class Invitation(Base):
    """
    Single-use invitation to join an organization.

    Expiry is derived from expires_at and never stored as a status.
    """
    __tablename__ = "invitations"
    __table_args__ = (
        Index("idx_invitations_org_status", "organization_id", "status"),
        Index("idx_invitations_email", "email"),
        CheckConstraint(_one_of("role", Role), name="ck_invitations_role"),
        CheckConstraint(_one_of("status", InvitationStatus), name="ck_invitations_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=InvitationStatus.PENDING.value, nullable=False
    )
    invited_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    accepted_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Set by the delivery feedback webhook
    email_bounced: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Capabilities
# =============================================================================

class Permission(Base):
    """
    Explicit allow/deny for (member, module, action), optionally narrowed to a subview.

    Module-scope rows have no subview_key; subview-scope rows must have one.
    At most one row per (member, module, action, scope, subview_key).
    """
    __tablename__ = "permissions"
    __table_args__ = (
        Index("idx_permissions_member_module", "member_id", "module", "action"),
        Index(
            "uq_permissions_module_scope",
            "member_id", "module", "action",
            unique=True,
            postgresql_where=text("subview_key IS NULL"),
            sqlite_where=text("subview_key IS NULL"),
        ),
        Index(
            "uq_permissions_subview_scope",
            "member_id", "module", "action", "subview_key",
            unique=True,
            postgresql_where=text("subview_key IS NOT NULL"),
            sqlite_where=text("subview_key IS NOT NULL"),
        ),
        CheckConstraint(_one_of("module", Module), name="ck_permissions_module"),
        CheckConstraint(_one_of("action", Action), name="ck_permissions_action"),
        CheckConstraint(
            "(scope = 'module' AND subview_key IS NULL) "
            "OR (scope = 'subview' AND subview_key IS NOT NULL)",
            name="ck_permissions_scope_subview",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    scope: Mapped[str] = mapped_column(
        String(20), default=PermissionScope.MODULE.value, nullable=False
    )
    subview_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class ModuleView(Base):
    """Per-member UI configuration of a module. Never consulted for authorization."""
    __tablename__ = "module_views"
    __table_args__ = (
        UniqueConstraint("member_id", "module", name="uq_module_views_member_module"),
        CheckConstraint(_one_of("module", Module), name="ck_module_views_module"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    subviews_enabled: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    layout: Mapped[str | None] = mapped_column(String(50), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class RoleViewTemplate(Base):
    """Org-level module view template for a role, copied onto members on demand."""
    __tablename__ = "role_view_templates"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "role", "module", name="uq_role_view_templates_org_role_module"
        ),
        CheckConstraint(_one_of("role", Role), name="ck_role_view_templates_role"),
        CheckConstraint(_one_of("module", Module), name="ck_role_view_templates_module"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    subviews_enabled: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    layout: Mapped[str | None] = mapped_column(String(50), nullable=True)
    updated_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class ProjectAccessGrant(Base):
    """Per-project access for a guest member."""
    __tablename__ = "project_access_grants"
    __table_args__ = (
        UniqueConstraint("member_id", "project_id", name="uq_project_access_member_project"),
        Index("idx_project_access_org_project", "organization_id", "project_id"),
        CheckConstraint(
            _one_of("access_level", ProjectAccessLevel), name="ck_project_access_level"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    access_level: Mapped[str] = mapped_column(String(20), nullable=False)
    granted_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# Sharing & Approvals
# =============================================================================

class ShareLink(Base):
    """
    Unauthenticated access to one resource.

    Only the SHA-256 hex digest of the token is stored; the raw token
    is shown once at creation.
    """
    __tablename__ = "share_links"
    __table_args__ = (
        Index("idx_share_links_org_resource", "organization_id", "resource_type", "resource_id"),
        CheckConstraint(
            _one_of("resource_type", ShareResourceType), name="ck_share_links_resource_type"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(30), nullable=False)
    resource_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    permissions: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    access_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    last_accessed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Approval(Base):
    """
    Sign-off request on a resource.

    'requested' is the only non-terminal status. A new review cycle
    is a new row.
    """
    __tablename__ = "approvals"
    __table_args__ = (
        Index("idx_approvals_org_created", "organization_id", "created_at"),
        Index("idx_approvals_org_resource", "organization_id", "resource_type", "resource_id"),
        Index("idx_approvals_org_project_status", "organization_id", "project_id", "status"),
        CheckConstraint(_one_of("status", ApprovalStatus), name="ck_approvals_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default=ApprovalStatus.REQUESTED.value, nullable=False
    )
    requested_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    decided_by_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)


# =============================================================================
# Audit
# =============================================================================

class AuditEvent(Base):
    """
    Append-only record of access-relevant changes.

    - actor_member_id is null for unauthenticated events (share access)
    - emails in meta are hashed, never stored raw
    - actor ids are kept without a foreign key so history survives member removal
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_org_created", "organization_id", "created_at"),
        Index("idx_audit_events_org_action_created", "organization_id", "action_type", "created_at"),
        Index("idx_audit_events_org_resource", "organization_id", "resource_type", "resource_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    actor_member_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)  # AuditActionType
    resource_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to modify or delete an audit event through the ORM."""


@event.listens_for(AuditEvent, "before_update")
def _block_audit_update(mapper, connection, target):
    raise AppendOnlyViolation(f"audit event {target.id} is append-only")


@event.listens_for(AuditEvent, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"audit event {target.id} is append-only")
