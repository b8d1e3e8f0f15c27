"""Enum definitions for the closed vocabularies of the access engine."""

from enum import Enum


class _ValueEnum(str, Enum):
    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a member of the enumeration."""
        return value in cls._value2member_map_

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


# =============================================================================
# Roles & Membership
# =============================================================================

class Role(_ValueEnum):
    """
    Coarse default capability tier of a member.

    - ADMIN: full access, manages members, packs and share links
    - MEMBER: read/write on operational modules
    - GUEST: read-only and additionally restricted to granted projects

    Tenant ownership is NOT a role: see Member.is_owner.
    """

    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"


# Legacy vocabulary found in older rows: value -> (role, is_owner)
LEGACY_ROLE_MAP: dict[str, tuple[Role, bool]] = {
    "owner": (Role.ADMIN, True),
    "collaborator": (Role.MEMBER, False),
    "client_viewer": (Role.GUEST, False),
}


def normalize_role(value: str) -> tuple[Role, bool]:
    """
    Map a stored role identifier to (Role, is_owner).

    Accepts both the current vocabulary and the legacy one.
    Raises ValueError for anything else.
    """
    if Role.has_value(value):
        return Role(value), False
    if value in LEGACY_ROLE_MAP:
        return LEGACY_ROLE_MAP[value]
    raise ValueError(f"Unknown role: {value}")


class MemberStatus(_ValueEnum):
    ACTIVE = "active"
    INVITED = "invited"


class InvitationStatus(_ValueEnum):
    """Persisted invitation states. 'expired' is derived, never stored."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


# =============================================================================
# Capability keys
# =============================================================================

class Module(_ValueEnum):
    """Feature areas of the product."""

    CRM = "crm"
    PROJECTS = "projects"
    PRODUCT = "product"
    ROADMAP = "roadmap"
    TASKS = "tasks"
    NOTES = "notes"
    DOCUMENTS = "documents"
    PROFITABILITY = "profitability"


class Action(_ValueEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PermissionScope(_ValueEnum):
    MODULE = "module"
    SUBVIEW = "subview"


class ProjectAccessLevel(_ValueEnum):
    """Per-project access for guests. Ordered: read < comment < write."""

    READ = "read"
    COMMENT = "comment"
    WRITE = "write"

    @property
    def rank(self) -> int:
        return _ACCESS_LEVEL_RANK[self]

    def satisfies(self, required: "ProjectAccessLevel") -> bool:
        return self.rank >= required.rank


_ACCESS_LEVEL_RANK = {
    ProjectAccessLevel.READ: 1,
    ProjectAccessLevel.COMMENT: 2,
    ProjectAccessLevel.WRITE: 3,
}


# =============================================================================
# Share links & approvals
# =============================================================================

class ShareResourceType(_ValueEnum):
    PROJECT = "project"
    ROADMAP = "roadmap"
    BACKLOG = "backlog"
    NOTE = "note"
    DOCUMENT = "document"
    PROFITABILITY_PROJECT = "profitability_project"


class ShareTokenStatus(_ValueEnum):
    """Outcome of a share token validation, in evaluation order."""

    VALID = "valid"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ApprovalStatus(_ValueEnum):
    """
    Approval lifecycle.

    REQUESTED is the only non-terminal state. A new review cycle
    is a new Approval row for the same resource.
    """

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"


APPROVAL_DECISIONS = frozenset(
    {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.CHANGES_REQUESTED}
)


# =============================================================================
# Audit
# =============================================================================

class AuditActionType(_ValueEnum):
    """
    Audit event types.

    Groups:
    - permission.* / pack.*: capability changes
    - member.*: membership lifecycle
    - project_access.*: guest project scoping
    - share.*: external share links
    - approval.*: sign-off workflow
    """

    PERMISSION_UPDATED = "permission.updated"
    PACK_APPLIED = "pack.applied"
    MODULE_VIEW_UPDATED = "module_view.updated"

    MEMBER_INVITED = "member.invited"
    MEMBER_INVITATION_REVOKED = "member.invitation_revoked"
    MEMBER_JOINED = "member.joined"
    MEMBER_ROLE_CHANGED = "member.role_changed"
    MEMBER_REMOVED = "member.removed"

    PROJECT_ACCESS_GRANTED = "project_access.granted"
    PROJECT_ACCESS_REVOKED = "project_access.revoked"

    SHARE_CREATED = "share.created"
    SHARE_REVOKED = "share.revoked"
    SHARE_ACCESSED = "share.accessed"

    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_DECIDED = "approval.decided"

    ORGANIZATION_CREATED = "organization.created"
