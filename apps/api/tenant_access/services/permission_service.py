"""Permission service - capability resolution, overrides and pack application.

Resolution order for (member, module, action, subview?):
1. Owner: always allowed (no DB lookup beyond the member row)
2. Subview-scoped row for the requested subview: final, in either direction
3. Module-scoped row
4. Fallback pack: the member's applied pack, else the role's default pack
Missing everywhere: deny
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sqlalchemy import or_
from sqlalchemy.orm import Session

from tenant_access.core.catalog import (
    DEFAULT_VIEW_CONFIG,
    parse_action,
    parse_module,
    parse_scope,
    parse_subview,
    subviews_for_module,
)
from tenant_access.core.exceptions import InvalidInputError
from tenant_access.core.permission_packs import (
    PERMISSION_PACKS,
    PermissionPack,
    get_pack,
    get_role_default_pack,
)
from tenant_access.db.enums import Action, AuditActionType, Module, PermissionScope
from tenant_access.db.models import Member, ModuleView, Permission
from tenant_access.services import audit_service, member_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionUpdate:
    """One validated entry of a bulk permission update."""
    module: Module
    action: Action
    allowed: bool
    scope: PermissionScope = PermissionScope.MODULE
    subview_key: str | None = None

    @property
    def key(self) -> tuple:
        return (self.module, self.action, self.scope, self.subview_key)

    def as_dict(self) -> dict[str, Any]:
        return {
            "module": self.module.value,
            "action": self.action.value,
            "scope": self.scope.value,
            "subview_key": self.subview_key,
            "allowed": self.allowed,
        }


# =============================================================================
# Permission Resolution
# =============================================================================

def get_fallback_pack(member: Member) -> PermissionPack:
    """The member's applied pack, else the role's default pack."""
    if member.permission_pack_id:
        pack = PERMISSION_PACKS.get(member.permission_pack_id)
        if pack is not None:
            return pack
        logger.warning(
            "Member %s references unknown pack %r, using role default",
            member.id,
            member.permission_pack_id,
        )
    return get_role_default_pack(member.role_enum)


def resolve_permission(
    db: Session,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
    action: Action | str,
    subview_key: str | None = None,
) -> bool:
    """
    Decide whether a member may perform ``action`` on ``module``.

    A subview-scoped row replaces the module-level verdict entirely.

    Raises:
        InvalidInputError: unknown module/action/subview
        NotFoundError: member not in this organization
    """
    module = parse_module(module)
    action = parse_action(action)
    subview_key = parse_subview(module, subview_key)

    member = member_service.get_member(db, org_id, member_id)
    if member.is_owner:
        return True

    scope_filter = Permission.subview_key.is_(None)
    if subview_key is not None:
        scope_filter = or_(scope_filter, Permission.subview_key == subview_key)

    rows = db.query(Permission.scope, Permission.allowed).filter(
        Permission.member_id == member.id,
        Permission.module == module.value,
        Permission.action == action.value,
        scope_filter,
    ).all()

    by_scope = {scope: allowed for scope, allowed in rows}
    if subview_key is not None and PermissionScope.SUBVIEW.value in by_scope:
        verdict, source = by_scope[PermissionScope.SUBVIEW.value], "subview"
    elif PermissionScope.MODULE.value in by_scope:
        verdict, source = by_scope[PermissionScope.MODULE.value], "module"
    else:
        pack = get_fallback_pack(member)
        verdict, source = pack.allows(module, action, subview_key), f"pack:{pack.id}"

    logger.debug(
        "resolve member=%s %s.%s subview=%s -> %s (%s)",
        member.id, module.value, action.value, subview_key, verdict, source,
    )
    return verdict


def get_effective_matrix(
    db: Session,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
) -> dict[Module, dict[Action, bool]]:
    """Module-level verdict for every Module x Action, same precedence as resolve_permission."""
    member = member_service.get_member(db, org_id, member_id)
    if member.is_owner:
        return {module: {action: True for action in Action} for module in Module}

    rows = db.query(Permission.module, Permission.action, Permission.allowed).filter(
        Permission.member_id == member.id,
        Permission.scope == PermissionScope.MODULE.value,
    ).all()
    explicit = {(Module(m), Action(a)): allowed for m, a, allowed in rows}

    pack = get_fallback_pack(member)
    return {
        module: {
            action: explicit.get((module, action), pack.allows(module, action))
            for action in Action
        }
        for module in Module
    }


def list_member_permissions(db: Session, org_id: uuid.UUID, member_id: uuid.UUID) -> list[Permission]:
    """Explicit rows only (no pack fallback)."""
    member = member_service.get_member(db, org_id, member_id)
    return db.query(Permission).filter(
        Permission.member_id == member.id,
    ).order_by(Permission.module, Permission.action, Permission.subview_key).all()


# =============================================================================
# Overrides
# =============================================================================

def parse_update(raw: PermissionUpdate | Mapping[str, Any] | Any) -> PermissionUpdate:
    """Validate one update given as a PermissionUpdate, a mapping or an object with attributes."""
    if isinstance(raw, PermissionUpdate):
        return raw
    if isinstance(raw, Mapping):
        get = raw.get
    else:
        def get(name, default=None):
            return getattr(raw, name, default)

    module = parse_module(get("module"))
    action = parse_action(get("action"))
    subview_key = get("subview_key")
    scope = parse_scope(get("scope") or PermissionScope.MODULE, subview_key)
    subview_key = parse_subview(module, subview_key)
    allowed = get("allowed")
    if not isinstance(allowed, bool):
        raise InvalidInputError("allowed must be a boolean", field="allowed")
    return PermissionUpdate(
        module=module,
        action=action,
        allowed=allowed,
        scope=scope,
        subview_key=subview_key,
    )


def _upsert_permission(db: Session, member: Member, update: PermissionUpdate) -> Permission:
    query = db.query(Permission).filter(
        Permission.member_id == member.id,
        Permission.module == update.module.value,
        Permission.action == update.action.value,
    )
    if update.subview_key is None:
        query = query.filter(Permission.subview_key.is_(None))
    else:
        query = query.filter(Permission.subview_key == update.subview_key)

    existing = query.first()
    if existing:
        existing.allowed = update.allowed
        return existing

    row = Permission(
        organization_id=member.organization_id,
        member_id=member.id,
        module=update.module.value,
        action=update.action.value,
        scope=update.scope.value,
        subview_key=update.subview_key,
        allowed=update.allowed,
    )
    db.add(row)
    return row


def bulk_update_permissions(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    updates: Iterable[PermissionUpdate | Mapping[str, Any] | Any],
) -> list[Permission]:
    """
    Upsert a batch of explicit permission rows.

    The whole batch is validated before the first write, so one bad entry
    leaves the member untouched. Duplicate keys collapse to the last entry.
    One transaction, one audit event.
    """
    parsed = [parse_update(raw) for raw in updates]
    collapsed: dict[tuple, PermissionUpdate] = {}
    for update in parsed:
        collapsed[update.key] = update
    if not collapsed:
        return []

    actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        member_service.check_can_modify(actor, member)

        rows = [_upsert_permission(db, member, update) for update in collapsed.values()]

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.PERMISSION_UPDATED,
            actor_member_id=actor.id,
            resource_type="member",
            resource_id=member.id,
            meta={
                "count": len(rows),
                "changes": [update.as_dict() for update in collapsed.values()],
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Updated %d permission(s) for member %s", len(rows), member.id)
    return rows


def set_permission(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
    action: Action | str,
    allowed: bool,
    subview_key: str | None = None,
) -> Permission:
    """Upsert a single override; scope follows from subview_key."""
    scope = PermissionScope.SUBVIEW if subview_key else PermissionScope.MODULE
    rows = bulk_update_permissions(
        db,
        org_id,
        actor_member_id,
        member_id,
        [{
            "module": module,
            "action": action,
            "allowed": allowed,
            "scope": scope,
            "subview_key": subview_key,
        }],
    )
    return rows[0]


def clear_permission(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
    action: Action | str,
    subview_key: str | None = None,
) -> bool:
    """Delete one explicit row so the capability falls back to the pack. Returns False if absent."""
    module = parse_module(module)
    action = parse_action(action)
    subview_key = parse_subview(module, subview_key)

    actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        member_service.check_can_modify(actor, member)

        query = db.query(Permission).filter(
            Permission.member_id == member.id,
            Permission.module == module.value,
            Permission.action == action.value,
        )
        if subview_key is None:
            query = query.filter(Permission.subview_key.is_(None))
        else:
            query = query.filter(Permission.subview_key == subview_key)
        deleted = query.delete(synchronize_session=False)

        if deleted:
            audit_service.record_event(
                db=db,
                org_id=org_id,
                action_type=AuditActionType.PERMISSION_UPDATED,
                actor_member_id=actor.id,
                resource_type="member",
                resource_id=member.id,
                meta={
                    "cleared": {
                        "module": module.value,
                        "action": action.value,
                        "subview_key": subview_key,
                    },
                },
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return bool(deleted)


# =============================================================================
# Packs
# =============================================================================

def build_pack_permissions(pack: PermissionPack, member: Member) -> list[Permission]:
    """
    Explicit rows for a pack: every Module x Action at module scope, plus
    subview rows for entries that restrict subviews.
    """
    rows = [
        Permission(
            organization_id=member.organization_id,
            member_id=member.id,
            module=module.value,
            action=action.value,
            scope=PermissionScope.MODULE.value,
            subview_key=None,
            allowed=pack.allows(module, action),
        )
        for module in Module
        for action in Action
    ]
    for entry in pack.entries:
        if not entry.subviews:
            continue
        for subview_key in subviews_for_module(entry.module):
            for action in Action:
                rows.append(Permission(
                    organization_id=member.organization_id,
                    member_id=member.id,
                    module=entry.module.value,
                    action=action.value,
                    scope=PermissionScope.SUBVIEW.value,
                    subview_key=subview_key,
                    allowed=pack.allows(entry.module, action, subview_key),
                ))
    return rows


def build_pack_module_views(pack: PermissionPack, member: Member) -> list[ModuleView]:
    """ModuleView rows from the pack's default subviews, else the global defaults."""
    views = []
    for module in Module:
        default = DEFAULT_VIEW_CONFIG[module]
        enabled = set(pack.default_subviews.get(module, default.subviews_enabled))
        views.append(ModuleView(
            organization_id=member.organization_id,
            member_id=member.id,
            module=module.value,
            subviews_enabled={key: key in enabled for key in subviews_for_module(module)},
            layout=default.layout,
        ))
    return views


def replace_with_pack(db: Session, member: Member, pack: PermissionPack) -> None:
    """
    Replace all explicit Permission and ModuleView rows of ``member`` with ``pack``.

    Does not commit; callers own the transaction.
    """
    db.query(Permission).filter(Permission.member_id == member.id).delete(synchronize_session=False)
    db.query(ModuleView).filter(ModuleView.member_id == member.id).delete(synchronize_session=False)
    db.add_all(build_pack_permissions(pack, member))
    db.add_all(build_pack_module_views(pack, member))
    member.permission_pack_id = pack.id
    db.flush()


def reset_to_role_defaults(db: Session, member: Member) -> None:
    """Apply the role's default pack (role change, invitation acceptance). Does not commit."""
    replace_with_pack(db, member, get_role_default_pack(member.role_enum))


def apply_permission_pack(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    pack_id: str,
) -> Member:
    """
    Replace a member's explicit permissions and module views with a pack.

    All-or-nothing: the member row is locked for the duration and the
    delete + inserts commit together, so readers never see a half-applied pack.

    Raises:
        InvalidInputError: malformed pack id
        NotFoundError: unknown pack or member
        ForbiddenError: actor not a manager, or target is the owner
    """
    pack = get_pack(pack_id)
    actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        member_service.check_can_modify(actor, member)

        previous_pack_id = member.permission_pack_id
        replace_with_pack(db, member, pack)

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.PACK_APPLIED,
            actor_member_id=actor.id,
            resource_type="member",
            resource_id=member.id,
            meta={
                "pack_id": pack.id,
                "pack_version": pack.version,
                "previous_pack_id": previous_pack_id,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Applied pack %s (v%d) to member %s", pack.id, pack.version, member.id)
    return member
