"""Module view service - per-member UI configuration of modules.

Views only shape what the UI shows; authorization never reads them.
Role view templates are org-level presets copied onto every member of a role.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from tenant_access.core.catalog import (
    DEFAULT_VIEW_CONFIG,
    parse_module,
    parse_role,
    validate_subviews_enabled,
)
from tenant_access.core.exceptions import InvalidInputError
from tenant_access.db.enums import AuditActionType, Module, Role
from tenant_access.db.models import Member, ModuleView, RoleViewTemplate
from tenant_access.services import audit_service, member_service

logger = logging.getLogger(__name__)

# Admins always see everything; templates exist for the restricted roles only
TEMPLATE_ROLES = frozenset({Role.MEMBER, Role.GUEST})


@dataclass(frozen=True)
class EffectiveModuleView:
    module: Module
    layout: str
    subviews_enabled: dict[str, bool]
    is_default: bool


def _default_view(module: Module) -> EffectiveModuleView:
    default = DEFAULT_VIEW_CONFIG[module].as_dict()
    return EffectiveModuleView(
        module=module,
        layout=default["layout"],
        subviews_enabled=default["subviews_enabled"],
        is_default=True,
    )


def get_module_view(
    db: Session,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
) -> ModuleView | None:
    module = parse_module(module)
    member = member_service.get_member(db, org_id, member_id)
    return db.query(ModuleView).filter(
        ModuleView.member_id == member.id,
        ModuleView.module == module.value,
    ).first()


def get_effective_module_view(
    db: Session,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
) -> EffectiveModuleView:
    """Stored view, or the declarative default when the member has none."""
    module = parse_module(module)
    view = get_module_view(db, org_id, member_id, module)
    if view is None:
        return _default_view(module)
    return EffectiveModuleView(
        module=module,
        layout=view.layout or DEFAULT_VIEW_CONFIG[module].layout,
        subviews_enabled=dict(view.subviews_enabled or {}),
        is_default=False,
    )


def list_module_views(db: Session, org_id: uuid.UUID, member_id: uuid.UUID) -> list[EffectiveModuleView]:
    """Effective view for every module."""
    member = member_service.get_member(db, org_id, member_id)
    stored = {
        view.module: view
        for view in db.query(ModuleView).filter(ModuleView.member_id == member.id).all()
    }
    result = []
    for module in Module:
        view = stored.get(module.value)
        if view is None:
            result.append(_default_view(module))
        else:
            result.append(EffectiveModuleView(
                module=module,
                layout=view.layout or DEFAULT_VIEW_CONFIG[module].layout,
                subviews_enabled=dict(view.subviews_enabled or {}),
                is_default=False,
            ))
    return result


def _upsert_view(
    db: Session,
    member: Member,
    module: Module,
    subviews_enabled: dict[str, bool],
    layout: str | None,
) -> ModuleView:
    view = db.query(ModuleView).filter(
        ModuleView.member_id == member.id,
        ModuleView.module == module.value,
    ).first()
    if view is None:
        view = ModuleView(
            organization_id=member.organization_id,
            member_id=member.id,
            module=module.value,
        )
        db.add(view)
    # Reassign; JSON columns do not track in-place mutation
    view.subviews_enabled = dict(subviews_enabled)
    view.layout = layout or DEFAULT_VIEW_CONFIG[module].layout
    return view


def set_module_view(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    member_id: uuid.UUID,
    module: Module | str,
    subviews_enabled: Mapping[str, bool] | Iterable[str],
    layout: str | None = None,
) -> ModuleView:
    """
    Upsert a member's view of one module.

    Members may change their own views; changing someone else's needs a manager.
    """
    module = parse_module(module)
    enabled = validate_subviews_enabled(module, subviews_enabled)

    actor = member_service.get_member(db, org_id, actor_member_id)
    if actor.id != member_id:
        actor = member_service.require_manager(db, org_id, actor_member_id)
    try:
        member = member_service.lock_member(db, org_id, member_id)
        if actor.id != member.id:
            member_service.check_can_modify(actor, member)
        view = _upsert_view(db, member, module, enabled, layout)

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.MODULE_VIEW_UPDATED,
            actor_member_id=actor.id,
            resource_type="member",
            resource_id=member.id,
            meta={"module": module.value, "subviews_enabled": enabled, "layout": view.layout},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return view


# =============================================================================
# Role view templates
# =============================================================================

def _parse_template_role(role: Role | str) -> Role:
    role = parse_role(role)
    if role not in TEMPLATE_ROLES:
        raise InvalidInputError(f"No view templates for role {role.value!r}", field="role")
    return role


def list_role_view_templates(
    db: Session,
    org_id: uuid.UUID,
    role: Role | str | None = None,
) -> list[RoleViewTemplate]:
    query = db.query(RoleViewTemplate).filter(RoleViewTemplate.organization_id == org_id)
    if role is not None:
        query = query.filter(RoleViewTemplate.role == _parse_template_role(role).value)
    return query.order_by(RoleViewTemplate.role, RoleViewTemplate.module).all()


def set_role_view_template(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    role: Role | str,
    module: Module | str,
    subviews_enabled: Mapping[str, bool] | Iterable[str],
    layout: str | None = None,
) -> RoleViewTemplate:
    role = _parse_template_role(role)
    module = parse_module(module)
    enabled = validate_subviews_enabled(module, subviews_enabled)
    actor = member_service.require_manager(db, org_id, actor_member_id)

    try:
        template = db.query(RoleViewTemplate).filter(
            RoleViewTemplate.organization_id == org_id,
            RoleViewTemplate.role == role.value,
            RoleViewTemplate.module == module.value,
        ).with_for_update().first()
        if template is None:
            template = RoleViewTemplate(
                organization_id=org_id,
                role=role.value,
                module=module.value,
            )
            db.add(template)
        template.subviews_enabled = dict(enabled)
        template.layout = layout or DEFAULT_VIEW_CONFIG[module].layout
        template.updated_by_member_id = actor.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    return template


def apply_role_view_template(
    db: Session,
    org_id: uuid.UUID,
    actor_member_id: uuid.UUID,
    role: Role | str,
) -> int:
    """
    Copy every template of ``role`` onto all members with that role.

    One transaction; the owner is skipped. Returns the number of members updated.
    """
    role = _parse_template_role(role)
    actor = member_service.require_manager(db, org_id, actor_member_id)
    templates = list_role_view_templates(db, org_id, role)
    if not templates:
        return 0

    try:
        members = db.query(Member).filter(
            Member.organization_id == org_id,
            Member.role == role.value,
            Member.is_owner.is_(False),
        ).with_for_update().all()

        for member in members:
            for template in templates:
                _upsert_view(
                    db,
                    member,
                    Module(template.module),
                    template.subviews_enabled or {},
                    template.layout,
                )

        audit_service.record_event(
            db=db,
            org_id=org_id,
            action_type=AuditActionType.MODULE_VIEW_UPDATED,
            actor_member_id=actor.id,
            resource_type="role_view_template",
            meta={
                "role": role.value,
                "modules": [template.module for template in templates],
                "members_updated": len(members),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Applied %s view templates to %d member(s)", role.value, len(members))
    return len(members)
