"""Module view router - per-member subview layout and role templates."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_current_member, get_db, require_admin, require_csrf_header
from tenant_access.db.enums import Module, Role
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import module_view_service
from tenant_access.services.module_view_service import EffectiveModuleView


router = APIRouter(prefix="/module-views", tags=["Module Views"])


# =============================================================================
# Schemas
# =============================================================================

class ModuleViewRead(BaseModel):
    module: Module
    layout: str
    subviews_enabled: dict[str, bool]
    is_default: bool


class ModuleViewWrite(BaseModel):
    subviews_enabled: dict[str, bool]
    layout: str | None = None


class RoleViewTemplateRead(BaseModel):
    id: UUID
    role: Role
    module: Module
    subviews_enabled: dict[str, bool]
    layout: str | None
    updated_by_member_id: UUID | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class ApplyTemplateResponse(BaseModel):
    role: Role
    members_updated: int


def _view_read(view: EffectiveModuleView) -> ModuleViewRead:
    return ModuleViewRead(
        module=view.module,
        layout=view.layout,
        subviews_enabled=view.subviews_enabled,
        is_default=view.is_default,
    )


# =============================================================================
# Own views
# =============================================================================

@router.get("/me", response_model=list[ModuleViewRead])
def list_my_views(
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    views = module_view_service.list_module_views(db, session.org_id, session.member_id)
    return [_view_read(v) for v in views]


@router.get("/me/{module}", response_model=ModuleViewRead)
def read_my_view(
    module: str,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    view = module_view_service.get_effective_module_view(db, session.org_id, session.member_id, module)
    return _view_read(view)


@router.put("/me/{module}", response_model=ModuleViewRead, dependencies=[Depends(require_csrf_header)])
def update_my_view(
    module: str,
    data: ModuleViewWrite,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    module_view_service.set_module_view(
        db, session.org_id, session.member_id, session.member_id, module, data.subviews_enabled, data.layout
    )
    view = module_view_service.get_effective_module_view(db, session.org_id, session.member_id, module)
    return _view_read(view)


# =============================================================================
# Other members (owner/admin)
# =============================================================================

@router.get("/members/{member_id}", response_model=list[ModuleViewRead])
def list_member_views(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    views = module_view_service.list_module_views(db, session.org_id, member_id)
    return [_view_read(v) for v in views]


@router.put(
    "/members/{member_id}/{module}",
    response_model=ModuleViewRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_member_view(
    member_id: UUID,
    module: str,
    data: ModuleViewWrite,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    module_view_service.set_module_view(
        db, session.org_id, session.member_id, member_id, module, data.subviews_enabled, data.layout
    )
    view = module_view_service.get_effective_module_view(db, session.org_id, member_id, module)
    return _view_read(view)


# =============================================================================
# Role templates (owner/admin)
# =============================================================================

@router.get("/templates", response_model=list[RoleViewTemplateRead])
def list_templates(
    role: str | None = None,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return module_view_service.list_role_view_templates(db, session.org_id, role)


@router.put(
    "/templates/{role}/{module}",
    response_model=RoleViewTemplateRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_template(
    role: str,
    module: str,
    data: ModuleViewWrite,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return module_view_service.set_role_view_template(
        db, session.org_id, session.member_id, role, module, data.subviews_enabled, data.layout
    )


@router.post(
    "/templates/{role}/apply",
    response_model=ApplyTemplateResponse,
    dependencies=[Depends(require_csrf_header)],
)
def apply_template(
    role: str,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Copy the role's templates onto every member with that role."""
    if not Role.has_value(role):
        raise HTTPException(status_code=422, detail=f"Unknown role: {role}")
    updated = module_view_service.apply_role_view_template(db, session.org_id, session.member_id, role)
    return ApplyTemplateResponse(role=Role(role), members_updated=updated)
