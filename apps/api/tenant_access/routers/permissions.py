"""Permissions router - capability matrix, overrides and packs.

Endpoints for:
- Browsing the permission pack catalog
- Reading effective matrices and single verdicts
- Managing explicit overrides and applying packs (owner/admin)
- The gateway authorize check used by resource services
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenant_access.core.deps import (
    get_current_member,
    get_db,
    require_admin,
    require_csrf_header,
)
from tenant_access.core.permission_packs import PermissionPack, get_all_packs, get_pack
from tenant_access.db.enums import Action, Module, PermissionScope
from tenant_access.schemas.auth import MemberSession
from tenant_access.services import permission_service, project_access_service


router = APIRouter(prefix="/permissions", tags=["Permissions"])


# =============================================================================
# Schemas
# =============================================================================

class PackEntryRead(BaseModel):
    module: Module
    actions: list[Action]
    subviews: list[str]


class PackRead(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    version: int
    entries: list[PackEntryRead]
    default_subviews: dict[str, list[str]]


class MatrixRead(BaseModel):
    member_id: UUID
    permission_pack_id: str | None = None
    matrix: dict[str, dict[str, bool]]


class ResolveRead(BaseModel):
    member_id: UUID
    module: Module
    action: Action
    subview_key: str | None
    allowed: bool


class PermissionRead(BaseModel):
    id: UUID
    module: str
    action: str
    scope: str
    subview_key: str | None
    allowed: bool

    model_config = {"from_attributes": True}


class PermissionWrite(BaseModel):
    module: str
    action: str
    allowed: bool
    scope: PermissionScope = PermissionScope.MODULE
    subview_key: str | None = None


class BulkUpdateRequest(BaseModel):
    updates: list[PermissionWrite] = Field(min_length=1, max_length=500)


class ApplyPackRequest(BaseModel):
    pack_id: str


class AuthorizeRequest(BaseModel):
    module: str
    action: str
    project_id: UUID | None = None
    subview_key: str | None = None
    required_level: str | None = None


class AuthorizeRead(BaseModel):
    allowed: bool
    member_id: UUID


def _pack_read(pack: PermissionPack) -> PackRead:
    return PackRead(
        id=pack.id,
        name=pack.name,
        description=pack.description,
        icon=pack.icon,
        version=pack.version,
        entries=[
            PackEntryRead(module=e.module, actions=list(e.actions), subviews=list(e.subviews))
            for e in pack.entries
        ],
        default_subviews={m.value: list(keys) for m, keys in pack.default_subviews.items()},
    )


def _matrix_read(member_id: UUID, matrix: dict, pack_id: str | None = None) -> MatrixRead:
    return MatrixRead(
        member_id=member_id,
        permission_pack_id=pack_id,
        matrix={
            module.value: {action.value: allowed for action, allowed in actions.items()}
            for module, actions in matrix.items()
        },
    )


def _require_self_or_admin(session: MemberSession, member_id: UUID) -> None:
    if session.member_id != member_id and not session.is_manager:
        raise HTTPException(status_code=403, detail="Admin access required")


# =============================================================================
# Pack Catalog
# =============================================================================

@router.get("/packs", response_model=list[PackRead])
def list_packs(session: MemberSession = Depends(get_current_member)):
    """List the permission pack catalog."""
    return [_pack_read(pack) for pack in get_all_packs()]


@router.get("/packs/{pack_id}", response_model=PackRead)
def read_pack(pack_id: str, session: MemberSession = Depends(get_current_member)):
    return _pack_read(get_pack(pack_id))


# =============================================================================
# Verdicts
# =============================================================================

@router.get("/me", response_model=MatrixRead)
def my_matrix(
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    """Effective Module x Action matrix of the caller."""
    matrix = permission_service.get_effective_matrix(db, session.org_id, session.member_id)
    return _matrix_read(session.member_id, matrix)


@router.get("/members/{member_id}/matrix", response_model=MatrixRead)
def member_matrix(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    _require_self_or_admin(session, member_id)
    matrix = permission_service.get_effective_matrix(db, session.org_id, member_id)
    return _matrix_read(member_id, matrix)


@router.get("/members/{member_id}/resolve", response_model=ResolveRead)
def resolve(
    member_id: UUID,
    module: str = Query(...),
    action: str = Query(...),
    subview_key: str | None = Query(None),
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    """Single verdict with full precedence (subview > module > pack)."""
    _require_self_or_admin(session, member_id)
    allowed = permission_service.resolve_permission(
        db, session.org_id, member_id, module, action, subview_key
    )
    return ResolveRead(
        member_id=member_id,
        module=Module(module),
        action=Action(action),
        subview_key=subview_key,
        allowed=allowed,
    )


@router.post("/authorize", response_model=AuthorizeRead)
def authorize(
    data: AuthorizeRequest,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(get_current_member),
):
    """
    Gateway check for resource services: capability AND project scope.

    403 when denied; never reveals whether the project exists.
    """
    project_access_service.authorize(
        db,
        session.org_id,
        session.member_id,
        data.module,
        data.action,
        project_id=data.project_id,
        subview_key=data.subview_key,
        required_level=data.required_level,
    )
    return AuthorizeRead(allowed=True, member_id=session.member_id)


# =============================================================================
# Overrides (owner/admin)
# =============================================================================

@router.get("/members/{member_id}/overrides", response_model=list[PermissionRead])
def list_overrides(
    member_id: UUID,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    return permission_service.list_member_permissions(db, session.org_id, member_id)


@router.put(
    "/members/{member_id}/overrides",
    response_model=PermissionRead,
    dependencies=[Depends(require_csrf_header)],
)
def set_override(
    member_id: UUID,
    data: PermissionWrite,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    rows = permission_service.bulk_update_permissions(
        db, session.org_id, session.member_id, member_id, [data]
    )
    return rows[0]


@router.delete("/members/{member_id}/overrides", dependencies=[Depends(require_csrf_header)])
def clear_override(
    member_id: UUID,
    module: str = Query(...),
    action: str = Query(...),
    subview_key: str | None = Query(None),
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    cleared = permission_service.clear_permission(
        db, session.org_id, session.member_id, member_id, module, action, subview_key
    )
    return {"cleared": cleared}


@router.post(
    "/members/{member_id}/bulk",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_csrf_header)],
)
def bulk_update(
    member_id: UUID,
    data: BulkUpdateRequest,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Validate the whole batch, then write it in one transaction."""
    return permission_service.bulk_update_permissions(
        db, session.org_id, session.member_id, member_id, data.updates
    )


@router.post(
    "/members/{member_id}/apply-pack",
    response_model=MatrixRead,
    dependencies=[Depends(require_csrf_header)],
)
def apply_pack(
    member_id: UUID,
    data: ApplyPackRequest,
    db: Session = Depends(get_db),
    session: MemberSession = Depends(require_admin),
):
    """Replace the member's explicit permissions and views with a pack."""
    member = permission_service.apply_permission_pack(
        db, session.org_id, session.member_id, member_id, data.pack_id
    )
    matrix = permission_service.get_effective_matrix(db, session.org_id, member.id)
    return _matrix_read(member.id, matrix, member.permission_pack_id)
