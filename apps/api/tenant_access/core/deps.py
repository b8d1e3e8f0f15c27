"""FastAPI dependencies for identity, authorization, and database access.

Every protected route resolves the caller to a MemberSession first, then
asks the resolver (and, for project-scoped routes, the scope guard) before
the handler touches any resource.
"""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tenant_access.core.catalog import parse_action, parse_module
from tenant_access.core.exceptions import ForbiddenError
from tenant_access.core.security import decode_session_token
from tenant_access.db.enums import Action, MemberStatus, Module, Role
from tenant_access.db.session import SessionLocal
from tenant_access.schemas.auth import MemberSession, TokenPayload


# Cookie and header names
COOKIE_NAME = "access_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    scheme, _, credentials = auth.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(COOKIE_NAME)


def get_token_payload(request: Request) -> TokenPayload:
    """
    Verify the identity provider's token (bearer header or session cookie).

    Raises:
        HTTPException 401: missing, expired or malformed token
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return TokenPayload.model_validate(decode_session_token(token))
    except (jwt.InvalidTokenError, ValidationError):
        raise HTTPException(status_code=401, detail="Invalid session")


def get_current_member(
    payload: TokenPayload = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> MemberSession:
    """
    Resolve the caller to an active member of the token's organization.

    This is the PRIMARY auth dependency for most endpoints.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: No active membership or unknown role
    """
    # Import here to avoid circular imports
    from tenant_access.db.models import Member

    member = db.query(Member).filter(
        Member.organization_id == payload.org_id,
        Member.user_id == payload.sub,
    ).first()
    if not member or member.status != MemberStatus.ACTIVE.value:
        raise HTTPException(status_code=403, detail="No active organization membership")

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(member.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{member.role}'. Contact administrator.",
        )

    return MemberSession(
        member_id=member.id,
        user_id=member.user_id,
        org_id=member.organization_id,
        role=Role(member.role),
        is_owner=member.is_owner,
        email=member.email,
        display_name=member.display_name,
    )


def require_permission(module: Module | str, action: Action | str, subview_key: str | None = None):
    """
    Dependency factory for capability checks.

    Usage:
        @router.get("/x", dependencies=[Depends(require_permission(Module.CRM, Action.READ))])
    """
    module = parse_module(module)
    action = parse_action(action)

    def dependency(
        session: MemberSession = Depends(get_current_member),
        db: Session = Depends(get_db),
    ) -> MemberSession:
        from tenant_access.services import permission_service

        if not permission_service.resolve_permission(
            db, session.org_id, session.member_id, module, action, subview_key
        ):
            raise ForbiddenError(f"Missing permission: {module.value}.{action.value}")
        return session

    return dependency


def require_project_access(module: Module | str, action: Action | str):
    """
    Dependency factory for project-scoped routes.

    Reads ``project_id`` from the path and runs resolver AND scope guard
    before the handler executes.
    """
    module = parse_module(module)
    action = parse_action(action)

    def dependency(
        project_id: UUID,
        session: MemberSession = Depends(get_current_member),
        db: Session = Depends(get_db),
    ) -> MemberSession:
        from tenant_access.services import project_access_service

        project_access_service.authorize(
            db,
            session.org_id,
            session.member_id,
            module,
            action,
            project_id=project_id,
        )
        return session

    return dependency


def require_admin(session: MemberSession = Depends(get_current_member)) -> MemberSession:
    """Owner or admin role."""
    if not session.is_manager:
        raise HTTPException(status_code=403, detail="Admin access required")
    return session


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PUT, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'",
        )
