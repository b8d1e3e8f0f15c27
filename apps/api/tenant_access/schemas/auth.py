"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from tenant_access.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded identity token payload."""
    sub: UUID  # user_id from the identity provider
    org_id: UUID


class MemberSession(BaseModel):
    """
    Session context for authenticated requests.

    Returned by get_current_member; carries everything the gateway needs
    to call the resolver and the scope guard.
    """
    member_id: UUID
    user_id: UUID
    org_id: UUID
    role: Role
    is_owner: bool = False
    email: str
    display_name: str | None = None

    @property
    def is_manager(self) -> bool:
        return self.is_owner or self.role == Role.ADMIN
