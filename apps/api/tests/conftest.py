"""
Test configuration and fixtures.

Provides:
- A fresh SQLite schema per test (services commit, so no outer-transaction rollback)
- An organization with an owner, plus admin/member/guest members joined by invitation
- JWT token minting and HTTPX AsyncClient with proper headers
"""
import base64
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

_DB_DIR = tempfile.mkdtemp(prefix="tenant-access-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret-for-session-tokens-0123456789"
os.environ["EMAIL_PROVIDER_API_KEY"] = ""
os.environ["EMAIL_WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(b"test-webhook-signing-key").decode()

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from tenant_access.core.deps import COOKIE_NAME, get_db
from tenant_access.core.rate_limit import limiter
from tenant_access.core.security import create_session_token
from tenant_access.db.base import Base
from tenant_access.db.enums import Role
from tenant_access.db.models import Member, Organization
from tenant_access.db.session import SessionLocal, engine
from tenant_access.main import app
from tenant_access.services import invite_service, organization_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a freshly created schema.

    Services own their transactions (commit/rollback), so isolation comes
    from rebuilding the tables instead of a rolled-back outer transaction.
    """
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def other_session(db: Session) -> Generator[Session, None, None]:
    """A second, independent session on the same database."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


# =============================================================================
# Tenant Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    org, _ = organization_service.bootstrap_organization(
        db,
        name="Test Organization",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        owner_user_id=uuid.uuid4(),
        owner_email="owner@test.com",
        owner_display_name="Owner",
    )
    return org


@pytest.fixture(scope="function")
def owner(db: Session, test_org: Organization) -> Member:
    return db.query(Member).filter(
        Member.organization_id == test_org.id,
        Member.is_owner.is_(True),
    ).one()


@pytest.fixture(scope="function")
def make_member(db: Session, test_org: Organization, owner: Member) -> Callable[..., Member]:
    """Invite and accept a new member with the given role."""
    def _make(role: Role = Role.MEMBER, email: str | None = None) -> Member:
        email = email or f"{role.value}-{uuid.uuid4().hex[:8]}@test.com"
        created = invite_service.create_invitation(db, test_org.id, owner.id, email, role)
        return invite_service.accept_invitation(db, created.token, uuid.uuid4(), email.split("@")[0])
    return _make


@pytest.fixture(scope="function")
def admin(make_member) -> Member:
    return make_member(Role.ADMIN)


@pytest.fixture(scope="function")
def member(make_member) -> Member:
    return make_member(Role.MEMBER)


@pytest.fixture(scope="function")
def guest(make_member) -> Member:
    return make_member(Role.GUEST)


# =============================================================================
# Client Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    member: Member
    token: str
    cookie_name: str = COOKIE_NAME


def auth_for(member: Member) -> TestAuth:
    return TestAuth(
        member=member,
        token=create_session_token(member.user_id, member.organization_id),
    )


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Requested-With": "XMLHttpRequest"},
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client_for(client: AsyncClient) -> Callable[[Member], dict]:
    """
    Per-call auth for the shared client.

    Usage:
        await client.get("/permissions/me", **client_for(member))
    """
    def _kwargs(member: Member) -> dict:
        return {"headers": {"Authorization": f"Bearer {auth_for(member).token}"}}
    return _kwargs


@pytest.fixture(scope="function")
async def owner_client(db: Session, owner: Member) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient authenticated as the owner with JWT cookie and CSRF header."""
    def override_get_db():
        yield db

    auth = auth_for(owner)
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={auth.cookie_name: auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},
    ) as c:
        yield c
    app.dependency_overrides.clear()
