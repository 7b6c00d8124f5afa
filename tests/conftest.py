"""
Shared fixtures: a throwaway SQLite database per test, a seeded clinic and
an HTTP client bound to the app.
"""
import os

os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["AUTO_SEED_PERMISSIONS"] = "0"

from types import SimpleNamespace

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.base import Base
from app.core.database.engine import get_db
from app.features.organizations.models import Organization
from app.features.permissions.models import Permission
from app.features.permissions.resolver import permission_cache
from app.features.permissions.seed import ensure_default_permissions
from app.features.users.auth import Actor
from app.features.users.models import User
from app.main import app


@pytest.fixture(autouse=True)
def clear_permission_cache():
    """Role ids repeat across test databases; never share cached sets."""
    permission_cache.clear()
    yield
    permission_cache.clear()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def clinic(session_factory):
    """
    Two organizations with staff, and the canonical permissions.

    Org 1 (Riverside): admin 1, doctor 4, receptionist 5, nurses 42 and 43,
    deactivated admin 6. Org 2 (Hilltop): admin 2, nurse 44.
    Platform operator 3 belongs to no organization. User 7 carries the admin
    label but no organization and no platform flag.
    """
    async with session_factory() as session:
        await ensure_default_permissions(session)
        session.add_all([
            Organization(id=1, name="Riverside Clinic"),
            Organization(id=2, name="Hilltop Clinic"),
        ])
        session.add_all([
            User(id=1, username="riverside_admin", organization_id=1, legacy_role="admin"),
            User(id=2, username="hilltop_admin", organization_id=2, legacy_role="admin"),
            User(id=3, username="platform_ops", organization_id=None, legacy_role="superadmin",
                 is_platform_admin=True),
            User(id=7, username="unassigned_admin", organization_id=None, legacy_role="admin"),
            User(id=4, username="dr_okafor", organization_id=1, legacy_role="doctor"),
            User(id=5, username="front_desk", organization_id=1, legacy_role="receptionist"),
            User(id=6, username="former_admin", organization_id=1, legacy_role="admin", is_active=False),
            User(id=42, username="nurse_ames", organization_id=1, legacy_role="nurse"),
            User(id=43, username="nurse_baker", organization_id=1, legacy_role=None),
            User(id=44, username="nurse_chen", organization_id=2, legacy_role="nurse"),
        ])
        await session.commit()

        result = await session.execute(select(Permission.name, Permission.id))
        permissions = {name: pid for name, pid in result.all()}

    return SimpleNamespace(
        org_a=1,
        org_b=2,
        admin_a=Actor(id=1, organization_id=1, legacy_role="admin", role_id=None),
        admin_b=Actor(id=2, organization_id=2, legacy_role="admin", role_id=None),
        platform=Actor(id=3, organization_id=None, legacy_role="superadmin", role_id=None,
                       is_platform_level=True),
        perm=permissions,
    )


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""
    def _headers(user_id: int) -> dict:
        token = jwt.encode({"sub": str(user_id)}, "test-secret", algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _headers
