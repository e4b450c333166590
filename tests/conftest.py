# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timedelta
from itertools import count
from typing import Optional
from uuid import UUID

_TMP_DIR = tempfile.mkdtemp(prefix="community-engine-tests-")

# must be set before community_engine.core.config is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/default.db"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["DEBUG"] = "false"
os.environ["LOG_DIR"] = os.path.join(_TMP_DIR, "logs")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from community_engine.core.database import Base, utcnow
from community_engine.models import (
    Community,
    CommunityMembership,
    CommunityType,
    MembershipRole,
    MembershipStatus,
    User,
    UserRole,
)

_USER_COUNTER = count(1)
_COMMUNITY_COUNTER = count(1)


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    # a file database so concurrent sessions really use separate connections
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make(email: Optional[str] = None, role: UserRole = UserRole.USER) -> User:
        number = next(_USER_COUNTER)
        user = User(
            email=email or f"user{number}@example.com",
            full_name=f"Test User {number}",
            role=role,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest_asyncio.fixture()
async def superuser(make_user) -> User:
    return await make_user(email="root@example.com", role=UserRole.ADMIN)


@pytest.fixture()
def make_community(db: AsyncSession) -> Callable[..., Awaitable[Community]]:
    async def _make(
        name: Optional[str] = None,
        admin: Optional[User] = None,
        is_active: bool = True,
        type: CommunityType = CommunityType.LOCAL,
    ) -> Community:
        community = Community(
            name=name or f"Locality {next(_COMMUNITY_COUNTER)}",
            description="Test community",
            pincode="560001",
            admin_id=admin.id if admin else None,
            type=type,
            is_active=is_active,
        )
        db.add(community)
        await db.commit()
        await db.refresh(community)
        return community

    return _make


@pytest.fixture()
def add_membership(db: AsyncSession) -> Callable[..., Awaitable[CommunityMembership]]:
    """Insert a membership row directly, bypassing the state machine."""

    async def _add(
        user: User,
        community_id: UUID,
        status: MembershipStatus = MembershipStatus.APPROVED,
        role: MembershipRole = MembershipRole.MEMBER,
        requested_at: Optional[datetime] = None,
        exclusive: bool = True,
    ) -> CommunityMembership:
        record = CommunityMembership(
            user_id=user.id,
            community_id=community_id,
            status=status,
            role=role,
            exclusive=exclusive,
            requested_at=requested_at or utcnow(),
        )
        db.add(record)
        await db.commit()
        await db.refresh(record)
        return record

    return _add


@pytest.fixture()
def make_admined_community(make_user, make_community, add_membership):
    """Community whose admin holds the matching approved/admin membership."""

    async def _make(admin: Optional[User] = None, **kwargs) -> Community:
        admin = admin or await make_user()
        community = await make_community(admin=admin, **kwargs)
        await add_membership(
            admin,
            community.id,
            role=MembershipRole.ADMIN,
            requested_at=utcnow() - timedelta(days=365),
        )
        return community

    return _make


@pytest_asyncio.fixture()
async def public_community(db: AsyncSession) -> Community:
    from community_engine.services.community_service import CommunityService

    return await CommunityService(db).ensure_public_community()
