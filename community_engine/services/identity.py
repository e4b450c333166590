from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.models.user import User, UserRole


class IdentityProvider:
    """Resolves contact identifiers and roles against the local user directory."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def resolve_user_id(self, identifier: str) -> Optional[UUID]:
        """Map an e-mail address or a user id string to a known user id."""
        identifier = identifier.strip()
        if "@" in identifier:
            user = await self.get_by_email(identifier)
            return user.id if user else None

        try:
            user_id = UUID(identifier)
        except ValueError:
            return None
        user = await self.get_by_id(user_id)
        return user.id if user else None

    async def is_superuser(self, user_id: Optional[UUID]) -> bool:
        if user_id is None:
            return False
        stmt = select(User.role).where(User.id == user_id)
        role = await self.db.scalar(stmt)
        return role == UserRole.ADMIN
