from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.config import settings
from community_engine.core.database import utcnow
from community_engine.core.logger import logger
from community_engine.models.community import Community, CommunityType
from community_engine.models.community_membership import (
    CommunityMembership,
    MembershipRole,
    MembershipStatus,
)
from community_engine.models.user import User
from community_engine.schemas.community import CommunityCreate
from community_engine.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from community_engine.services.identity import IdentityProvider
from community_engine.services.invariant_enforcer import InvariantEnforcer
from community_engine.services.membership_store import MembershipStore


class CommunityService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = MembershipStore(db)
        self.enforcer = InvariantEnforcer(self.store)
        self.identity = IdentityProvider(db)

    async def create_community(self,
        data: CommunityCreate,
        creator: User
    ) -> Community:
        """Create a local community.

        Global admins create communities without taking a seat in them. Anyone
        else becomes the admin of the new community, which needs them to be
        free of any other active membership.
        """
        as_superuser = creator.is_superuser
        creator_id = creator.id

        try:
            async with self.store.transaction():
                if await self.store.get_community_by_name(data.name) is not None:
                    logger.warning("community_creation_failed_name_exists", name=data.name, creator_id=str(creator_id))
                    raise ValidationError("Community with this name already exists")

                if not as_superuser:
                    await self.enforcer.assert_no_active_membership(creator_id)

                community = Community(
                    name=data.name,
                    description=data.description,
                    location=data.location,
                    pincode=data.pincode,
                    type=CommunityType.LOCAL,
                    admin_id=None if as_superuser else creator_id,
                    is_active=True,
                )
                await self.store.add(community)

                if not as_superuser:
                    await self.store.add(
                        CommunityMembership(
                            user_id=creator_id,
                            community_id=community.id,
                            status=MembershipStatus.APPROVED,
                            role=MembershipRole.ADMIN,
                            exclusive=True,
                            requested_at=utcnow(),
                            decided_by=creator_id,
                        )
                    )
        except IntegrityError:
            logger.error("community_creation_failed_integrity", name=data.name, creator_id=str(creator_id), exc_info=True)
            if await self.store.get_community_by_name(data.name) is not None:
                raise ValidationError("Community with this name already exists")
            raise ConflictError("You joined another community while this one was being created")

        await self.db.refresh(community)
        logger.info(
            "community_created",
            community_id=str(community.id),
            name=community.name,
            creator_id=str(creator_id),
            admin_id=str(community.admin_id) if community.admin_id else None,
        )
        return community

    async def ensure_public_community(self) -> Community:
        """Create the configured public community if it does not exist yet."""
        existing = await self.store.get_public_community()
        if existing is not None:
            return existing

        try:
            async with self.store.transaction():
                community = Community(
                    name=settings.PUBLIC_COMMUNITY_NAME,
                    description=f"Everyone in {settings.PUBLIC_COMMUNITY_NAME}",
                    type=CommunityType.PUBLIC,
                    is_active=True,
                )
                await self.store.add(community)
        except IntegrityError:
            # created by a concurrent worker
            community = await self.store.get_public_community()
            if community is None:
                raise
            return community

        logger.info("public_community_created", community_id=str(community.id), name=community.name)
        return community

    async def get_by_id(self, community_id: UUID) -> Optional[Community]:
        return await self.store.get_community(community_id)

    async def list_joinable(self,
        limit: int = 50,
        offset: int = 0
    ) -> List[Community]:
        """Active communities only"""
        return await self.store.list_active_communities(limit=limit, offset=offset)

    async def list_members(self, community_id: UUID) -> List[CommunityMembership]:
        if await self.store.get_community(community_id) is None:
            raise NotFoundError("Community not found")
        return await self.store.list_community_records(community_id, MembershipStatus.APPROVED)

    async def list_pending_requests(self,
        community_id: UUID,
        acting_user_id: UUID
    ) -> List[CommunityMembership]:
        community = await self.store.get_community(community_id)
        if community is None:
            raise NotFoundError("Community not found")
        if community.admin_id != acting_user_id and not await self.identity.is_superuser(acting_user_id):
            raise AuthorizationError("Only the community admin can view join requests")
        return await self.store.list_community_records(community_id, MembershipStatus.PENDING)

    async def list_user_records(self, user_id: UUID) -> List[CommunityMembership]:
        return await self.store.list_user_records(user_id)
