from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.database import utcnow
from community_engine.core.logger import logger
from community_engine.models.leader import CommunityLeader, LeaderType
from community_engine.services.errors import AuthorizationError, ConflictError, NotFoundError
from community_engine.services.identity import IdentityProvider
from community_engine.services.membership_store import MembershipStore


class LeaderService:
    """Elected representatives (MP, MLA, councillor) attached to communities.

    Leader assignments do not touch membership: a leader need not be a member.
    """

    def __init__(self, db: AsyncSession, identity: Optional[IdentityProvider] = None):
        self.db = db
        self.store = MembershipStore(db)
        self.identity = identity or IdentityProvider(db)

    async def _require_superuser(self, user_id: UUID, action: str) -> None:
        if not await self.identity.is_superuser(user_id):
            logger.warning("leader_action_forbidden", user_id=str(user_id), action=action)
            raise AuthorizationError(f"Only global admins can {action} leaders")

    async def assign_leader(self,
        community_id: UUID,
        email: str,
        leader_type: LeaderType,
        acting_admin_id: UUID
    ) -> CommunityLeader:
        await self._require_superuser(acting_admin_id, "assign")
        leader_type = LeaderType(leader_type)

        try:
            async with self.store.transaction():
                community = await self.store.get_community(community_id)
                if community is None:
                    raise NotFoundError("Community not found")

                user = await self.identity.get_by_email(email)
                if user is None:
                    raise NotFoundError("User with this email was not found")

                if await self.store.get_active_leader(community_id, leader_type) is not None:
                    raise ConflictError(
                        f"{leader_type.value.upper()} is already assigned to this community",
                        community_id=community_id,
                        community_name=community.name,
                    )

                leader = CommunityLeader(
                    community_id=community_id,
                    user_id=user.id,
                    leader_type=leader_type,
                    is_active=True,
                    assigned_by=acting_admin_id,
                    assigned_at=utcnow(),
                )
                await self.store.add(leader)
        except IntegrityError:
            raise ConflictError(
                f"{leader_type.value.upper()} is already assigned to this community",
                community_id=community_id,
            )

        await self.db.refresh(leader)
        logger.info(
            "leader_assigned",
            leader_id=str(leader.id),
            community_id=str(community_id),
            user_id=str(leader.user_id),
            leader_type=leader_type.value,
        )
        return leader

    async def remove_leader(self,
        leader_id: UUID,
        acting_admin_id: UUID
    ) -> CommunityLeader:
        """Soft delete: the assignment is kept with ``is_active = False``."""
        await self._require_superuser(acting_admin_id, "remove")

        async with self.store.transaction():
            leader = await self.store.get_leader(leader_id)
            if leader is None:
                raise NotFoundError("Leader assignment not found")
            leader.is_active = False

        await self.db.refresh(leader)
        logger.info("leader_removed", leader_id=str(leader_id), acting_admin_id=str(acting_admin_id))
        return leader

    async def list_leaders(self, community_id: UUID) -> List[CommunityLeader]:
        return await self.store.list_active_leaders(community_id=community_id)

    async def is_leader(self,
        user_id: UUID,
        community_id: UUID,
        leader_type: Optional[LeaderType] = None
    ) -> bool:
        leaders = await self.store.list_active_leaders(community_id=community_id, user_id=user_id)
        if leader_type is None:
            return bool(leaders)
        return any(leader.leader_type == LeaderType(leader_type) for leader in leaders)

    async def leader_types_for(self, user_id: UUID) -> List[LeaderType]:
        """Distinct leader types the user currently holds, in any community."""
        leaders = await self.store.list_active_leaders(user_id=user_id)
        types: List[LeaderType] = []
        for leader in leaders:
            if leader.leader_type not in types:
                types.append(leader.leader_type)
        return types
