from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.database import utcnow
from community_engine.core.logger import logger
from community_engine.models.community import Community
from community_engine.models.community_membership import (
    CommunityMembership,
    MembershipRole,
    MembershipStatus,
)
from community_engine.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
)
from community_engine.services.identity import IdentityProvider
from community_engine.services.invariant_enforcer import InvariantEnforcer
from community_engine.services.membership_store import MembershipStore


class PresidentAssignment:
    """Superuser-only replacement of a community's admin ("president").

    The new admin always ends up with an approved membership carrying the
    admin role, so a community admin is never outside their own community.
    """

    def __init__(self, db: AsyncSession, identity: Optional[IdentityProvider] = None):
        self.db = db
        self.store = MembershipStore(db)
        self.enforcer = InvariantEnforcer(self.store)
        self.identity = identity or IdentityProvider(db)

    async def assign_president(
        self,
        community_id: UUID,
        target_identifier: str,
        acting_admin_id: UUID,
    ) -> Community:
        if not await self.identity.is_superuser(acting_admin_id):
            raise AuthorizationError("Only global admins can assign a community president")

        try:
            async with self.store.transaction():
                community = await self.store.get_community(community_id, for_update=True)
                if community is None:
                    raise NotFoundError("Community not found")

                target_id = await self.identity.resolve_user_id(target_identifier)
                if target_id is None:
                    raise NotFoundError(f"No user found for '{target_identifier}'")

                previous_admin_id = community.admin_id
                if previous_admin_id == target_id:
                    return community

                await self.enforcer.assert_no_active_membership(
                    target_id, excluding_community_id=community_id
                )
                await self._upsert_admin_record(community_id, target_id, acting_admin_id)

                if previous_admin_id is not None:
                    previous = await self.store.get_user_record(
                        previous_admin_id, community_id, statuses=[MembershipStatus.APPROVED]
                    )
                    if previous is not None:
                        await self.store.set_role(previous.id, MembershipRole.MEMBER)

                swapped = await self.store.replace_admin(community_id, previous_admin_id, target_id)
                if not swapped:
                    raise StateError("Community admin changed concurrently")
        except IntegrityError:
            raise ConflictError(
                "The selected user joined another community while being assigned",
            )

        await self.db.refresh(community)
        logger.info(
            "president_assigned",
            community_id=str(community_id),
            new_admin_id=str(target_id),
            previous_admin_id=str(previous_admin_id) if previous_admin_id else None,
            acting_admin_id=str(acting_admin_id),
        )
        return community

    async def _upsert_admin_record(
        self,
        community_id: UUID,
        user_id: UUID,
        acting_admin_id: UUID,
    ) -> None:
        record = await self.store.get_user_record(user_id, community_id)
        if record is None:
            await self.store.add(
                CommunityMembership(
                    user_id=user_id,
                    community_id=community_id,
                    status=MembershipStatus.APPROVED,
                    role=MembershipRole.ADMIN,
                    exclusive=True,
                    requested_at=utcnow(),
                    decided_by=acting_admin_id,
                )
            )
            return

        if record.status == MembershipStatus.PENDING:
            await self.store.transition_status(
                record.id,
                MembershipStatus.PENDING,
                MembershipStatus.APPROVED,
                decided_by=acting_admin_id,
            )
        await self.store.set_role(record.id, MembershipRole.ADMIN)
