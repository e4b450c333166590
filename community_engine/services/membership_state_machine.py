"""Join-request lifecycle for a single membership record.

    pending --approve--> approved   (left only by deletion, see LeaveCoordinator)
    pending --reject---> rejected   (terminal; a new join creates a fresh row)

Every transition runs inside one ``MembershipStore.transaction()``. The
single-active-membership rule is checked by ``InvariantEnforcer`` and, for
writers racing each other, by the ``uq_membership_one_active_per_user`` index:
whichever insert loses the race gets an ``IntegrityError`` that is resolved by
re-reading the winner.
"""

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
from community_engine.schemas.membership import Decision, JoinRequest
from community_engine.services.errors import (
    AuthorizationError,
    NotFoundError,
    StateError,
)
from community_engine.services.identity import IdentityProvider
from community_engine.services.invariant_enforcer import InvariantEnforcer, build_conflict
from community_engine.services.membership_store import MembershipStore


class MembershipStateMachine:
    def __init__(self, db: AsyncSession, identity: Optional[IdentityProvider] = None):
        self.db = db
        self.store = MembershipStore(db)
        self.enforcer = InvariantEnforcer(self.store)
        self.identity = identity or IdentityProvider(db)

    # ------------------------------------------------------------------
    # join
    # ------------------------------------------------------------------

    async def request_join(
        self,
        user_id: UUID,
        community_id: UUID,
        details: Optional[JoinRequest] = None,
    ) -> CommunityMembership:
        """Create a pending join request, or return the user's existing one.

        Raises ``NotFoundError`` for a missing or inactive community and
        ``ConflictError`` when the user is active in a different community.
        """
        details = details or JoinRequest()

        try:
            async with self.store.transaction():
                community = await self.store.get_community(community_id)
                if community is None:
                    raise NotFoundError("Community not found")

                if community.is_public:
                    record = await self._ensure_public_record(user_id, community)
                else:
                    record = await self._create_pending(user_id, community, details)
        except IntegrityError:
            # a concurrent request committed first
            return await self._resolve_lost_race(user_id, community_id)

        await self.db.refresh(record)
        return record

    async def _create_pending(
        self,
        user_id: UUID,
        community: Community,
        details: JoinRequest,
    ) -> CommunityMembership:
        if not community.is_active:
            raise NotFoundError("Community not found or no longer active")

        existing = await self.store.get_user_record(user_id, community.id)
        if existing is not None:
            logger.info(
                "membership_request_duplicate",
                user_id=str(user_id),
                community_id=str(community.id),
                status=existing.status.value,
            )
            return existing

        await self.enforcer.assert_no_active_membership(user_id, excluding_community_id=community.id)

        record = CommunityMembership(
            user_id=user_id,
            community_id=community.id,
            status=MembershipStatus.PENDING,
            role=details.role,
            exclusive=True,
            block_id=details.block_id,
            block_name=details.block_name,
            address=details.address,
            requested_at=utcnow(),
        )
        await self.store.add(record)

        logger.info(
            "membership_requested",
            user_id=str(user_id),
            community_id=str(community.id),
            record_id=str(record.id),
        )
        return record

    async def _ensure_public_record(self, user_id: UUID, community: Community) -> CommunityMembership:
        existing = await self.store.get_user_record(user_id, community.id, statuses=list(MembershipStatus))
        if existing is not None:
            if existing.status != MembershipStatus.APPROVED:
                await self.store.transition_status(existing.id, existing.status, MembershipStatus.APPROVED)
            return existing

        record = CommunityMembership(
            user_id=user_id,
            community_id=community.id,
            status=MembershipStatus.APPROVED,
            role=MembershipRole.MEMBER,
            exclusive=False,
            requested_at=utcnow(),
        )
        await self.store.add(record)
        logger.info("public_membership_created", user_id=str(user_id), community_id=str(community.id))
        return record

    async def _resolve_lost_race(self, user_id: UUID, community_id: UUID) -> CommunityMembership:
        same_community = await self.store.get_user_record(user_id, community_id)
        if same_community is not None:
            return same_community

        winners = await self.store.find_active_records(user_id, excluding_community_id=community_id)
        if not winners:
            # the competing row is gone again; the caller may simply retry
            raise StateError("Membership changed concurrently, please retry")

        winner = winners[0]
        community = await self.store.get_community(winner.community_id)
        logger.warning(
            "membership_conflict_concurrent",
            user_id=str(user_id),
            community_id=str(community_id),
            conflicting_community_id=str(winner.community_id),
        )
        raise build_conflict(
            winner.community_id,
            community.name if community else None,
            winner.status.value,
        )

    async def ensure_public_membership(self, user_id: UUID) -> Optional[CommunityMembership]:
        """Give the user their implicit row in the public community, if one is configured."""
        public = await self.store.get_public_community()
        if public is None:
            logger.warning("public_community_missing", user_id=str(user_id))
            return None
        return await self.request_join(user_id, public.id)

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    async def decide(
        self,
        record_id: UUID,
        decision: Decision,
        acting_admin_id: UUID,
    ) -> CommunityMembership:
        """Approve or reject a pending request as the community admin or a superuser."""
        decision = Decision(decision)
        target = (
            MembershipStatus.APPROVED if decision == Decision.APPROVE else MembershipStatus.REJECTED
        )

        async with self.store.transaction():
            record = await self.store.get_record(record_id)
            if record is None:
                raise NotFoundError("Membership request not found")

            # same lock order as LeaveCoordinator.leave: community row, then membership row
            community = await self.store.get_community(record.community_id, for_update=True)
            if community is None:
                raise NotFoundError("Community for this request no longer exists")
            record = await self.store.get_record(record_id, for_update=True)
            if record is None:
                raise NotFoundError("Membership request not found")

            if community.admin_id != acting_admin_id and not await self.identity.is_superuser(acting_admin_id):
                raise AuthorizationError(
                    "Only the community admin or a global admin can decide membership requests"
                )

            if record.status != MembershipStatus.PENDING:
                raise StateError(
                    f"Request has already been {record.status.value}",
                    status=record.status.value,
                )

            if target == MembershipStatus.APPROVED:
                await self.enforcer.assert_no_active_membership(
                    record.user_id,
                    excluding_community_id=record.community_id,
                )

            changed = await self.store.transition_status(
                record.id,
                MembershipStatus.PENDING,
                target,
                decided_by=acting_admin_id,
            )
            if not changed:
                raise StateError("Request was decided concurrently")

            promoted = False
            if target == MembershipStatus.APPROVED and not community.is_public:
                promoted = await self._claim_vacant_admin(record)

        await self.db.refresh(record)
        if promoted:
            logger.info(
                "admin_seat_filled",
                community_id=str(record.community_id),
                new_admin_id=str(record.user_id),
            )
        logger.info(
            "membership_decided",
            record_id=str(record.id),
            community_id=str(record.community_id),
            user_id=str(record.user_id),
            decision=decision.value,
            acting_admin_id=str(acting_admin_id),
        )
        return record

    async def _claim_vacant_admin(self, record: CommunityMembership) -> bool:
        """Make a newly approved member the admin of a community that has none.

        Compare-and-set against ``admin_id IS NULL``, so an approval that lands
        after the last admin left never leaves members without an admin.
        Reactivation is left to the sweep.
        """
        if not await self.store.replace_admin(record.community_id, None, record.user_id):
            return False
        await self.store.set_role(record.id, MembershipRole.ADMIN)
        return True
