from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.logger import logger
from community_engine.models.community_membership import MembershipRole, MembershipStatus
from community_engine.services.errors import NotFoundError, StateError, ValidationError
from community_engine.services.membership_store import MembershipStore


class LeaveOutcomeKind(str, Enum):
    LEFT = "left"
    LEFT_AND_SUCCEEDED = "left_and_succeeded"
    LEFT_AND_COMMUNITY_DEACTIVATED = "left_and_community_deactivated"


@dataclass(frozen=True)
class LeaveOutcome:
    kind: LeaveOutcomeKind
    new_admin_id: Optional[UUID] = None

    @property
    def message(self) -> str:
        if self.kind == LeaveOutcomeKind.LEFT_AND_SUCCEEDED:
            return "Left community. Admin role transferred to the earliest remaining member."
        if self.kind == LeaveOutcomeKind.LEFT_AND_COMMUNITY_DEACTIVATED:
            return "Left community. No members remain, so the community was deactivated."
        return "Left community successfully."


class LeaveCoordinator:
    """Removes an approved member and hands the admin role on when needed."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = MembershipStore(db)

    async def leave(self, user_id: UUID, community_id: UUID) -> LeaveOutcome:
        async with self.store.transaction():
            community = await self.store.get_community(community_id, for_update=True)
            if community is None:
                raise NotFoundError("Community not found")
            if community.is_public:
                raise ValidationError(f'You cannot leave the "{community.name}" community')

            record = await self.store.get_user_record(
                user_id, community_id, statuses=[MembershipStatus.APPROVED]
            )
            # a concurrent leave may have removed the row after it was read
            if record is None or not await self.store.delete_record(record.id, MembershipStatus.APPROVED):
                raise NotFoundError("You are not a member of this community")

            # re-read after the write: a succession that just committed may have moved the seat
            community = await self.store.get_community(community_id, for_update=True)
            if community.admin_id != user_id:
                outcome = LeaveOutcome(LeaveOutcomeKind.LEFT)
            else:
                outcome = await self._hand_over_admin(community_id, user_id)

        logger.info(
            "member_left",
            user_id=str(user_id),
            community_id=str(community_id),
            outcome=outcome.kind.value,
            new_admin_id=str(outcome.new_admin_id) if outcome.new_admin_id else None,
        )
        return outcome

    async def _hand_over_admin(self, community_id: UUID, leaving_admin_id: UUID) -> LeaveOutcome:
        successor = await self.store.earliest_approved_member(community_id, excluding_user_id=leaving_admin_id)

        if successor is None:
            swapped = await self.store.replace_admin(
                community_id, leaving_admin_id, None, deactivate=True
            )
            if not swapped:
                raise StateError("Community admin changed concurrently")
            return LeaveOutcome(LeaveOutcomeKind.LEFT_AND_COMMUNITY_DEACTIVATED)

        swapped = await self.store.replace_admin(community_id, leaving_admin_id, successor.user_id)
        if not swapped:
            raise StateError("Community admin changed concurrently")
        await self.store.set_role(successor.id, MembershipRole.ADMIN)

        logger.info(
            "admin_succeeded",
            community_id=str(community_id),
            previous_admin_id=str(leaving_admin_id),
            new_admin_id=str(successor.user_id),
        )
        return LeaveOutcome(LeaveOutcomeKind.LEFT_AND_SUCCEEDED, new_admin_id=successor.user_id)

    async def withdraw_request(self, user_id: UUID, community_id: UUID) -> None:
        """Cancel the caller's pending request for a community."""
        async with self.store.transaction():
            record = await self.store.get_user_record(
                user_id, community_id, statuses=[MembershipStatus.PENDING]
            )
            if record is None or not await self.store.delete_record(record.id, MembershipStatus.PENDING):
                raise NotFoundError("No pending request for this community")

        logger.info("membership_request_withdrawn", user_id=str(user_id), community_id=str(community_id))
