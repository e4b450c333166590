from typing import Optional
from uuid import UUID

from community_engine.core.logger import logger
from community_engine.services.errors import ConflictError
from community_engine.services.membership_store import MembershipStore


class InvariantEnforcer:
    """Guards the one-active-membership-per-user rule.

    The public community never counts (its rows are stored non-exclusive).
    Callers must invoke the check inside the same ``MembershipStore.transaction()``
    as the write it protects; the partial unique index
    ``uq_membership_one_active_per_user`` backs it up for concurrent writers.
    """

    def __init__(self, store: MembershipStore):
        self.store = store

    async def assert_no_active_membership(
        self,
        user_id: UUID,
        excluding_community_id: Optional[UUID] = None,
    ) -> None:
        records = await self.store.find_active_records(user_id, excluding_community_id)
        if not records:
            return

        conflicting = records[0]
        community = await self.store.get_community(conflicting.community_id)
        community_name = community.name if community else None
        status = conflicting.status.value

        logger.warning(
            "membership_conflict",
            user_id=str(user_id),
            conflicting_community_id=str(conflicting.community_id),
            status=status,
        )
        raise build_conflict(conflicting.community_id, community_name, status)


def build_conflict(community_id: UUID, community_name: Optional[str], status: str) -> ConflictError:
    label = f'"{community_name}"' if community_name else "another community"
    if status == "approved":
        message = (
            f"You already have an active membership in {label}. "
            "Please leave your current community first."
        )
    else:
        message = (
            f"You already have a pending request for {label}. "
            "Please wait for a decision or withdraw your request first."
        )
    return ConflictError(
        message,
        community_id=community_id,
        community_name=community_name,
        status=status,
    )
