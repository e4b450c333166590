from typing import Dict, Iterable, Optional
from uuid import UUID

from community_engine.models.community_membership import CommunityMembership, MembershipStatus


STATUS_RANK = {
    MembershipStatus.APPROVED: 3,
    MembershipStatus.PENDING: 2,
    MembershipStatus.REJECTED: 1,
}


def _rank(record: CommunityMembership) -> tuple:
    return (STATUS_RANK[record.status], record.requested_at)


def dedupe(records: Iterable[CommunityMembership]) -> Dict[UUID, CommunityMembership]:
    """Pick one representative record per community.

    approved beats pending beats rejected; within a status the most recent
    ``requested_at`` wins.
    """
    best: Dict[UUID, CommunityMembership] = {}
    for record in records:
        current: Optional[CommunityMembership] = best.get(record.community_id)
        if current is None or _rank(record) > _rank(current):
            best[record.community_id] = record
    return best
