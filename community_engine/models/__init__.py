"""SQLAlchemy models for the membership engine."""

from .user import User, UserRole
from .community import Community, CommunityType
from .community_membership import (
    ACTIVE_STATUSES,
    CommunityMembership,
    MembershipRole,
    MembershipStatus,
)
from .leader import CommunityLeader, LeaderType

__all__ = [
    "User", "UserRole",
    "Community", "CommunityType",
    "ACTIVE_STATUSES", "CommunityMembership", "MembershipRole", "MembershipStatus",
    "CommunityLeader", "LeaderType",
]
