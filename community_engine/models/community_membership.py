from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, DateTime, Enum, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID

from community_engine.core.database import Base, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class MembershipStatus(PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ACTIVE_STATUSES = (MembershipStatus.PENDING, MembershipStatus.APPROVED)


class MembershipRole(PyEnum):
    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"
    TENANT = "tenant"
    OWNER = "owner"


class CommunityMembership(Base):
    __tablename__ = "community_memberships"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Not a foreign key: rows may outlive their community and are removed by the sweeper.
    community_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    status: Mapped[MembershipStatus] = mapped_column(
        Enum(MembershipStatus, name="membership_status", values_callable=_enum_values),
        nullable=False,
        default=MembershipStatus.PENDING,
    )

    role: Mapped[MembershipRole] = mapped_column(
        Enum(MembershipRole, name="membership_role", values_callable=_enum_values),
        nullable=False,
        default=MembershipRole.MEMBER,
    )

    # False only for rows in the always-public community
    exclusive: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    block_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    block_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    address: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )

    decided_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    __table_args__ = (
        # one pending/approved membership per user outside the public community
        Index(
            "uq_membership_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("exclusive AND status IN ('pending', 'approved')"),
            sqlite_where=text("exclusive AND status IN ('pending', 'approved')"),
        ),
        Index(
            "uq_membership_one_public_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("NOT exclusive"),
            sqlite_where=text("NOT exclusive"),
        ),
        Index("ix_membership_community_status", "community_id", "status"),
    )

    def __repr__(self):
        return (
            f"<CommunityMembership(user_id={self.user_id}, community_id={self.community_id}, "
            f"status={self.status.value}, role={self.role.value})>"
        )
