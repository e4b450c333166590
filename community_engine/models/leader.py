from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from community_engine.core.database import Base, utcnow


class LeaderType(PyEnum):
    MP = "mp"
    MLA = "mla"
    COUNCILLOR = "councillor"


class CommunityLeader(Base):
    """Elected representative assigned to a community. Independent of membership."""

    __tablename__ = "community_leaders"

    community_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("communities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    leader_type: Mapped[LeaderType] = mapped_column(
        Enum(LeaderType, name="leader_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    assigned_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index(
            "uq_leader_one_active_per_type",
            "community_id",
            "leader_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    def __repr__(self):
        return f"<CommunityLeader(community_id={self.community_id}, type={self.leader_type.value})>"
