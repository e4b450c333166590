from sqlalchemy import String, Text, Boolean, Enum, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID

from community_engine.core.database import Base


class CommunityType(PyEnum):
    # the single always-public community every user implicitly belongs to
    PUBLIC = "PUBLIC"
    LOCAL = "LOCAL"


class Community(Base):
    __tablename__ = "communities"

    name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    location: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    pincode: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        index=True,
    )

    # Administrator ("president"); NULL while the community has none
    admin_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Settings
    type: Mapped[CommunityType] = mapped_column(
        Enum(CommunityType, name="community_type"),
        default=CommunityType.LOCAL,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    @property
    def is_public(self) -> bool:
        return self.type == CommunityType.PUBLIC

    def __repr__(self):
        return f"<Community {self.name}>"
