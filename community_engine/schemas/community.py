from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator
from uuid import UUID
from typing import Optional
from datetime import datetime

from community_engine.models.leader import LeaderType


class CommunityCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=255)
    pincode: Optional[str] = Field(None, max_length=10)

    @field_validator('pincode')
    @classmethod
    def validate_pincode(cls, v):
        if v is not None and not v.isdigit():
            raise ValueError('Pincode can only contain digits')
        return v

    @field_validator('name')
    @classmethod
    def strip_name(cls, v):
        return v.strip()


class CommunityOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    pincode: Optional[str] = None
    type: str
    is_active: bool
    admin_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('id', 'admin_id')
    def serialize_id(self, value: UUID | str | None) -> Optional[str]:
        return str(value) if isinstance(value, UUID) else value

    @classmethod
    def from_community(cls, community) -> "CommunityOut":
        return cls(
            id=str(community.id),
            name=community.name,
            description=community.description,
            location=community.location,
            pincode=community.pincode,
            type=community.type.value,
            is_active=community.is_active,
            admin_id=str(community.admin_id) if community.admin_id else None,
            created_at=community.created_at,
        )


class PresidentAssignRequest(BaseModel):
    # e-mail address or user id
    identifier: str = Field(..., min_length=1, max_length=255)


class LeaderAssignRequest(BaseModel):
    email: EmailStr
    leader_type: LeaderType


class LeaderOut(BaseModel):
    id: UUID
    community_id: UUID
    user_id: UUID
    leader_type: LeaderType
    is_active: bool
    assigned_by: Optional[UUID] = None
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('id', 'community_id', 'user_id', 'assigned_by')
    def serialize_id(self, value: UUID | str | None) -> Optional[str]:
        return str(value) if isinstance(value, UUID) else value
