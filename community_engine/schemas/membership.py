from pydantic import BaseModel, ConfigDict, Field, field_serializer
from uuid import UUID
from typing import Optional, Dict
from datetime import datetime
from enum import Enum

from community_engine.models.community_membership import MembershipRole, MembershipStatus


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class JoinRequest(BaseModel):
    """Details captured with a join request."""
    role: MembershipRole = MembershipRole.MEMBER
    block_id: Optional[UUID] = None
    block_name: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=500)


class DecisionRequest(BaseModel):
    decision: Decision


class MembershipOut(BaseModel):
    id: UUID
    user_id: UUID
    community_id: UUID
    status: MembershipStatus
    role: MembershipRole
    block_id: Optional[UUID] = None
    block_name: Optional[str] = None
    address: Optional[str] = None
    requested_at: datetime
    updated_at: Optional[datetime] = None
    decided_by: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('id', 'user_id', 'community_id', 'block_id', 'decided_by')
    def serialize_uuid(self, value: UUID | str | None) -> Optional[str]:
        return str(value) if isinstance(value, UUID) else value


class MyRequestsOut(BaseModel):
    """One representative record per community, keyed by community id."""
    requests: Dict[str, MembershipOut]


class LeaveOutcomeOut(BaseModel):
    outcome: str
    new_admin_id: Optional[str] = None
    message: str


class SweepReportOut(BaseModel):
    scope: str
    orphaned_memberships_deleted: int
    pending_for_inactive_deleted: int
    old_rejected_deleted: int
    communities_reactivated: int
    communities_deactivated: int
    failures: Dict[str, str] = {}
