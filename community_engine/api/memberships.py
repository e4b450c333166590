from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from community_engine.schemas.membership import DecisionRequest, MembershipOut, MyRequestsOut
from community_engine.services.community_service import CommunityService
from community_engine.services.membership_state_machine import MembershipStateMachine
from community_engine.services.request_deduplicator import dedupe
from community_engine.core.database import get_session
from community_engine.dependencies.auth import get_current_user
from community_engine.models.user import User

router = APIRouter(prefix="/memberships", tags=["memberships"])


@router.get("/me", response_model=MyRequestsOut)
async def my_memberships(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """One record per community: approved over pending over rejected, newest first"""
    records = await CommunityService(db).list_user_records(current_user.id)
    return MyRequestsOut(
        requests={
            str(community_id): MembershipOut.model_validate(record)
            for community_id, record in dedupe(records).items()
        }
    )


@router.post("/{record_id}/decision", response_model=MembershipOut)
async def decide_request(
    record_id: UUID,
    data: DecisionRequest,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Approve or reject a pending join request"""
    record = await MembershipStateMachine(db).decide(record_id, data.decision, current_user.id)
    return MembershipOut.model_validate(record)
