from fastapi import APIRouter, Body, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from community_engine.schemas.community import CommunityCreate, CommunityOut
from community_engine.schemas.membership import JoinRequest, LeaveOutcomeOut, MembershipOut
from community_engine.services.community_service import CommunityService
from community_engine.services.leave_coordinator import LeaveCoordinator
from community_engine.services.membership_state_machine import MembershipStateMachine
from community_engine.services.reconciliation_sweeper import ReconciliationSweeper, SweepScope
from community_engine.services.errors import NotFoundError
from community_engine.core.database import get_session
from community_engine.dependencies.auth import get_current_user
from community_engine.models.user import User

router = APIRouter(prefix="/communities", tags=["communities"])


@router.get("", response_model=List[CommunityOut])
async def list_communities(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    """Communities that currently accept join requests"""
    service = CommunityService(db)
    communities = await service.list_joinable(limit, offset)
    return [CommunityOut.from_community(community) for community in communities]


@router.post("", response_model=CommunityOut, status_code=status.HTTP_201_CREATED)
async def create_community(
    data: CommunityCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Create a community from a locality; non-admin creators become its admin"""
    service = CommunityService(db)
    community = await service.create_community(data, current_user)
    return CommunityOut.from_community(community)


@router.get("/{community_id}", response_model=CommunityOut)
async def get_community(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
):
    community = await CommunityService(db).get_by_id(community_id)
    if not community:
        raise NotFoundError("Community not found")
    return CommunityOut.from_community(community)


@router.get("/{community_id}/members", response_model=List[MembershipOut])
async def list_members(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Approved members of a community"""
    records = await CommunityService(db).list_members(community_id)
    return [MembershipOut.model_validate(record) for record in records]


@router.post("/{community_id}/join", response_model=MembershipOut)
async def join_community(
    community_id: UUID,
    details: Optional[JoinRequest] = Body(None),
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Request to join a community (or get the existing request back)"""
    user_id = current_user.id

    # drop the caller's stale rows before they can block the new request
    await ReconciliationSweeper(db).sweep(SweepScope.for_user(user_id))

    record = await MembershipStateMachine(db).request_join(user_id, community_id, details)
    return MembershipOut.model_validate(record)


@router.post("/{community_id}/leave", response_model=LeaveOutcomeOut)
async def leave_community(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    outcome = await LeaveCoordinator(db).leave(current_user.id, community_id)
    return LeaveOutcomeOut(
        outcome=outcome.kind.value,
        new_admin_id=str(outcome.new_admin_id) if outcome.new_admin_id else None,
        message=outcome.message,
    )


@router.delete("/{community_id}/request", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_request(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Cancel a pending join request"""
    await LeaveCoordinator(db).withdraw_request(current_user.id, community_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
