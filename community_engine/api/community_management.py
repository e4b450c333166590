from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID

from community_engine.schemas.community import (
    CommunityOut, LeaderAssignRequest, LeaderOut, PresidentAssignRequest
)
from community_engine.schemas.membership import MembershipOut, SweepReportOut
from community_engine.services.community_service import CommunityService
from community_engine.services.leader_service import LeaderService
from community_engine.services.president_assignment import PresidentAssignment
from community_engine.services.reconciliation_sweeper import ReconciliationSweeper
from community_engine.core.database import get_session
from community_engine.dependencies.auth import get_current_user
from community_engine.models.user import User

router = APIRouter(prefix="/communities", tags=["community-management"])
leaders_router = APIRouter(prefix="/leaders", tags=["community-management"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/{community_id}/requests", response_model=List[MembershipOut])
async def list_join_requests(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Pending join requests (community admin or global admin)"""
    records = await CommunityService(db).list_pending_requests(community_id, current_user.id)
    return [MembershipOut.model_validate(record) for record in records]


@router.put("/{community_id}/president", response_model=CommunityOut)
async def assign_president(
    community_id: UUID,
    data: PresidentAssignRequest,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Make a user (by e-mail or id) the admin of a community"""
    community = await PresidentAssignment(db).assign_president(
        community_id, data.identifier, current_user.id
    )
    return CommunityOut.from_community(community)


@router.get("/{community_id}/leaders", response_model=List[LeaderOut])
async def list_leaders(
    community_id: UUID,
    db: AsyncSession = Depends(get_session),
):
    leaders = await LeaderService(db).list_leaders(community_id)
    return [LeaderOut.model_validate(leader) for leader in leaders]


@router.post("/{community_id}/leaders", response_model=LeaderOut, status_code=status.HTTP_201_CREATED)
async def assign_leader(
    community_id: UUID,
    data: LeaderAssignRequest,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    leader = await LeaderService(db).assign_leader(
        community_id, data.email, data.leader_type, current_user.id
    )
    return LeaderOut.model_validate(leader)


@leaders_router.delete("/{leader_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_leader(
    leader_id: UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    await LeaderService(db).remove_leader(leader_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.post("/sweep", response_model=SweepReportOut)
async def run_sweep(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Global reconciliation sweep, on demand"""
    report = await ReconciliationSweeper(db).run_global_cleanup(current_user.id)
    return SweepReportOut(scope="global", **report.to_dict())
