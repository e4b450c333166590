from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.database import utcnow
from community_engine.models.community import Community, CommunityType
from community_engine.models.community_membership import (
    ACTIVE_STATUSES,
    CommunityMembership,
    MembershipRole,
    MembershipStatus,
)
from community_engine.models.leader import CommunityLeader, LeaderType
from community_engine.services.errors import TransientStoreError


class MembershipStore:
    """Persistence for communities, membership records and leader assignments.

    Every state-changing service runs its read-check-write sequence inside
    ``transaction()``. Set-based statements (``delete_*`` / ``*_communities``)
    return affected row counts and never load rows into the session.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["MembershipStore"]:
        """Commit on success, roll back on any failure.

        Integrity violations are re-raised untouched so the caller can resolve
        them; other driver failures surface as ``TransientStoreError``.
        """
        try:
            yield self
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise
        except DBAPIError as exc:
            await self.db.rollback()
            raise TransientStoreError(f"Membership store unavailable: {exc.orig}") from exc
        except Exception:
            await self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # communities
    # ------------------------------------------------------------------

    async def get_community(self, community_id: UUID, for_update: bool = False) -> Optional[Community]:
        stmt = select(Community).where(Community.id == community_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_community_by_name(self, name: str) -> Optional[Community]:
        stmt = select(Community).where(Community.name == name)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_public_community(self) -> Optional[Community]:
        stmt = select(Community).where(Community.type == CommunityType.PUBLIC)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_active_communities(self, limit: int = 50, offset: int = 0) -> List[Community]:
        stmt = (
            select(Community)
            .where(Community.is_active == True)
            .order_by(Community.created_at.desc(), Community.name)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def replace_admin(
        self,
        community_id: UUID,
        expected_admin_id: Optional[UUID],
        new_admin_id: Optional[UUID],
        deactivate: bool = False,
    ) -> bool:
        """Compare-and-set ``admin_id``. False when the admin changed underneath us."""
        condition = (
            Community.admin_id.is_(None)
            if expected_admin_id is None
            else Community.admin_id == expected_admin_id
        )
        values = {"admin_id": new_admin_id, "updated_at": utcnow()}
        if deactivate:
            values["is_active"] = False

        stmt = (
            update(Community)
            .where(Community.id == community_id, condition)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # membership records
    # ------------------------------------------------------------------

    async def add(self, instance):
        self.db.add(instance)
        await self.db.flush()
        return instance

    async def get_record(self, record_id: UUID, for_update: bool = False) -> Optional[CommunityMembership]:
        stmt = select(CommunityMembership).where(CommunityMembership.id == record_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_active_records(
        self,
        user_id: UUID,
        excluding_community_id: Optional[UUID] = None,
    ) -> List[CommunityMembership]:
        """Exclusive pending/approved records of a user, optionally outside one community."""
        stmt = select(CommunityMembership).where(
            CommunityMembership.user_id == user_id,
            CommunityMembership.exclusive == True,
            CommunityMembership.status.in_(ACTIVE_STATUSES),
        )
        if excluding_community_id is not None:
            stmt = stmt.where(CommunityMembership.community_id != excluding_community_id)
        result = await self.db.execute(stmt.order_by(CommunityMembership.requested_at))
        return list(result.scalars().all())

    async def get_user_record(
        self,
        user_id: UUID,
        community_id: UUID,
        statuses: Iterable[MembershipStatus] = ACTIVE_STATUSES,
    ) -> Optional[CommunityMembership]:
        stmt = (
            select(CommunityMembership)
            .where(
                CommunityMembership.user_id == user_id,
                CommunityMembership.community_id == community_id,
                CommunityMembership.status.in_(list(statuses)),
            )
            .order_by(CommunityMembership.requested_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_user_records(self, user_id: UUID) -> List[CommunityMembership]:
        stmt = (
            select(CommunityMembership)
            .where(CommunityMembership.user_id == user_id)
            .order_by(CommunityMembership.requested_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_community_records(
        self,
        community_id: UUID,
        status: MembershipStatus,
    ) -> List[CommunityMembership]:
        stmt = (
            select(CommunityMembership)
            .where(
                CommunityMembership.community_id == community_id,
                CommunityMembership.status == status,
            )
            .order_by(CommunityMembership.requested_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def earliest_approved_member(
        self,
        community_id: UUID,
        excluding_user_id: UUID,
    ) -> Optional[CommunityMembership]:
        stmt = (
            select(CommunityMembership)
            .where(
                CommunityMembership.community_id == community_id,
                CommunityMembership.status == MembershipStatus.APPROVED,
                CommunityMembership.user_id != excluding_user_id,
            )
            .order_by(
                CommunityMembership.requested_at.asc(),
                CommunityMembership.created_at.asc(),
                CommunityMembership.id.asc(),
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def transition_status(
        self,
        record_id: UUID,
        from_status: MembershipStatus,
        to_status: MembershipStatus,
        decided_by: Optional[UUID] = None,
    ) -> bool:
        """Conditional status update. False when the record left ``from_status``."""
        stmt = (
            update(CommunityMembership)
            .where(
                CommunityMembership.id == record_id,
                CommunityMembership.status == from_status,
            )
            .values(status=to_status, decided_by=decided_by, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_role(self, record_id: UUID, role: MembershipRole) -> None:
        stmt = (
            update(CommunityMembership)
            .where(CommunityMembership.id == record_id)
            .values(role=role, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def delete_record(self, record_id: UUID, status: MembershipStatus) -> bool:
        """Delete one membership row still in ``status``. False when it moved on or is gone."""
        stmt = delete(CommunityMembership).where(
            CommunityMembership.id == record_id,
            CommunityMembership.status == status,
        )
        return await self._execute_count(stmt) == 1

    # ------------------------------------------------------------------
    # set-based reconciliation statements
    # ------------------------------------------------------------------

    async def _execute_count(self, stmt) -> int:
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def delete_orphaned_records(self, user_id: Optional[UUID] = None) -> int:
        community_exists = (
            select(Community.id)
            .where(Community.id == CommunityMembership.community_id)
            .correlate(CommunityMembership)
            .exists()
        )
        stmt = delete(CommunityMembership).where(~community_exists)
        if user_id is not None:
            stmt = stmt.where(CommunityMembership.user_id == user_id)
        return await self._execute_count(stmt)

    async def delete_pending_for_inactive(self, user_id: Optional[UUID] = None) -> int:
        inactive_ids = select(Community.id).where(Community.is_active == False)
        stmt = delete(CommunityMembership).where(
            CommunityMembership.status == MembershipStatus.PENDING,
            CommunityMembership.community_id.in_(inactive_ids),
        )
        if user_id is not None:
            stmt = stmt.where(CommunityMembership.user_id == user_id)
        return await self._execute_count(stmt)

    async def delete_rejected_before(self, cutoff: datetime, user_id: Optional[UUID] = None) -> int:
        stmt = delete(CommunityMembership).where(
            CommunityMembership.status == MembershipStatus.REJECTED,
            CommunityMembership.updated_at < cutoff,
        )
        if user_id is not None:
            stmt = stmt.where(CommunityMembership.user_id == user_id)
        return await self._execute_count(stmt)

    def _has_record(self, status: MembershipStatus):
        return (
            select(CommunityMembership.id)
            .where(
                CommunityMembership.community_id == Community.id,
                CommunityMembership.status == status,
            )
            .correlate(Community)
            .exists()
        )

    async def reactivate_communities_with_members(self) -> int:
        stmt = (
            update(Community)
            .where(Community.is_active == False, self._has_record(MembershipStatus.APPROVED))
            .values(is_active=True, updated_at=utcnow())
        )
        return await self._execute_count(stmt)

    async def deactivate_communities_without_members(self) -> int:
        stmt = (
            update(Community)
            .where(
                Community.is_active == True,
                Community.type != CommunityType.PUBLIC,
                ~self._has_record(MembershipStatus.APPROVED),
                # undecided requests keep a community open
                ~self._has_record(MembershipStatus.PENDING),
            )
            .values(is_active=False, updated_at=utcnow())
        )
        return await self._execute_count(stmt)

    # ------------------------------------------------------------------
    # leader assignments
    # ------------------------------------------------------------------

    async def get_leader(self, leader_id: UUID) -> Optional[CommunityLeader]:
        stmt = select(CommunityLeader).where(CommunityLeader.id == leader_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_active_leader(self, community_id: UUID, leader_type: LeaderType) -> Optional[CommunityLeader]:
        stmt = select(CommunityLeader).where(
            CommunityLeader.community_id == community_id,
            CommunityLeader.leader_type == leader_type,
            CommunityLeader.is_active == True,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_active_leaders(
        self,
        community_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
    ) -> List[CommunityLeader]:
        stmt = select(CommunityLeader).where(CommunityLeader.is_active == True)
        if community_id is not None:
            stmt = stmt.where(CommunityLeader.community_id == community_id)
        if user_id is not None:
            stmt = stmt.where(CommunityLeader.user_id == user_id)
        result = await self.db.execute(stmt.order_by(CommunityLeader.assigned_at.desc()))
        return list(result.scalars().all())
