from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.config import settings
from community_engine.core.database import utcnow
from community_engine.core.logger import logger
from community_engine.services.errors import AuthorizationError, TransientStoreError
from community_engine.services.identity import IdentityProvider
from community_engine.services.membership_store import MembershipStore


@dataclass(frozen=True)
class SweepScope:
    """Global when ``user_id`` is None, otherwise limited to one user's rows."""

    user_id: Optional[UUID] = None

    @classmethod
    def for_user(cls, user_id: UUID) -> "SweepScope":
        return cls(user_id=user_id)

    @property
    def is_global(self) -> bool:
        return self.user_id is None

    def describe(self) -> str:
        return "global" if self.is_global else f"user:{self.user_id}"


@dataclass
class SweepReport:
    orphaned_memberships_deleted: int = 0
    pending_for_inactive_deleted: int = 0
    old_rejected_deleted: int = 0
    communities_reactivated: int = 0
    communities_deactivated: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return (
            self.orphaned_memberships_deleted
            + self.pending_for_inactive_deleted
            + self.old_rejected_deleted
            + self.communities_reactivated
            + self.communities_deactivated
        )

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationSweeper:
    """Repairs membership state that drifted out of the store's invariants.

    Passes run in order and each commits on its own, so a failing pass is
    rolled back and reported without undoing the ones before it. Deactivation
    skips communities that still hold pending requests, so a second run with
    no writes in between finds nothing left to do.
    """

    def __init__(self, db: AsyncSession, retention_days: Optional[int] = None):
        self.db = db
        self.store = MembershipStore(db)
        self.retention_days = (
            settings.REJECTED_RETENTION_DAYS if retention_days is None else retention_days
        )

    async def sweep(self, scope: Optional[SweepScope] = None) -> SweepReport:
        scope = scope or SweepScope()
        report = SweepReport()
        user_id = scope.user_id
        cutoff = utcnow() - timedelta(days=self.retention_days)

        passes: list[tuple[str, Callable[[], Awaitable[int]]]] = [
            ("orphaned_memberships_deleted", lambda: self.store.delete_orphaned_records(user_id)),
            ("pending_for_inactive_deleted", lambda: self.store.delete_pending_for_inactive(user_id)),
            ("old_rejected_deleted", lambda: self.store.delete_rejected_before(cutoff, user_id)),
        ]
        if scope.is_global:
            passes += [
                ("communities_reactivated", self.store.reactivate_communities_with_members),
                ("communities_deactivated", self.store.deactivate_communities_without_members),
            ]

        for name, run in passes:
            try:
                async with self.store.transaction():
                    count = await run()
            except (SQLAlchemyError, TransientStoreError) as exc:
                report.failures[name] = str(exc)
                logger.error(
                    "sweep_pass_failed",
                    sweep_pass=name,
                    scope=scope.describe(),
                    error=str(exc),
                )
                continue
            setattr(report, name, count)

        log = logger.warning if report.failures else logger.info
        log("sweep_completed", scope=scope.describe(), **report.to_dict())
        return report

    async def run_global_cleanup(self, acting_user_id: UUID) -> SweepReport:
        """Global sweep on behalf of a superuser."""
        if not await IdentityProvider(self.db).is_superuser(acting_user_id):
            raise AuthorizationError("Only global admins can run the cleanup")
        logger.info("global_cleanup_requested", acting_user_id=str(acting_user_id))
        return await self.sweep(SweepScope())
