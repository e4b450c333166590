import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from community_engine.core.database import AsyncSessionLocal
from community_engine.core.logger import logger
from community_engine.services.reconciliation_sweeper import (
    ReconciliationSweeper,
    SweepReport,
    SweepScope,
)


async def run_global_sweep(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> SweepReport:
    """
    Scheduled reconciliation job:
    - delete orphaned / stale membership rows
    - reactivate communities that regained members
    - deactivate communities left without members
    """
    async with session_factory() as db:
        logger.info("scheduled_sweep_started")
        report = await ReconciliationSweeper(db).sweep(SweepScope())

        if not report.ok:
            logger.warning("scheduled_sweep_partial", failed_passes=sorted(report.failures))
        return report


if __name__ == "__main__":
    asyncio.run(run_global_sweep())
