from uuid import uuid4

import pytest

from community_engine.models import MembershipStatus
from community_engine.workers.tasks import run_global_sweep


@pytest.mark.asyncio
async def test_scheduled_sweep_uses_its_own_session(session_factory, make_user, make_community, add_membership):
    user = await make_user()
    await make_community()
    await add_membership(user, uuid4(), status=MembershipStatus.PENDING)

    report = await run_global_sweep(session_factory)

    assert report.ok
    assert report.orphaned_memberships_deleted == 1
    assert report.communities_deactivated == 1

    assert (await run_global_sweep(session_factory)).total == 0
