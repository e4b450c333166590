import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from community_engine.core.database import utcnow
from community_engine.models import CommunityMembership, MembershipStatus
from community_engine.schemas.membership import Decision
from community_engine.services.errors import ConflictError, MembershipError
from community_engine.services.leave_coordinator import LeaveCoordinator, LeaveOutcomeKind
from community_engine.services.membership_state_machine import MembershipStateMachine
from community_engine.services.membership_store import MembershipStore


async def _join(session_factory, user_id, community_id):
    async with session_factory() as session:
        record = await MembershipStateMachine(session).request_join(user_id, community_id)
        return record.id


async def _leave(session_factory, user_id, community_id):
    async with session_factory() as session:
        return await LeaveCoordinator(session).leave(user_id, community_id)


async def _approve(session_factory, record_id, acting_user_id):
    async with session_factory() as session:
        record = await MembershipStateMachine(session).decide(record_id, Decision.APPROVE, acting_user_id)
        return record.id


async def _assert_admin_among_members(db, community_id):
    store = MembershipStore(db)
    community = await store.get_community(community_id, for_update=True)
    members = {
        record.user_id
        for record in await store.list_community_records(community_id, MembershipStatus.APPROVED)
    }
    if members:
        assert community.admin_id in members
    else:
        assert community.admin_id is None
    return community


@pytest.mark.asyncio
async def test_concurrent_joins_leave_exactly_one_active_request(
    db, session_factory, make_user, make_admined_community
):
    user = await make_user()
    communities = [await make_admined_community() for _ in range(5)]

    results = await asyncio.gather(
        *(_join(session_factory, user.id, community.id) for community in communities),
        return_exceptions=True,
    )

    successes = [result for result in results if not isinstance(result, Exception)]
    conflicts = [result for result in results if isinstance(result, ConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == len(communities) - 1

    rows = (
        await db.execute(
            select(CommunityMembership).where(
                CommunityMembership.user_id == user.id,
                CommunityMembership.status.in_([MembershipStatus.PENDING, MembershipStatus.APPROVED]),
            )
        )
    ).scalars().all()
    assert [row.id for row in rows] == successes


@pytest.mark.asyncio
async def test_concurrent_duplicate_joins_share_one_request(db, session_factory, make_user, make_admined_community):
    user = await make_user()
    community = await make_admined_community()

    results = await asyncio.gather(
        *(_join(session_factory, user.id, community.id) for _ in range(4)),
    )

    assert len(set(results)) == 1
    rows = (
        await db.execute(select(CommunityMembership).where(CommunityMembership.user_id == user.id))
    ).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_leave_racing_an_approval_keeps_an_admin(
    db, session_factory, make_user, superuser, make_admined_community
):
    admin = await make_user()
    applicant = await make_user()
    community = await make_admined_community(admin=admin)
    pending = await MembershipStateMachine(db).request_join(applicant.id, community.id)

    left, approved = await asyncio.gather(
        _leave(session_factory, admin.id, community.id),
        _approve(session_factory, pending.id, superuser.id),
        return_exceptions=True,
    )

    for result in (left, approved):
        assert not isinstance(result, Exception) or isinstance(result, MembershipError)
    refreshed = await _assert_admin_among_members(db, community.id)
    if not isinstance(left, Exception) and not isinstance(approved, Exception):
        # whichever committed first, the applicant ends up holding the seat
        assert refreshed.admin_id == applicant.id


@pytest.mark.asyncio
async def test_concurrent_leaves_by_the_admin_succeed_once(
    db, session_factory, make_user, make_admined_community, add_membership
):
    admin = await make_user()
    member = await make_user()
    community = await make_admined_community(admin=admin)
    await add_membership(member, community.id)

    results = await asyncio.gather(
        *(_leave(session_factory, admin.id, community.id) for _ in range(2)),
        return_exceptions=True,
    )

    outcomes = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(outcomes) == 1
    assert outcomes[0].kind == LeaveOutcomeKind.LEFT_AND_SUCCEEDED
    assert outcomes[0].new_admin_id == member.id
    assert all(isinstance(failure, MembershipError) for failure in failures)
    refreshed = await _assert_admin_among_members(db, community.id)
    assert refreshed.admin_id == member.id


@pytest.mark.asyncio
async def test_admin_and_successor_leaving_together_promote_one_member(
    db, session_factory, make_user, make_admined_community, add_membership
):
    admin = await make_user()
    first = await make_user()
    second = await make_user()
    community = await make_admined_community(admin=admin)
    now = utcnow()
    await add_membership(first, community.id, requested_at=now - timedelta(days=10))
    await add_membership(second, community.id, requested_at=now - timedelta(days=1))

    results = await asyncio.gather(
        _leave(session_factory, admin.id, community.id),
        _leave(session_factory, first.id, community.id),
        return_exceptions=True,
    )

    assert all(not isinstance(result, Exception) or isinstance(result, MembershipError) for result in results)
    refreshed = await _assert_admin_among_members(db, community.id)
    if not any(isinstance(result, Exception) for result in results):
        assert refreshed.admin_id == second.id
