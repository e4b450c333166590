from uuid import uuid4

import pytest
from sqlalchemy import func, select

from community_engine.models import CommunityMembership, MembershipRole, MembershipStatus
from community_engine.schemas.membership import Decision, JoinRequest
from community_engine.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
)
from community_engine.services.membership_state_machine import MembershipStateMachine


async def _count_rows(db, user_id, community_id=None) -> int:
    stmt = select(func.count()).select_from(CommunityMembership).where(CommunityMembership.user_id == user_id)
    if community_id is not None:
        stmt = stmt.where(CommunityMembership.community_id == community_id)
    return await db.scalar(stmt)


@pytest.mark.asyncio
async def test_join_creates_pending_request_with_details(db, make_user, make_admined_community):
    user = await make_user()
    community = await make_admined_community()
    block_id = uuid4()

    record = await MembershipStateMachine(db).request_join(
        user.id,
        community.id,
        JoinRequest(role=MembershipRole.TENANT, block_id=block_id, block_name="B-2", address="Flat 12"),
    )

    assert record.status == MembershipStatus.PENDING
    assert record.role == MembershipRole.TENANT
    assert record.block_id == block_id
    assert record.block_name == "B-2"
    assert record.address == "Flat 12"
    assert record.exclusive is True


@pytest.mark.asyncio
async def test_duplicate_join_is_a_no_op(db, make_user, make_admined_community):
    user = await make_user()
    community = await make_admined_community()
    machine = MembershipStateMachine(db)

    first = await machine.request_join(user.id, community.id)
    second = await machine.request_join(user.id, community.id)

    assert second.id == first.id
    assert second.status == MembershipStatus.PENDING
    assert await _count_rows(db, user.id) == 1


@pytest.mark.asyncio
async def test_join_returns_existing_approved_membership(db, make_user, make_admined_community, add_membership):
    user = await make_user()
    community = await make_admined_community()
    approved = await add_membership(user, community.id)

    record = await MembershipStateMachine(db).request_join(user.id, community.id)

    assert record.id == approved.id
    assert record.status == MembershipStatus.APPROVED


@pytest.mark.asyncio
async def test_pending_request_blocks_join_elsewhere(db, make_user, make_admined_community):
    user = await make_user()
    first = await make_admined_community(name="Koramangala")
    second = await make_admined_community()
    machine = MembershipStateMachine(db)

    await machine.request_join(user.id, first.id)

    with pytest.raises(ConflictError) as exc_info:
        await machine.request_join(user.id, second.id)

    error = exc_info.value
    assert error.community_id == first.id
    assert error.community_name == "Koramangala"
    assert error.status == "pending"
    assert "withdraw" in error.message
    assert await _count_rows(db, user.id, second.id) == 0


@pytest.mark.asyncio
async def test_approved_membership_blocks_join_elsewhere(db, make_user, make_admined_community, add_membership):
    user = await make_user()
    home = await make_admined_community(name="Indiranagar")
    other = await make_admined_community()
    await add_membership(user, home.id)

    with pytest.raises(ConflictError) as exc_info:
        await MembershipStateMachine(db).request_join(user.id, other.id)

    assert exc_info.value.status == "approved"
    assert "leave" in exc_info.value.message
    assert exc_info.value.to_dict()["community_name"] == "Indiranagar"


@pytest.mark.asyncio
async def test_join_missing_community(db, make_user):
    user = await make_user()

    with pytest.raises(NotFoundError):
        await MembershipStateMachine(db).request_join(user.id, uuid4())


@pytest.mark.asyncio
async def test_join_inactive_community(db, make_user, make_community):
    user = await make_user()
    community = await make_community(is_active=False)

    with pytest.raises(NotFoundError):
        await MembershipStateMachine(db).request_join(user.id, community.id)

    assert await _count_rows(db, user.id) == 0


@pytest.mark.asyncio
async def test_public_community_join_is_approved_and_non_exclusive(
    db, make_user, make_admined_community, public_community
):
    user = await make_user()
    local = await make_admined_community()
    machine = MembershipStateMachine(db)

    public_record = await machine.request_join(user.id, public_community.id)
    local_record = await machine.request_join(user.id, local.id)

    assert public_record.status == MembershipStatus.APPROVED
    assert public_record.exclusive is False
    assert local_record.status == MembershipStatus.PENDING


@pytest.mark.asyncio
async def test_ensure_public_membership_is_idempotent(db, make_user, public_community):
    user = await make_user()
    machine = MembershipStateMachine(db)

    first = await machine.ensure_public_membership(user.id)
    second = await machine.ensure_public_membership(user.id)

    assert first.id == second.id
    assert first.community_id == public_community.id
    assert await _count_rows(db, user.id) == 1


@pytest.mark.asyncio
async def test_ensure_public_membership_without_public_community(db, make_user):
    user = await make_user()

    assert await MembershipStateMachine(db).ensure_public_membership(user.id) is None


@pytest.mark.asyncio
async def test_admin_approves_request(db, make_user, make_admined_community):
    admin = await make_user()
    user = await make_user()
    community = await make_admined_community(admin=admin)
    machine = MembershipStateMachine(db)
    pending = await machine.request_join(user.id, community.id)

    record = await machine.decide(pending.id, Decision.APPROVE, admin.id)

    assert record.status == MembershipStatus.APPROVED
    assert record.decided_by == admin.id
    assert record.role == MembershipRole.MEMBER


@pytest.mark.asyncio
async def test_superuser_rejects_request(db, make_user, superuser, make_admined_community):
    user = await make_user()
    community = await make_admined_community()
    machine = MembershipStateMachine(db)
    pending = await machine.request_join(user.id, community.id)

    record = await machine.decide(pending.id, "reject", superuser.id)

    assert record.status == MembershipStatus.REJECTED


@pytest.mark.asyncio
async def test_non_admin_cannot_decide(db, make_user, make_admined_community):
    user = await make_user()
    outsider = await make_user()
    community = await make_admined_community()
    machine = MembershipStateMachine(db)
    pending = await machine.request_join(user.id, community.id)

    with pytest.raises(AuthorizationError):
        await machine.decide(pending.id, Decision.APPROVE, outsider.id)

    refreshed = await machine.store.get_record(pending.id)
    assert refreshed.status == MembershipStatus.PENDING


@pytest.mark.asyncio
async def test_deciding_twice_is_a_state_error(db, make_user, make_admined_community):
    admin = await make_user()
    user = await make_user()
    community = await make_admined_community(admin=admin)
    machine = MembershipStateMachine(db)
    pending = await machine.request_join(user.id, community.id)
    await machine.decide(pending.id, Decision.REJECT, admin.id)

    with pytest.raises(StateError) as exc_info:
        await machine.decide(pending.id, Decision.APPROVE, admin.id)

    assert exc_info.value.status == "rejected"


@pytest.mark.asyncio
async def test_decide_missing_record(db, make_user):
    admin = await make_user()

    with pytest.raises(NotFoundError):
        await MembershipStateMachine(db).decide(uuid4(), Decision.APPROVE, admin.id)


@pytest.mark.asyncio
async def test_rejected_user_can_request_again_immediately(db, make_user, make_admined_community):
    admin = await make_user()
    user = await make_user()
    community = await make_admined_community(admin=admin)
    machine = MembershipStateMachine(db)
    first = await machine.request_join(user.id, community.id)
    await machine.decide(first.id, Decision.REJECT, admin.id)

    second = await machine.request_join(user.id, community.id)

    assert second.id != first.id
    assert second.status == MembershipStatus.PENDING
    assert await _count_rows(db, user.id, community.id) == 2


@pytest.mark.asyncio
async def test_rejection_frees_user_for_other_communities(db, make_user, make_admined_community):
    admin = await make_user()
    user = await make_user()
    first = await make_admined_community(admin=admin)
    second = await make_admined_community()
    machine = MembershipStateMachine(db)
    pending = await machine.request_join(user.id, first.id)
    await machine.decide(pending.id, Decision.REJECT, admin.id)

    record = await machine.request_join(user.id, second.id)

    assert record.community_id == second.id
    assert record.status == MembershipStatus.PENDING


@pytest.mark.asyncio
async def test_first_approval_fills_vacant_admin_seat(db, make_user, superuser, make_community):
    applicant = await make_user()
    later = await make_user()
    community = await make_community()
    machine = MembershipStateMachine(db)
    first = await machine.request_join(applicant.id, community.id)
    second = await machine.request_join(later.id, community.id)

    record = await machine.decide(first.id, Decision.APPROVE, superuser.id)
    other = await machine.decide(second.id, Decision.APPROVE, applicant.id)

    assert record.role == MembershipRole.ADMIN
    assert other.role == MembershipRole.MEMBER
    refreshed = await machine.store.get_community(community.id, for_update=True)
    assert refreshed.admin_id == applicant.id
