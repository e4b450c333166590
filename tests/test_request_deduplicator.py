from datetime import datetime, timedelta, timezone
from uuid import uuid4

from community_engine.models import CommunityMembership, MembershipStatus
from community_engine.services.request_deduplicator import STATUS_RANK, dedupe


BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(community_id, status, days):
    return CommunityMembership(
        id=uuid4(),
        user_id=uuid4(),
        community_id=community_id,
        status=status,
        requested_at=BASE + timedelta(days=days),
    )


def test_empty_input():
    assert dedupe([]) == {}


def test_approved_wins_over_newer_rows():
    community_id = uuid4()
    approved = _record(community_id, MembershipStatus.APPROVED, days=1)
    newer_rejected = _record(community_id, MembershipStatus.REJECTED, days=5)
    newer_pending = _record(community_id, MembershipStatus.PENDING, days=9)

    result = dedupe([newer_rejected, approved, newer_pending])

    assert result == {community_id: approved}


def test_pending_wins_over_rejected():
    community_id = uuid4()
    rejected = _record(community_id, MembershipStatus.REJECTED, days=3)
    pending = _record(community_id, MembershipStatus.PENDING, days=2)

    assert dedupe([rejected, pending])[community_id] is pending


def test_latest_request_breaks_ties():
    community_id = uuid4()
    older = _record(community_id, MembershipStatus.REJECTED, days=1)
    newer = _record(community_id, MembershipStatus.REJECTED, days=2)

    assert dedupe([newer, older])[community_id] is newer
    assert dedupe([older, newer])[community_id] is newer


def test_one_entry_per_community():
    first, second = uuid4(), uuid4()
    records = [
        _record(first, MembershipStatus.REJECTED, days=1),
        _record(second, MembershipStatus.PENDING, days=1),
        _record(first, MembershipStatus.PENDING, days=2),
    ]

    result = dedupe(records)

    assert set(result) == {first, second}
    assert result[first].status == MembershipStatus.PENDING


def test_every_status_has_a_rank():
    assert set(STATUS_RANK) == set(MembershipStatus)
