from datetime import datetime, timezone

import pytest

from roomshare.domain.rooms import models
from roomshare.domain.rooms.exceptions import InvalidTransition, PreconditionFailed

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _room(**overrides) -> models.Room:
    values = dict(
        id="room-1",
        created_by="creator",
        name="Flat 4B",
        capacity=3,
        creation_type=models.CreationType.MEMBER_CREATED,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return models.Room(**values)


def test_request_status_transitions_from_pending_only():
    assert models.RequestStatus.PENDING.approve() is models.RequestStatus.APPROVED
    assert models.RequestStatus.PENDING.reject() is models.RequestStatus.REJECTED
    for terminal in (models.RequestStatus.APPROVED, models.RequestStatus.REJECTED):
        assert terminal.is_terminal
        with pytest.raises(InvalidTransition) as excinfo:
            terminal.approve()
        assert excinfo.value.code == "request_not_pending"
        with pytest.raises(InvalidTransition):
            terminal.reject()


def test_invalid_transition_is_a_precondition_failure():
    assert issubclass(InvalidTransition, PreconditionFailed)


def test_join_request_review_records_actor():
    request = models.JoinRequest(id="jr-1", room_id="room-1", user_id="d", requested_at=NOW)
    request.approve("owner", NOW)
    assert request.status is models.RequestStatus.APPROVED
    assert request.reviewed_by == "owner"
    assert request.reviewed_at == NOW
    with pytest.raises(InvalidTransition):
        request.reject("owner", NOW)
    assert request.status is models.RequestStatus.APPROVED


def test_claim_rejection_sets_rejected_at_only():
    claim = models.OwnershipClaim(id="oc-1", room_id="room-1", owner_id="y", requested_at=NOW)
    claim.reject("creator", NOW)
    assert claim.status is models.RequestStatus.REJECTED
    assert claim.rejected_at == NOW
    assert claim.approved_at is None


def test_room_visibility_requires_active_and_public():
    assert _room().is_visible()
    assert not _room(is_public=False).is_visible()
    assert not _room(status=models.RoomStatus.INACTIVE).is_visible()


def test_room_claimable_only_without_owner():
    assert _room().is_claimable()
    assert not _room(owner_id="x").is_claimable()
    assert not _room(status=models.RoomStatus.INACTIVE).is_claimable()


def test_rent_merge_ignores_missing_fields():
    rent = models.RentTerms(amount=9000, currency="INR", advance_amount=18000)
    merged = rent.merged(amount=9500, currency=None)
    assert merged.amount == 9500
    assert merged.currency == "INR"
    assert merged.advance_amount == 18000
    assert rent.amount == 9000


def test_membership_reactivation_reuses_record():
    record = models.MembershipRecord(
        id="m-1", room_id="room-1", user_id="a", role=models.MemberRole.ADMIN, joined_at=NOW
    )
    later = datetime(2024, 6, 1, tzinfo=timezone.utc)
    record.deactivate(later)
    assert not record.is_active
    assert record.left_at == later
    record.reactivate(later, models.MemberRole.MEMBER)
    assert record.is_active
    assert record.left_at is None
    assert record.joined_at == later
    assert record.id == "m-1"


def test_room_copy_is_independent():
    room = _room(amenities=["wifi"])
    clone = room.copy()
    clone.amenities.append("ac")
    clone.rent.amount = 1
    assert room.amenities == ["wifi"]
    assert room.rent.amount == 0.0
