import asyncio

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from roomshare.domain.rooms.exceptions import Forbidden, NotFound, PreconditionFailed
from roomshare.domain.rooms.repository import RoomRepository
from roomshare.domain.rooms.schemas import RentPatch, RoomCreateRequest, RoomUpdateRequest
from roomshare.domain.rooms.service import RoomService
from roomshare.infra.auth import AuthenticatedUser


def user(user_id: str) -> AuthenticatedUser:
    return AuthenticatedUser(id=user_id)


class CountingRepository(RoomRepository):
    def __init__(self) -> None:
        super().__init__()
        self.reads = 0

    async def read(self, unit):
        self.reads += 1
        return await super().read(unit)


class FakeUploader:
    def __init__(self) -> None:
        self.calls = 0

    async def upload_image(self, data: bytes, *, folder: str):
        self.calls += 1
        if data == b"broken":
            raise RuntimeError("upload failed")
        return f"https://cdn.test/{folder}/{self.calls}.jpg"


@pytest.mark.asyncio
async def test_capacity_two_room_fills_and_rejects_third():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=2))
    assert room.member_count == 1
    assert room.role == "admin"
    assert room.status == "active"
    assert room.is_public is True

    joined = await service.join_room(user("b"), room.id)
    assert joined.member_count == 2

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.join_room(user("c"), room.id)
    assert excinfo.value.code == "room_full"
    detail = await service.get_room(user("a"), room.id)
    assert detail.member_count == 2
    assert {member.user_id for member in detail.members} == {"a", "b"}


@pytest.mark.asyncio
async def test_leave_keeps_room_listed_and_record_inactive():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=2))
    await service.join_room(user("b"), room.id)

    await service.leave_room(user("a"), room.id)

    detail = await service.get_room(user("b"), room.id)
    assert detail.status == "active"
    assert detail.is_public is True
    assert detail.member_count == 1
    history = await service.list_membership_history(room.id)
    record_a = next(item for item in history if item.user_id == "a")
    assert record_a.is_active is False
    assert record_a.left_at is not None
    available = await service.list_available(user("c"))
    assert room.id in {item.id for item in available}


@pytest.mark.asyncio
async def test_rejoin_reactivates_the_same_record():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    await service.join_room(user("b"), room.id)
    await service.leave_room(user("b"), room.id)
    await service.join_room(user("b"), room.id)

    history = await service.list_membership_history(room.id)
    assert [item.user_id for item in history].count("b") == 1
    assert await service.is_active_member(room.id, "b")


@pytest.mark.asyncio
async def test_second_leave_fails_without_changes():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    await service.join_room(user("b"), room.id)
    await service.leave_room(user("b"), room.id)
    with pytest.raises(PreconditionFailed) as excinfo:
        await service.leave_room(user("b"), room.id)
    assert excinfo.value.code == "not_member"
    detail = await service.get_room(user("a"), room.id)
    assert detail.member_count == 1


@pytest.mark.asyncio
async def test_user_holds_one_active_membership():
    service = RoomService()
    first = await service.create_room(user("a"), RoomCreateRequest(name="First"))
    second = await service.create_room(user("b"), RoomCreateRequest(name="Second"))
    await service.join_room(user("c"), first.id)

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.join_room(user("c"), second.id)
    assert excinfo.value.code == "already_in_room"
    with pytest.raises(PreconditionFailed) as excinfo:
        await service.join_room(user("c"), first.id)
    assert excinfo.value.code == "already_member"
    with pytest.raises(PreconditionFailed):
        await service.create_room(user("c"), RoomCreateRequest(name="Third"))
    assert not await service.can_create_room(user("c"))


@pytest.mark.asyncio
async def test_owner_room_rejects_direct_join():
    service = RoomService()
    listing = await service.create_owner_room(user("x"), RoomCreateRequest(name="Listing", capacity=3))
    assert listing.owner_id == "x"
    assert listing.member_count == 0
    assert listing.creation_type == "owner_created"
    with pytest.raises(PreconditionFailed) as excinfo:
        await service.join_room(user("d"), listing.id)
    assert excinfo.value.code == "approval_required"


@pytest.mark.asyncio
async def test_inactive_room_is_kept_and_refuses_joins():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    deactivated = await service.deactivate_room(user("a"), room.id)
    assert deactivated.status == "inactive"

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.join_room(user("b"), room.id)
    assert excinfo.value.code == "room_inactive"
    assert room.id not in {item.id for item in await service.list_available(user("b"))}
    assert await service.is_active_member(room.id, "a")

    first = await service.reactivate_room(user("a"), room.id)
    again = await service.reactivate_room(user("a"), room.id)
    assert first.status == again.status == "active"


@pytest.mark.asyncio
async def test_only_managers_change_status():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    await service.join_room(user("b"), room.id)
    with pytest.raises(Forbidden):
        await service.deactivate_room(user("b"), room.id)


@pytest.mark.asyncio
async def test_hidden_room_is_not_found_for_outsiders():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    hidden = await service.set_visibility(user("a"), room.id, False)
    assert hidden.is_public is False

    with pytest.raises(NotFound):
        await service.get_room(user("z"), room.id)
    assert (await service.get_room(user("a"), room.id)).id == room.id
    assert room.id not in {item.id for item in await service.list_available(user("z"))}


@pytest.mark.asyncio
async def test_update_merges_fields_and_guards_capacity():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    await service.join_room(user("b"), room.id)

    updated = await service.update_room(
        user("a"),
        room.id,
        RoomUpdateRequest(description="Sunny", rent=RentPatch(amount=12000, currency="usd")),
    )
    assert updated.description == "Sunny"
    assert updated.name == "R"
    assert updated.rent.amount == 12000
    assert updated.rent.currency == "USD"
    assert updated.member_count == 2

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.update_room(user("a"), room.id, RoomUpdateRequest(capacity=1))
    assert excinfo.value.code == "capacity_below_occupancy"


@pytest.mark.asyncio
async def test_switch_moves_membership_atomically():
    service = RoomService()
    source = await service.create_room(user("a"), RoomCreateRequest(name="Source", capacity=3))
    target = await service.create_room(user("b"), RoomCreateRequest(name="Target", capacity=3))
    await service.join_room(user("c"), source.id)

    moved = await service.switch_room(user("c"), source.id, target.id)
    assert moved.id == target.id
    assert not await service.is_active_member(source.id, "c")
    assert await service.is_active_member(target.id, "c")
    assert (await service.get_room(user("a"), source.id)).member_count == 1
    assert (await service.get_room(user("b"), target.id)).member_count == 2


@pytest.mark.asyncio
async def test_failed_switch_leaves_source_membership_intact():
    service = RoomService()
    source = await service.create_room(user("a"), RoomCreateRequest(name="Source", capacity=3))
    full = await service.create_room(user("b"), RoomCreateRequest(name="Full", capacity=1))
    await service.join_room(user("c"), source.id)

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.switch_room(user("c"), source.id, full.id)
    assert excinfo.value.code == "room_full"
    assert await service.is_active_member(source.id, "c")
    assert (await service.get_room(user("a"), source.id)).member_count == 2

    with pytest.raises(PreconditionFailed) as excinfo:
        await service.switch_room(user("c"), source.id, source.id)
    assert excinfo.value.code == "same_room"


@pytest.mark.asyncio
async def test_concurrent_joins_never_exceed_capacity():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=2))
    results = await asyncio.gather(
        *(service.join_room(user(f"u{index}"), room.id) for index in range(5)),
        return_exceptions=True,
    )
    successes = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, PreconditionFailed)]
    assert len(successes) == 1
    assert len(failures) == 4
    assert all(failure.code == "room_full" for failure in failures)
    members = await service.list_active_members(room.id)
    assert len(members) == 2


@pytest.mark.asyncio
async def test_current_room_served_from_cache_until_mutation():
    repo = CountingRepository()
    service = RoomService(repo)
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))
    await service.join_room(user("b"), room.id)

    first = await service.get_current_room(user("b"))
    reads_after_first = repo.reads
    second = await service.get_current_room(user("b"))
    assert repo.reads == reads_after_first
    assert first == second
    assert second.id == room.id
    assert second.role == "member"

    await service.leave_room(user("b"), room.id)
    assert await service.get_current_room(user("b"), force_refresh=True) is None
    assert await service.can_create_room(user("b"))


@pytest.mark.asyncio
async def test_sign_out_clears_cached_rooms():
    service = RoomService()
    await service.create_room(user("a"), RoomCreateRequest(name="R"))
    await service.get_current_room(user("a"))
    assert len(service.cache) == 1
    service.handle_sign_out()
    assert len(service.cache) == 0


@pytest.mark.asyncio
async def test_owner_listing_helpers():
    service = RoomService()
    listing = await service.create_owner_room(user("x"), RoomCreateRequest(name="Listing"))
    await service.create_room(user("a"), RoomCreateRequest(name="Member room"))

    assert await service.get_room_owner(listing.id) == "x"
    assert await service.is_room_owner(user("x"), listing.id)
    assert not await service.is_room_owner(user("d"), listing.id)
    assert [item.id for item in await service.list_available_owner_rooms(user("d"))] == [listing.id]
    assert await service.list_available_owner_rooms(user("x")) == []


@pytest.mark.asyncio
async def test_image_uploads_skip_failures():
    uploader = FakeUploader()
    service = RoomService(uploader=uploader)
    room = await service.create_room(
        user("a"),
        RoomCreateRequest(name="R", image_urls=["https://cdn.test/existing.jpg"]),
        images=[b"one", b"broken", b"two"],
    )
    assert uploader.calls == 3
    assert room.image_urls == [
        "https://cdn.test/existing.jpg",
        "https://cdn.test/rooms/1.jpg",
        "https://cdn.test/rooms/3.jpg",
    ]


@pytest.mark.asyncio
async def test_missing_room_is_not_found():
    service = RoomService()
    with pytest.raises(NotFound):
        await service.join_room(user("a"), "does-not-exist")


class SlowReadRepository(RoomRepository):
    """Holds every read result briefly before handing it back."""

    async def read(self, unit):
        result = await super().read(unit)
        await asyncio.sleep(0.05)
        return result


@pytest.mark.asyncio
async def test_lookup_in_flight_during_join_does_not_cache_stale_room():
    service = RoomService(SlowReadRepository())
    room = await service.create_room(user("a"), RoomCreateRequest(name="R", capacity=3))

    lookup = asyncio.create_task(service.get_current_room(user("b")))
    await asyncio.sleep(0.01)
    await service.join_room(user("b"), room.id)
    assert await lookup is None

    current = await service.get_current_room(user("b"))
    assert current is not None
    assert current.id == room.id


def _status_changes(change: str) -> float:
    return REGISTRY.get_sample_value("roomshare_rooms_status_changes_total", {"change": change}) or 0.0


@pytest.mark.asyncio
async def test_visibility_metric_counts_only_real_changes():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R"))
    public_before = _status_changes("public")
    private_before = _status_changes("private")

    await service.set_visibility(user("a"), room.id, True)
    assert _status_changes("public") == public_before

    await service.set_visibility(user("a"), room.id, False)
    await service.set_visibility(user("a"), room.id, False)
    assert _status_changes("private") == private_before + 1


@pytest.mark.asyncio
async def test_update_trims_room_name():
    service = RoomService()
    room = await service.create_room(user("a"), RoomCreateRequest(name="R"))
    updated = await service.update_room(user("a"), room.id, RoomUpdateRequest(name="  Flat 4B  "))
    assert updated.name == "Flat 4B"

    with pytest.raises(ValidationError):
        RoomUpdateRequest(name="   ")
