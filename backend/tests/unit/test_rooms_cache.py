from datetime import datetime, timedelta, timezone

from roomshare.domain.rooms import models
from roomshare.domain.rooms.cache import MISS, CurrentRoomCache

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _current() -> models.CurrentRoom:
    room = models.Room(
        id="r",
        created_by="a",
        name="Room",
        capacity=2,
        creation_type=models.CreationType.MEMBER_CREATED,
        created_at=START,
        updated_at=START,
    )
    return models.CurrentRoom(room=room, role=models.MemberRole.ADMIN)


def test_entry_served_until_ttl_elapses():
    clock = FakeClock(START)
    cache = CurrentRoomCache(ttl=timedelta(seconds=120), clock=clock)
    cache.put("a", _current())
    clock.advance(119)
    cached = cache.get("a")
    assert cached is not MISS
    assert cached.room.id == "r"
    clock.advance(1)
    assert cache.get("a") is MISS


def test_no_room_result_is_cached():
    cache = CurrentRoomCache(ttl=timedelta(seconds=60), clock=FakeClock(START))
    assert cache.get("a") is MISS
    cache.put("a", None)
    assert cache.get("a") is None


def test_clear_drops_every_user():
    cache = CurrentRoomCache(ttl=timedelta(seconds=60), clock=FakeClock(START))
    cache.put("a", _current())
    cache.put("b", None)
    assert len(cache) == 2
    cache.clear()
    assert len(cache) == 0
    assert cache.get("a") is MISS
    assert cache.get("b") is MISS


def test_cached_value_is_a_copy():
    cache = CurrentRoomCache(ttl=timedelta(seconds=60), clock=FakeClock(START))
    cache.put("a", _current())
    cache.get("a").room.name = "mutated"
    assert cache.get("a").room.name == "Room"


def test_put_from_before_a_clear_is_dropped():
    cache = CurrentRoomCache(ttl=timedelta(seconds=60), clock=FakeClock(START))
    generation = cache.generation
    cache.clear()
    cache.put("a", None, generation=generation)
    assert cache.get("a") is MISS

    cache.put("a", _current(), generation=cache.generation)
    assert cache.get("a") is not MISS
