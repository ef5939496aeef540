import json

import pytest

from roomshare.domain.rooms import outbox as outbox_module
from roomshare.domain.rooms.dispatcher import CURSOR_KEY, RoomSideEffectDispatcher
from roomshare.domain.rooms.outbox import RoomOutbox
from roomshare.domain.rooms.schemas import RoomCreateRequest
from roomshare.domain.rooms.service import RoomService
from roomshare.infra.auth import AuthenticatedUser
from roomshare.settings import settings


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.user_calls = []
        self.room_calls = []

    async def notify_user(self, user_id, *, kind, title, body, data):
        if self.fail:
            raise RuntimeError("push provider down")
        self.user_calls.append((user_id, kind, data))

    async def notify_room(self, room_id, *, kind, title, body, data):
        if self.fail:
            raise RuntimeError("push provider down")
        self.room_calls.append((room_id, kind, data))


class RecordingRoster:
    def __init__(self) -> None:
        self.calls = []

    async def sync_room_roster(self, room_id, member_ids, *, room_name):
        self.calls.append((room_id, sorted(member_ids), room_name))


class BrokenRedis:
    async def xadd_capped(self, *args, **kwargs):
        raise ConnectionError("redis unavailable")


@pytest.mark.asyncio
async def test_outbox_appends_intents(fake_redis):
    outbox = RoomOutbox()
    await outbox.notify_user("u1", kind="hello", title="T", body="B", data={"room_id": "r"})
    await outbox.sync_roster("r")

    entries = await fake_redis.xrange(settings.rooms_outbox_stream)
    assert len(entries) == 2
    _, first = entries[0]
    assert first["intent"] == outbox_module.INTENT_NOTIFY_USER
    assert first["target"] == "u1"
    assert json.loads(first["data"]) == {"room_id": "r"}
    assert entries[1][1]["intent"] == outbox_module.INTENT_SYNC_ROSTER


@pytest.mark.asyncio
async def test_outbox_failure_does_not_raise():
    outbox = RoomOutbox(client=BrokenRedis())
    await outbox.notify_room("r", kind="k", title="t", body="b")


@pytest.mark.asyncio
async def test_dispatcher_delivers_membership_side_effects(fake_redis):
    service = RoomService()
    room = await service.create_room(AuthenticatedUser(id="a"), RoomCreateRequest(name="Flat", capacity=3))
    await service.join_room(AuthenticatedUser(id="b"), room.id)

    notifier = RecordingNotifier()
    roster = RecordingRoster()
    dispatcher = RoomSideEffectDispatcher(notifier=notifier, roster=roster, block_ms=None)
    processed = await dispatcher.process_once()

    assert processed == 3
    assert notifier.room_calls == [(room.id, "member_joined", {"room_id": room.id, "user_id": "b"})]
    assert roster.calls == [(room.id, ["a", "b"], "Flat"), (room.id, ["a", "b"], "Flat")]
    assert await fake_redis.get(CURSOR_KEY) is not None
    assert await dispatcher.process_once() == 0


@pytest.mark.asyncio
async def test_dispatcher_failures_are_not_retried(fake_redis):
    outbox = RoomOutbox()
    await outbox.notify_user("u1", kind="k", title="t", body="b")
    await outbox.notify_user("u2", kind="k", title="t", body="b")

    failing = RoomSideEffectDispatcher(notifier=RecordingNotifier(fail=True), block_ms=None)
    assert await failing.process_once() == 2

    healthy = RecordingNotifier()
    resumed = RoomSideEffectDispatcher(notifier=healthy, block_ms=None)
    assert await resumed.process_once() == 0
    assert healthy.user_calls == []


@pytest.mark.asyncio
async def test_dispatcher_skips_entries_without_target(fake_redis):
    await fake_redis.xadd(settings.rooms_outbox_stream, {"intent": outbox_module.INTENT_NOTIFY_USER})
    notifier = RecordingNotifier()
    dispatcher = RoomSideEffectDispatcher(notifier=notifier, block_ms=None)
    assert await dispatcher.process_once() == 1
    assert notifier.user_calls == []
