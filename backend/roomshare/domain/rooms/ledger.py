"""Membership ledger primitives used inside atomic units.

All helpers expect to run within ``RoomRepository.run`` so that the
capacity and exclusivity checks and the writes that follow them commit
together. ``Room.member_count`` is rewritten from the ledger on every
change; the ledger is the only source of truth for who belongs where.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import ulid

from roomshare.domain.rooms import models, policy
from roomshare.domain.rooms.store import RoomStoreSession


Clock = Callable[[], datetime]


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


async def load_room(session: RoomStoreSession, room_id: str, *, for_update: bool = False) -> models.Room:
	return policy.require_room(await session.get_room(room_id, for_update=for_update))


async def validate_admission(session: RoomStoreSession, room: models.Room, user_id: str) -> None:
	"""Check that ``user_id`` may become an active member of ``room`` right now."""
	policy.ensure_active(room)
	policy.ensure_no_active_membership(await session.get_active_membership(user_id), room.id)
	policy.ensure_capacity(room, await session.count_active_members(room.id))


async def recount(session: RoomStoreSession, room: models.Room, now: datetime) -> None:
	room.member_count = await session.count_active_members(room.id)
	room.updated_at = now
	await session.save_room(room)


async def admit(
	session: RoomStoreSession,
	room: models.Room,
	user_id: str,
	*,
	role: models.MemberRole = models.MemberRole.MEMBER,
	now: Optional[datetime] = None,
) -> models.MembershipRecord:
	"""Create or reactivate the (room, user) record; callers validate first."""
	now = now or utcnow()
	record = await session.get_membership(room.id, user_id)
	if record is None:
		record = models.MembershipRecord(
			id=str(ulid.new()),
			room_id=room.id,
			user_id=user_id,
			role=role,
			joined_at=now,
		)
	else:
		record.reactivate(now, role)
	await session.save_membership(record)
	await recount(session, room, now)
	return record


async def release(
	session: RoomStoreSession,
	room: models.Room,
	user_id: str,
	*,
	now: Optional[datetime] = None,
) -> models.MembershipRecord:
	"""Deactivate the user's record in ``room``; the record itself is kept."""
	now = now or utcnow()
	record = await session.get_membership(room.id, user_id)
	if record is None or not record.is_active:
		raise policy.not_a_member()
	record.deactivate(now)
	await session.save_membership(record)
	await recount(session, room, now)
	return record
