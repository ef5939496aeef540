"""Join request flows for owner-created rooms."""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

import ulid

from roomshare.domain.rooms import ledger, models, policy, schemas
from roomshare.domain.rooms.cache import CurrentRoomCache
from roomshare.domain.rooms.exceptions import NotFound, PreconditionFailed
from roomshare.domain.rooms.outbox import RoomOutbox
from roomshare.domain.rooms.repository import RoomRepository
from roomshare.domain.rooms.store import RoomStoreSession
from roomshare.infra.auth import AuthenticatedUser
from roomshare.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


def _request_summary(request: models.JoinRequest) -> schemas.JoinRequestSummary:
	return schemas.JoinRequestSummary(**request.to_summary())


async def _load_request(session: RoomStoreSession, request_id: str) -> models.JoinRequest:
	request = await session.get_join_request(request_id, for_update=True)
	if request is None:
		raise NotFound("join_request_not_found")
	return request


class JoinRequestService:
	"""Handles submission and owner review of join requests."""

	def __init__(
		self,
		repository: Optional[RoomRepository] = None,
		*,
		cache: Optional[CurrentRoomCache] = None,
		outbox: Optional[RoomOutbox] = None,
		clock: ledger.Clock = ledger.utcnow,
	) -> None:
		self.repo = repository or RoomRepository()
		self.cache = cache if cache is not None else CurrentRoomCache()
		self.outbox = outbox or RoomOutbox()
		self._clock = clock

	async def _eligibility(self, session: RoomStoreSession, room_id: str, user_id: str, *, for_update: bool = False):
		room = await session.get_room(room_id, for_update=for_update)
		if room is None:
			return None, policy.JoinEligibility(False, "room_not_found")
		eligibility = policy.evaluate_join_request(
			room,
			user_id,
			active_membership=await session.get_active_membership(user_id),
			pending_request=await session.find_pending_join_request(room_id, user_id),
			active_count=await session.count_active_members(room_id),
		)
		return room, eligibility

	async def check_eligibility(self, auth_user: AuthenticatedUser, room_id: str) -> policy.JoinEligibility:
		"""Report whether the caller may ask to join, and why not if they may not."""

		async def _unit(session: RoomStoreSession) -> policy.JoinEligibility:
			_room, eligibility = await self._eligibility(session, room_id, auth_user.id)
			return eligibility

		return await self.repo.read(_unit)

	async def request_to_join(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.JoinRequestSummary:
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.JoinRequest]:
			room, eligibility = await self._eligibility(session, room_id, auth_user.id, for_update=True)
			policy.ensure_eligible(eligibility)
			request = models.JoinRequest(
				id=str(ulid.new()),
				room_id=room_id,
				user_id=auth_user.id,
				requested_at=now,
			)
			await session.save_join_request(request)
			return room, request

		room, request = await self.repo.run(_unit)
		obs_metrics.inc_join_request("requested")
		_LOG.info("rooms.join_requested", extra={"room_id": room_id, "request_id": request.id})
		if room.owner_id:
			await self.outbox.notify_user(
				room.owner_id,
				kind="join_request_received",
				title="New join request",
				body=f"Someone wants to join {room.name}",
				data={"room_id": room_id, "request_id": request.id, "user_id": auth_user.id},
			)
		return _request_summary(request)

	async def approve(self, auth_user: AuthenticatedUser, request_id: str) -> schemas.JoinRequestSummary:
		"""Admit the requester; capacity and exclusivity are re-checked at commit time."""
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.JoinRequest]:
			request = await _load_request(session, request_id)
			room = await ledger.load_room(session, request.room_id, for_update=True)
			policy.ensure_owner(room, auth_user.id)
			request.approve(auth_user.id, now)
			policy.ensure_active(room)
			if await session.get_active_membership(request.user_id) is not None:
				obs_metrics.inc_precondition_failed("requester_has_room")
				raise PreconditionFailed("requester_has_room")
			policy.ensure_capacity(room, await session.count_active_members(room.id))
			await session.save_join_request(request)
			await ledger.admit(session, room, request.user_id, now=now)
			return room, request

		room, request = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_join_request("approved")
		obs_metrics.inc_room_join("approval")
		_LOG.info("rooms.join_approved", extra={"room_id": room.id, "request_id": request_id})
		await self.outbox.notify_user(
			request.user_id,
			kind="join_request_approved",
			title="Join request approved",
			body=f"You are now a member of {room.name}",
			data={"room_id": room.id, "request_id": request_id},
		)
		await self.outbox.notify_room(
			room.id,
			kind="member_joined",
			title=room.name,
			body=f"A roommate joined {room.name}",
			data={"room_id": room.id, "user_id": request.user_id},
		)
		await self.outbox.sync_roster(room.id)
		return _request_summary(request)

	async def reject(self, auth_user: AuthenticatedUser, request_id: str) -> schemas.JoinRequestSummary:
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.JoinRequest]:
			request = await _load_request(session, request_id)
			room = await ledger.load_room(session, request.room_id)
			policy.ensure_owner(room, auth_user.id)
			request.reject(auth_user.id, now)
			await session.save_join_request(request)
			return room, request

		room, request = await self.repo.run(_unit)
		obs_metrics.inc_join_request("rejected")
		_LOG.info("rooms.join_rejected", extra={"room_id": room.id, "request_id": request_id})
		await self.outbox.notify_user(
			request.user_id,
			kind="join_request_rejected",
			title="Join request declined",
			body=f"Your request to join {room.name} was declined",
			data={"room_id": room.id, "request_id": request_id},
		)
		return _request_summary(request)

	async def list_pending_for_room(self, auth_user: AuthenticatedUser, room_id: str) -> List[schemas.JoinRequestSummary]:
		async def _unit(session: RoomStoreSession) -> List[models.JoinRequest]:
			room = await ledger.load_room(session, room_id)
			policy.ensure_owner(room, auth_user.id)
			return await session.list_join_requests(room_ids=[room_id], status=models.RequestStatus.PENDING)

		return [_request_summary(item) for item in await self.repo.read(_unit)]

	async def list_mine(self, auth_user: AuthenticatedUser) -> List[schemas.JoinRequestSummary]:
		"""Every request the caller made, newest first."""

		async def _unit(session: RoomStoreSession) -> List[models.JoinRequest]:
			return await session.list_join_requests(user_id=auth_user.id)

		return [_request_summary(item) for item in await self.repo.read(_unit)]

	async def iter_pending_for_owner(self, auth_user: AuthenticatedUser) -> AsyncIterator[schemas.JoinRequestSummary]:
		"""Yield pending requests across all rooms the caller owns."""

		async def _unit(session: RoomStoreSession) -> List[models.JoinRequest]:
			rooms = await session.list_rooms(owner_id=auth_user.id)
			if not rooms:
				return []
			return await session.list_join_requests(
				room_ids=[room.id for room in rooms],
				status=models.RequestStatus.PENDING,
			)

		for request in await self.repo.read(_unit):
			yield _request_summary(request)
