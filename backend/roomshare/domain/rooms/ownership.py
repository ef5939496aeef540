"""Ownership claims: a landlord asks the creator of a member-created room to be recognised as owner."""

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


def _claim_summary(claim: models.OwnershipClaim) -> schemas.OwnershipClaimSummary:
	return schemas.OwnershipClaimSummary(**claim.to_summary())


async def _load_claim(session: RoomStoreSession, claim_id: str) -> models.OwnershipClaim:
	claim = await session.get_claim(claim_id, for_update=True)
	if claim is None:
		raise NotFound("claim_not_found")
	return claim


class OwnershipClaimService:
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

	async def can_be_claimed(self, room_id: str) -> bool:
		async def _unit(session: RoomStoreSession) -> Optional[models.Room]:
			return await session.get_room(room_id)

		room = await self.repo.read(_unit)
		return room is not None and room.is_claimable()

	async def room_has_owner(self, room_id: str) -> bool:
		async def _unit(session: RoomStoreSession) -> models.Room:
			return await ledger.load_room(session, room_id)

		room = await self.repo.read(_unit)
		return room.has_owner()

	async def create_claim(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.OwnershipClaimSummary:
		"""Open a pending claim; the room itself is not touched until approval."""
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.OwnershipClaim]:
			room = await ledger.load_room(session, room_id, for_update=True)
			policy.ensure_claimable(room, auth_user.id, await session.find_pending_claim(room_id, auth_user.id))
			claim = models.OwnershipClaim(
				id=str(ulid.new()),
				room_id=room_id,
				owner_id=auth_user.id,
				requested_at=now,
			)
			await session.save_claim(claim)
			return room, claim

		room, claim = await self.repo.run(_unit)
		obs_metrics.inc_ownership_claim("requested")
		_LOG.info("rooms.claim_requested", extra={"room_id": room_id, "claim_id": claim.id})
		await self.outbox.notify_user(
			room.created_by,
			kind="ownership_claim_received",
			title="Ownership request",
			body=f"Someone claims to own {room.name}",
			data={"room_id": room_id, "claim_id": claim.id, "owner_id": auth_user.id},
		)
		return _claim_summary(claim)

	async def approve(self, auth_user: AuthenticatedUser, claim_id: str) -> schemas.OwnershipClaimSummary:
		"""Record the claimant as owner. Membership, status and visibility stay as they are."""
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.OwnershipClaim]:
			claim = await _load_claim(session, claim_id)
			room = await ledger.load_room(session, claim.room_id, for_update=True)
			policy.ensure_creator(room, auth_user.id)
			claim.approve(auth_user.id, now)
			if room.has_owner():
				obs_metrics.inc_precondition_failed("room_has_owner")
				raise PreconditionFailed("room_has_owner")
			room.owner_id = claim.owner_id
			room.creation_type = models.CreationType.OWNER_CREATED
			room.updated_at = now
			await session.save_claim(claim)
			await session.save_room(room)
			return room, claim

		room, claim = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_ownership_claim("approved")
		_LOG.info("rooms.claim_approved", extra={"room_id": room.id, "claim_id": claim_id})
		await self.outbox.notify_user(
			claim.owner_id,
			kind="ownership_claim_approved",
			title="Ownership approved",
			body=f"You are now the owner of {room.name}",
			data={"room_id": room.id, "claim_id": claim_id},
		)
		return _claim_summary(claim)

	async def reject(self, auth_user: AuthenticatedUser, claim_id: str) -> schemas.OwnershipClaimSummary:
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.OwnershipClaim]:
			claim = await _load_claim(session, claim_id)
			room = await ledger.load_room(session, claim.room_id)
			policy.ensure_creator(room, auth_user.id)
			claim.reject(auth_user.id, now)
			await session.save_claim(claim)
			return room, claim

		room, claim = await self.repo.run(_unit)
		obs_metrics.inc_ownership_claim("rejected")
		_LOG.info("rooms.claim_rejected", extra={"room_id": room.id, "claim_id": claim_id})
		await self.outbox.notify_user(
			claim.owner_id,
			kind="ownership_claim_rejected",
			title="Ownership declined",
			body=f"Your ownership request for {room.name} was declined",
			data={"room_id": room.id, "claim_id": claim_id},
		)
		return _claim_summary(claim)

	async def list_pending_for_room(self, auth_user: AuthenticatedUser, room_id: str) -> List[schemas.OwnershipClaimSummary]:
		async def _unit(session: RoomStoreSession) -> List[models.OwnershipClaim]:
			room = await ledger.load_room(session, room_id)
			policy.ensure_creator(room, auth_user.id)
			return await session.list_claims(room_ids=[room_id], status=models.RequestStatus.PENDING)

		return [_claim_summary(item) for item in await self.repo.read(_unit)]

	async def list_history(self, room_id: str) -> List[schemas.OwnershipClaimSummary]:
		"""All claims ever made on the room, newest first."""

		async def _unit(session: RoomStoreSession) -> List[models.OwnershipClaim]:
			await ledger.load_room(session, room_id)
			return await session.list_claims(room_ids=[room_id])

		return [_claim_summary(item) for item in await self.repo.read(_unit)]

	async def list_mine(self, auth_user: AuthenticatedUser) -> List[schemas.OwnershipClaimSummary]:
		async def _unit(session: RoomStoreSession) -> List[models.OwnershipClaim]:
			return await session.list_claims(owner_id=auth_user.id)

		return [_claim_summary(item) for item in await self.repo.read(_unit)]

	async def iter_pending_for_creator(self, auth_user: AuthenticatedUser) -> AsyncIterator[schemas.OwnershipClaimSummary]:
		"""Yield pending claims across all rooms the caller created."""

		async def _unit(session: RoomStoreSession) -> List[models.OwnershipClaim]:
			rooms = await session.list_rooms(created_by=auth_user.id)
			if not rooms:
				return []
			return await session.list_claims(
				room_ids=[room.id for room in rooms],
				status=models.RequestStatus.PENDING,
			)

		for claim in await self.repo.read(_unit):
			yield _claim_summary(claim)
