"""Room lifecycle service layer: registry, membership and the current-room cache."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import ulid

from roomshare.domain.rooms import ledger, models, policy, schemas
from roomshare.domain.rooms.cache import MISS, CurrentRoomCache
from roomshare.domain.rooms.collaborators import MediaUploader
from roomshare.domain.rooms.exceptions import NotFound, PreconditionFailed
from roomshare.domain.rooms.outbox import RoomOutbox
from roomshare.domain.rooms.repository import RoomRepository
from roomshare.domain.rooms.store import RoomStoreSession
from roomshare.infra.auth import AuthenticatedUser
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)


def _summary(room: models.Room, role: Optional[models.MemberRole] = None) -> schemas.RoomSummary:
	return schemas.RoomSummary(**room.to_summary(role=role))


def _member_summary(record: models.MembershipRecord) -> schemas.MembershipSummary:
	return schemas.MembershipSummary(**record.to_summary())


class RoomService:
	"""Coordinates the room registry, the membership ledger and the read cache."""

	def __init__(
		self,
		repository: Optional[RoomRepository] = None,
		*,
		cache: Optional[CurrentRoomCache] = None,
		outbox: Optional[RoomOutbox] = None,
		uploader: Optional[MediaUploader] = None,
		clock: ledger.Clock = ledger.utcnow,
	) -> None:
		self.repo = repository or RoomRepository()
		self.cache = cache if cache is not None else CurrentRoomCache()
		self.outbox = outbox or RoomOutbox()
		self.uploader = uploader
		self._clock = clock

	# --- registry -----------------------------------------------------------

	async def create_room(
		self,
		auth_user: AuthenticatedUser,
		payload: schemas.RoomCreateRequest,
		*,
		images: Sequence[bytes] = (),
	) -> schemas.RoomSummary:
		"""Create a member-created room with the caller as its admin member."""
		return await self._create(auth_user, payload, models.CreationType.MEMBER_CREATED, images)

	async def create_owner_room(
		self,
		auth_user: AuthenticatedUser,
		payload: schemas.RoomCreateRequest,
		*,
		images: Sequence[bytes] = (),
	) -> schemas.RoomSummary:
		"""Create a listing owned by the caller; the owner is not a member."""
		return await self._create(auth_user, payload, models.CreationType.OWNER_CREATED, images)

	async def _create(
		self,
		auth_user: AuthenticatedUser,
		payload: schemas.RoomCreateRequest,
		creation_type: models.CreationType,
		images: Sequence[bytes],
	) -> schemas.RoomSummary:
		image_urls = list(payload.image_urls)
		image_urls.extend(await self._upload_images(images))
		now = self._clock()
		owner_created = creation_type is models.CreationType.OWNER_CREATED
		room = models.Room(
			id=str(ulid.new()),
			created_by=auth_user.id,
			name=payload.name.strip(),
			description=payload.description,
			location=payload.location,
			lat=payload.lat,
			lng=payload.lng,
			room_type=payload.room_type,
			capacity=payload.capacity or settings.rooms_default_capacity,
			rent=models.RentTerms(
				amount=payload.rent.amount,
				currency=(payload.rent.currency or settings.rooms_default_currency).upper(),
				advance_amount=payload.rent.advance_amount,
			),
			amenities=list(payload.amenities),
			image_urls=image_urls,
			creation_type=creation_type,
			owner_id=auth_user.id if owner_created else None,
			created_at=now,
			updated_at=now,
		)

		async def _unit(session: RoomStoreSession) -> models.Room:
			policy.ensure_no_active_membership(await session.get_active_membership(auth_user.id))
			await session.save_room(room)
			if not owner_created:
				await ledger.admit(session, room, auth_user.id, role=models.MemberRole.ADMIN, now=now)
			return room

		created = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_room_created(creation_type.value)
		_LOG.info("rooms.created", extra={"room_id": created.id, "creation_type": creation_type.value})
		if not owner_created:
			await self.outbox.sync_roster(created.id)
		return _summary(created, None if owner_created else models.MemberRole.ADMIN)

	async def _upload_images(self, images: Sequence[bytes]) -> List[str]:
		if not images:
			return []
		if self.uploader is None:
			_LOG.warning("rooms.images_skipped", extra={"count": len(images)})
			return []
		urls: List[str] = []
		for data in images:
			try:
				url = await self.uploader.upload_image(data, folder="rooms")
			except Exception:
				obs_metrics.side_effect("upload_image", ok=False)
				_LOG.exception("rooms.image_upload_failed")
				continue
			if url:
				urls.append(url)
		return urls

	async def update_room(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.RoomUpdateRequest,
	) -> schemas.RoomSummary:
		"""Merge the provided fields; membership, status and ownership are untouched."""
		changes = payload.model_dump(exclude_unset=True)
		rent_changes = changes.pop("rent", None)
		if changes.get("name") is not None:
			changes["name"] = changes["name"].strip()

		async def _unit(session: RoomStoreSession) -> models.Room:
			room = await ledger.load_room(session, room_id, for_update=True)
			policy.ensure_can_manage(room, auth_user.id, await session.get_membership(room_id, auth_user.id))
			capacity = changes.get("capacity")
			if capacity is not None:
				policy.ensure_capacity_not_below(room, capacity, await session.count_active_members(room_id))
			for field_name, value in changes.items():
				if value is None and field_name not in ("lat", "lng"):
					continue
				setattr(room, field_name, value)
			if rent_changes:
				if rent_changes.get("currency"):
					rent_changes["currency"] = rent_changes["currency"].upper()
				room.rent = room.rent.merged(**rent_changes)
			room.updated_at = self._clock()
			await session.save_room(room)
			return room

		room = await self.repo.run(_unit)
		_LOG.info("rooms.updated", extra={"room_id": room_id, "fields": sorted(changes)})
		return _summary(room)

	async def deactivate_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomSummary:
		return await self._set_status(auth_user, room_id, models.RoomStatus.INACTIVE)

	async def reactivate_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomSummary:
		return await self._set_status(auth_user, room_id, models.RoomStatus.ACTIVE)

	async def _set_status(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		status: models.RoomStatus,
	) -> schemas.RoomSummary:
		async def _unit(session: RoomStoreSession) -> tuple[models.Room, bool]:
			room = await ledger.load_room(session, room_id, for_update=True)
			policy.ensure_can_manage(room, auth_user.id, await session.get_membership(room_id, auth_user.id))
			if room.status is status:
				return room, False
			room.status = status
			room.updated_at = self._clock()
			await session.save_room(room)
			return room, True

		room, changed = await self.repo.run(_unit)
		if changed:
			obs_metrics.inc_room_status_change(status.value)
			_LOG.info("rooms.status_changed", extra={"room_id": room_id, "status": status.value})
			await self.outbox.notify_room(
				room_id,
				kind="room_status",
				title=room.name,
				body=f"{room.name} is now {status.value}",
				data={"room_id": room_id, "status": status.value},
			)
		return _summary(room)

	async def set_visibility(self, auth_user: AuthenticatedUser, room_id: str, is_public: bool) -> schemas.RoomSummary:
		async def _unit(session: RoomStoreSession) -> tuple[models.Room, bool]:
			room = await ledger.load_room(session, room_id, for_update=True)
			policy.ensure_can_manage(room, auth_user.id, await session.get_membership(room_id, auth_user.id))
			if room.is_public is is_public:
				return room, False
			room.is_public = is_public
			room.updated_at = self._clock()
			await session.save_room(room)
			return room, True

		room, changed = await self.repo.run(_unit)
		if changed:
			obs_metrics.inc_room_status_change("public" if is_public else "private")
			_LOG.info("rooms.visibility_changed", extra={"room_id": room_id, "is_public": is_public})
		return _summary(room)

	async def get_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomDetail:
		"""Room with its roster projected from the ledger.

		Hidden rooms are reported as missing to anyone who never belonged to them.
		"""

		async def _unit(session: RoomStoreSession):
			room = await ledger.load_room(session, room_id)
			own = await session.get_membership(room_id, auth_user.id)
			members = await session.list_memberships(room_id=room_id, active_only=True)
			return room, own, members

		room, own, members = await self.repo.read(_unit)
		if not room.is_visible() and own is None and not room.can_be_managed_by(auth_user.id):
			raise NotFound("room_not_found")
		role = own.role if own is not None and own.is_active else None
		return schemas.RoomDetail(
			**room.to_summary(role=role),
			members=[_member_summary(record) for record in members],
		)

	async def list_available(self, auth_user: AuthenticatedUser) -> List[schemas.RoomSummary]:
		"""Active public rooms the caller is not currently a member of."""

		async def _unit(session: RoomStoreSession):
			rooms = await session.list_rooms(status=models.RoomStatus.ACTIVE, is_public=True)
			current = await session.get_active_membership(auth_user.id)
			return rooms, current

		rooms, current = await self.repo.read(_unit)
		current_room_id = current.room_id if current is not None else None
		return [_summary(room) for room in rooms if room.id != current_room_id]

	async def list_available_owner_rooms(self, auth_user: AuthenticatedUser) -> List[schemas.RoomSummary]:
		"""Owner listings the caller could ask to join."""

		async def _unit(session: RoomStoreSession):
			rooms = await session.list_rooms(
				status=models.RoomStatus.ACTIVE,
				is_public=True,
				creation_type=models.CreationType.OWNER_CREATED,
			)
			current = await session.get_active_membership(auth_user.id)
			return rooms, current

		rooms, current = await self.repo.read(_unit)
		current_room_id = current.room_id if current is not None else None
		visible = [
			_summary(room)
			for room in rooms
			if room.owner_id != auth_user.id and room.id != current_room_id
		]
		return visible[: settings.rooms_available_limit]

	async def get_room_owner(self, room_id: str) -> Optional[str]:
		async def _unit(session: RoomStoreSession) -> models.Room:
			return await ledger.load_room(session, room_id)

		room = await self.repo.read(_unit)
		return room.owner_id

	async def is_room_owner(self, auth_user: AuthenticatedUser, room_id: str) -> bool:
		return await self.get_room_owner(room_id) == auth_user.id

	# --- current room -------------------------------------------------------

	async def get_current_room(
		self,
		auth_user: AuthenticatedUser,
		*,
		force_refresh: bool = False,
	) -> Optional[schemas.RoomSummary]:
		"""Resolve the caller's room, serving from the cache while it is fresh."""
		if not force_refresh:
			cached = self.cache.get(auth_user.id)
			if cached is not MISS:
				return _summary(cached.room, cached.role) if cached is not None else None
		# A mutation committing while the read is in flight makes this result stale
		generation = self.cache.generation

		async def _unit(session: RoomStoreSession) -> Optional[models.CurrentRoom]:
			record = await session.get_active_membership(auth_user.id)
			if record is None:
				return None
			room = await session.get_room(record.room_id)
			if room is None:
				return None
			return models.CurrentRoom(room=room, role=record.role)

		current = await self.repo.read(_unit)
		self.cache.put(auth_user.id, current, generation=generation)
		if current is None:
			return None
		return _summary(current.room, current.role)

	async def can_create_room(self, auth_user: AuthenticatedUser) -> bool:
		return await self.get_current_room(auth_user) is None

	def handle_sign_out(self) -> None:
		"""Identity changed; nothing cached for the previous user may be served."""
		self.cache.clear()

	# --- membership ledger --------------------------------------------------

	async def join_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomSummary:
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> models.Room:
			room = await ledger.load_room(session, room_id, for_update=True)
			policy.ensure_direct_join_allowed(room)
			await ledger.validate_admission(session, room, auth_user.id)
			await ledger.admit(session, room, auth_user.id, now=now)
			return room

		room = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_room_join("direct")
		_LOG.info("rooms.join_committed", extra={"room_id": room_id, "member_count": room.member_count})
		await self._announce_membership(room, auth_user.id, joined=True)
		return _summary(room, models.MemberRole.MEMBER)

	async def leave_room(self, auth_user: AuthenticatedUser, room_id: str) -> None:
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> models.Room:
			room = await ledger.load_room(session, room_id, for_update=True)
			await ledger.release(session, room, auth_user.id, now=now)
			return room

		room = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_room_leave()
		_LOG.info("rooms.leave_committed", extra={"room_id": room_id, "member_count": room.member_count})
		await self._announce_membership(room, auth_user.id, joined=False)

	async def switch_room(
		self,
		auth_user: AuthenticatedUser,
		from_room_id: str,
		to_room_id: str,
	) -> schemas.RoomSummary:
		"""Leave one room and join another as a single unit; any failure changes nothing."""
		if from_room_id == to_room_id:
			raise PreconditionFailed("same_room")
		now = self._clock()

		async def _unit(session: RoomStoreSession) -> tuple[models.Room, models.Room]:
			# Lock rooms in a stable order so concurrent switches cannot deadlock
			first_id, second_id = sorted((from_room_id, to_room_id))
			locked = {
				first_id: await ledger.load_room(session, first_id, for_update=True),
				second_id: await ledger.load_room(session, second_id, for_update=True),
			}
			source, target = locked[from_room_id], locked[to_room_id]
			policy.ensure_direct_join_allowed(target)
			await ledger.release(session, source, auth_user.id, now=now)
			await ledger.validate_admission(session, target, auth_user.id)
			await ledger.admit(session, target, auth_user.id, now=now)
			return source, target

		source, target = await self.repo.run(_unit)
		self.cache.clear()
		obs_metrics.inc_room_switch()
		_LOG.info("rooms.switch_committed", extra={"from_room_id": from_room_id, "to_room_id": to_room_id})
		await self._announce_membership(source, auth_user.id, joined=False)
		await self._announce_membership(target, auth_user.id, joined=True)
		return _summary(target, models.MemberRole.MEMBER)

	async def list_active_members(self, room_id: str) -> List[schemas.MembershipSummary]:
		async def _unit(session: RoomStoreSession) -> List[models.MembershipRecord]:
			await ledger.load_room(session, room_id)
			return await session.list_memberships(room_id=room_id, active_only=True)

		return [_member_summary(record) for record in await self.repo.read(_unit)]

	async def list_membership_history(self, room_id: str) -> List[schemas.MembershipSummary]:
		async def _unit(session: RoomStoreSession) -> List[models.MembershipRecord]:
			await ledger.load_room(session, room_id)
			return await session.list_memberships(room_id=room_id)

		return [_member_summary(record) for record in await self.repo.read(_unit)]

	async def is_active_member(self, room_id: str, user_id: str) -> bool:
		async def _unit(session: RoomStoreSession) -> Optional[models.MembershipRecord]:
			return await session.get_membership(room_id, user_id)

		record = await self.repo.read(_unit)
		return record is not None and record.is_active

	async def _announce_membership(self, room: models.Room, user_id: str, *, joined: bool) -> None:
		kind = "member_joined" if joined else "member_left"
		verb = "joined" if joined else "left"
		await self.outbox.notify_room(
			room.id,
			kind=kind,
			title=room.name,
			body=f"A roommate {verb} {room.name}",
			data={"room_id": room.id, "user_id": user_id},
		)
		await self.outbox.sync_roster(room.id)
