"""Rooms domain exports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .cache import CurrentRoomCache
from .collaborators import MediaUploader
from .join_requests import JoinRequestService
from .outbox import RoomOutbox
from .ownership import OwnershipClaimService
from .repository import RoomRepository
from .service import RoomService


@dataclass(slots=True)
class RoomServices:
	"""The room services of one process, sharing a repository, cache and outbox."""

	rooms: RoomService
	join_requests: JoinRequestService
	claims: OwnershipClaimService

	@property
	def cache(self) -> CurrentRoomCache:
		return self.rooms.cache


def build_room_services(
	*,
	repository: Optional[RoomRepository] = None,
	cache: Optional[CurrentRoomCache] = None,
	outbox: Optional[RoomOutbox] = None,
	uploader: Optional[MediaUploader] = None,
) -> RoomServices:
	repository = repository or RoomRepository()
	cache = cache if cache is not None else CurrentRoomCache()
	outbox = outbox or RoomOutbox()
	return RoomServices(
		rooms=RoomService(repository, cache=cache, outbox=outbox, uploader=uploader),
		join_requests=JoinRequestService(repository, cache=cache, outbox=outbox),
		claims=OwnershipClaimService(repository, cache=cache, outbox=outbox),
	)


__all__ = [
	"JoinRequestService",
	"OwnershipClaimService",
	"RoomService",
	"RoomServices",
	"build_room_services",
]
