"""Store session contract and the in-process fallback store.

Service code runs every read-then-write sequence against a ``RoomStoreSession``
handed out by ``RoomRepository.run``. The Postgres session lives in
``repository.py``; the in-memory session below is used when no pool is
configured (local runs and tests).
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, TypeVar

from roomshare.domain.rooms import models

_T = TypeVar("_T")


class RoomStoreSession(Protocol):
	async def get_room(self, room_id: str, *, for_update: bool = False) -> Optional[models.Room]: ...

	async def list_rooms(
		self,
		*,
		status: Optional[models.RoomStatus] = None,
		is_public: Optional[bool] = None,
		creation_type: Optional[models.CreationType] = None,
		created_by: Optional[str] = None,
		owner_id: Optional[str] = None,
		limit: Optional[int] = None,
	) -> List[models.Room]: ...

	async def save_room(self, room: models.Room) -> None: ...

	async def get_membership(self, room_id: str, user_id: str) -> Optional[models.MembershipRecord]: ...

	async def get_active_membership(self, user_id: str) -> Optional[models.MembershipRecord]: ...

	async def list_memberships(
		self,
		*,
		room_id: Optional[str] = None,
		user_id: Optional[str] = None,
		active_only: bool = False,
	) -> List[models.MembershipRecord]: ...

	async def count_active_members(self, room_id: str) -> int: ...

	async def save_membership(self, record: models.MembershipRecord) -> None: ...

	async def get_join_request(self, request_id: str, *, for_update: bool = False) -> Optional[models.JoinRequest]: ...

	async def find_pending_join_request(self, room_id: str, user_id: str) -> Optional[models.JoinRequest]: ...

	async def list_join_requests(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		user_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.JoinRequest]: ...

	async def save_join_request(self, request: models.JoinRequest) -> None: ...

	async def get_claim(self, claim_id: str, *, for_update: bool = False) -> Optional[models.OwnershipClaim]: ...

	async def find_pending_claim(self, room_id: str, owner_id: str) -> Optional[models.OwnershipClaim]: ...

	async def list_claims(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		owner_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.OwnershipClaim]: ...

	async def save_claim(self, claim: models.OwnershipClaim) -> None: ...


class MemoryRoomStore:
	"""Process-local tables guarded by a single asyncio lock."""

	def __init__(self) -> None:
		self.reset()

	def reset(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, models.Room] = {}
		self.memberships: Dict[str, models.MembershipRecord] = {}
		self.join_requests: Dict[str, models.JoinRequest] = {}
		self.claims: Dict[str, models.OwnershipClaim] = {}

	@asynccontextmanager
	async def session(self, *, write: bool = True) -> AsyncIterator["_MemorySession"]:
		async with self._lock:
			session = _MemorySession(self)
			yield session
			# Only reached when the unit returned normally
			if write:
				session.commit()


def _merged(base: Dict[str, _T], staged: Dict[str, _T]) -> Dict[str, _T]:
	if not staged:
		return base
	view = dict(base)
	view.update(staged)
	return view


class _MemorySession:
	"""Reads see committed rows plus this unit's staged writes.

	Everything handed out is a copy, so callers can mutate freely; nothing
	reaches the shared tables until ``commit``.
	"""

	def __init__(self, store: MemoryRoomStore) -> None:
		self._store = store
		self._rooms: Dict[str, models.Room] = {}
		self._memberships: Dict[str, models.MembershipRecord] = {}
		self._join_requests: Dict[str, models.JoinRequest] = {}
		self._claims: Dict[str, models.OwnershipClaim] = {}

	def commit(self) -> None:
		self._store.rooms.update(self._rooms)
		self._store.memberships.update(self._memberships)
		self._store.join_requests.update(self._join_requests)
		self._store.claims.update(self._claims)

	# rooms

	async def get_room(self, room_id: str, *, for_update: bool = False) -> Optional[models.Room]:
		room = _merged(self._store.rooms, self._rooms).get(room_id)
		return room.copy() if room else None

	async def list_rooms(
		self,
		*,
		status: Optional[models.RoomStatus] = None,
		is_public: Optional[bool] = None,
		creation_type: Optional[models.CreationType] = None,
		created_by: Optional[str] = None,
		owner_id: Optional[str] = None,
		limit: Optional[int] = None,
	) -> List[models.Room]:
		result: List[models.Room] = []
		for room in _merged(self._store.rooms, self._rooms).values():
			if status is not None and room.status is not status:
				continue
			if is_public is not None and room.is_public is not is_public:
				continue
			if creation_type is not None and room.creation_type is not creation_type:
				continue
			if created_by is not None and room.created_by != created_by:
				continue
			if owner_id is not None and room.owner_id != owner_id:
				continue
			result.append(room.copy())
		result.sort(key=lambda item: (item.created_at, item.id), reverse=True)
		return result[:limit] if limit is not None else result

	async def save_room(self, room: models.Room) -> None:
		self._rooms[room.id] = room.copy()

	# membership ledger

	async def get_membership(self, room_id: str, user_id: str) -> Optional[models.MembershipRecord]:
		for record in _merged(self._store.memberships, self._memberships).values():
			if record.room_id == room_id and record.user_id == user_id:
				return record.copy()
		return None

	async def get_active_membership(self, user_id: str) -> Optional[models.MembershipRecord]:
		for record in _merged(self._store.memberships, self._memberships).values():
			if record.user_id == user_id and record.is_active:
				return record.copy()
		return None

	async def list_memberships(
		self,
		*,
		room_id: Optional[str] = None,
		user_id: Optional[str] = None,
		active_only: bool = False,
	) -> List[models.MembershipRecord]:
		result = [
			record.copy()
			for record in _merged(self._store.memberships, self._memberships).values()
			if (room_id is None or record.room_id == room_id)
			and (user_id is None or record.user_id == user_id)
			and (record.is_active or not active_only)
		]
		result.sort(key=lambda item: (item.joined_at, item.id))
		return result

	async def count_active_members(self, room_id: str) -> int:
		return sum(
			1
			for record in _merged(self._store.memberships, self._memberships).values()
			if record.room_id == room_id and record.is_active
		)

	async def save_membership(self, record: models.MembershipRecord) -> None:
		self._memberships[record.id] = record.copy()

	# join requests

	async def get_join_request(self, request_id: str, *, for_update: bool = False) -> Optional[models.JoinRequest]:
		request = _merged(self._store.join_requests, self._join_requests).get(request_id)
		return request.copy() if request else None

	async def find_pending_join_request(self, room_id: str, user_id: str) -> Optional[models.JoinRequest]:
		for request in _merged(self._store.join_requests, self._join_requests).values():
			if request.room_id == room_id and request.user_id == user_id and request.status is models.RequestStatus.PENDING:
				return request.copy()
		return None

	async def list_join_requests(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		user_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.JoinRequest]:
		wanted = set(room_ids) if room_ids is not None else None
		result = [
			request.copy()
			for request in _merged(self._store.join_requests, self._join_requests).values()
			if (wanted is None or request.room_id in wanted)
			and (user_id is None or request.user_id == user_id)
			and (status is None or request.status is status)
		]
		result.sort(key=lambda item: (item.requested_at, item.id), reverse=True)
		return result

	async def save_join_request(self, request: models.JoinRequest) -> None:
		self._join_requests[request.id] = request.copy()

	# ownership claims

	async def get_claim(self, claim_id: str, *, for_update: bool = False) -> Optional[models.OwnershipClaim]:
		claim = _merged(self._store.claims, self._claims).get(claim_id)
		return claim.copy() if claim else None

	async def find_pending_claim(self, room_id: str, owner_id: str) -> Optional[models.OwnershipClaim]:
		for claim in _merged(self._store.claims, self._claims).values():
			if claim.room_id == room_id and claim.owner_id == owner_id and claim.status is models.RequestStatus.PENDING:
				return claim.copy()
		return None

	async def list_claims(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		owner_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.OwnershipClaim]:
		wanted = set(room_ids) if room_ids is not None else None
		result = [
			claim.copy()
			for claim in _merged(self._store.claims, self._claims).values()
			if (wanted is None or claim.room_id in wanted)
			and (owner_id is None or claim.owner_id == owner_id)
			and (status is None or claim.status is status)
		]
		result.sort(key=lambda item: (item.requested_at, item.id), reverse=True)
		return result

	async def save_claim(self, claim: models.OwnershipClaim) -> None:
		self._claims[claim.id] = claim.copy()
