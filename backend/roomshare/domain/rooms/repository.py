"""Persistence for rooms: Postgres sessions, schema and the atomic-unit executor."""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

import asyncpg

from roomshare.domain.rooms import models
from roomshare.domain.rooms.exceptions import TransientStoreConflict
from roomshare.domain.rooms.store import MemoryRoomStore, RoomStoreSession
from roomshare.infra.postgres import get_pool
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)

T = TypeVar("T")
Unit = Callable[[RoomStoreSession], Awaitable[T]]

_RETRYABLE_ERRORS: Tuple[type[BaseException], ...] = (
	asyncpg.SerializationError,
	asyncpg.DeadlockDetectedError,
	asyncpg.UniqueViolationError,
	TransientStoreConflict,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS rooms (
	id TEXT PRIMARY KEY,
	created_by TEXT NOT NULL,
	name TEXT NOT NULL,
	description TEXT NOT NULL DEFAULT '',
	location TEXT NOT NULL DEFAULT '',
	lat DOUBLE PRECISION,
	lng DOUBLE PRECISION,
	room_type TEXT NOT NULL DEFAULT '',
	capacity INTEGER NOT NULL CHECK (capacity > 0),
	rent_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
	rent_currency TEXT NOT NULL DEFAULT 'INR',
	rent_advance DOUBLE PRECISION NOT NULL DEFAULT 0,
	amenities TEXT[] NOT NULL DEFAULT '{}',
	image_urls TEXT[] NOT NULL DEFAULT '{}',
	status TEXT NOT NULL DEFAULT 'active',
	is_public BOOLEAN NOT NULL DEFAULT TRUE,
	creation_type TEXT NOT NULL,
	owner_id TEXT,
	member_count INTEGER NOT NULL DEFAULT 0,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS rooms_available_idx ON rooms (status, is_public, created_at DESC);

CREATE TABLE IF NOT EXISTS membership_records (
	id TEXT PRIMARY KEY,
	room_id TEXT NOT NULL REFERENCES rooms(id),
	user_id TEXT NOT NULL,
	role TEXT NOT NULL,
	joined_at TIMESTAMPTZ NOT NULL,
	left_at TIMESTAMPTZ,
	is_active BOOLEAN NOT NULL DEFAULT TRUE,
	UNIQUE (room_id, user_id)
);
CREATE UNIQUE INDEX IF NOT EXISTS membership_one_active_per_user
	ON membership_records (user_id) WHERE is_active;

CREATE TABLE IF NOT EXISTS join_requests (
	id TEXT PRIMARY KEY,
	room_id TEXT NOT NULL REFERENCES rooms(id),
	user_id TEXT NOT NULL,
	status TEXT NOT NULL DEFAULT 'pending',
	requested_at TIMESTAMPTZ NOT NULL,
	reviewed_at TIMESTAMPTZ,
	reviewed_by TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS join_requests_one_pending
	ON join_requests (room_id, user_id) WHERE status = 'pending';

CREATE TABLE IF NOT EXISTS ownership_requests (
	id TEXT PRIMARY KEY,
	room_id TEXT NOT NULL REFERENCES rooms(id),
	owner_id TEXT NOT NULL,
	status TEXT NOT NULL DEFAULT 'pending',
	requested_at TIMESTAMPTZ NOT NULL,
	approved_at TIMESTAMPTZ,
	rejected_at TIMESTAMPTZ,
	reviewed_by TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS ownership_requests_one_pending
	ON ownership_requests (room_id, owner_id) WHERE status = 'pending';
"""

_ROOM_COLUMNS = (
	"id, created_by, name, description, location, lat, lng, room_type, capacity, "
	"rent_amount, rent_currency, rent_advance, amenities, image_urls, status, is_public, "
	"creation_type, owner_id, member_count, created_at, updated_at"
)
_MEMBERSHIP_COLUMNS = "id, room_id, user_id, role, joined_at, left_at, is_active"
_JOIN_REQUEST_COLUMNS = "id, room_id, user_id, status, requested_at, reviewed_at, reviewed_by"
_CLAIM_COLUMNS = "id, room_id, owner_id, status, requested_at, approved_at, rejected_at, reviewed_by"


async def ensure_schema(pool: asyncpg.Pool) -> None:
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA_SQL)


def _room_from_row(row: asyncpg.Record) -> models.Room:
	return models.Room(
		id=row["id"],
		created_by=row["created_by"],
		name=row["name"],
		description=row["description"],
		location=row["location"],
		lat=row["lat"],
		lng=row["lng"],
		room_type=row["room_type"],
		capacity=int(row["capacity"]),
		rent=models.RentTerms(
			amount=float(row["rent_amount"]),
			currency=row["rent_currency"],
			advance_amount=float(row["rent_advance"]),
		),
		amenities=list(row["amenities"] or []),
		image_urls=list(row["image_urls"] or []),
		status=models.RoomStatus(row["status"]),
		is_public=bool(row["is_public"]),
		creation_type=models.CreationType(row["creation_type"]),
		owner_id=row["owner_id"],
		member_count=int(row["member_count"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _membership_from_row(row: asyncpg.Record) -> models.MembershipRecord:
	return models.MembershipRecord(
		id=row["id"],
		room_id=row["room_id"],
		user_id=row["user_id"],
		role=models.MemberRole(row["role"]),
		joined_at=row["joined_at"],
		left_at=row["left_at"],
		is_active=bool(row["is_active"]),
	)


def _join_request_from_row(row: asyncpg.Record) -> models.JoinRequest:
	return models.JoinRequest(
		id=row["id"],
		room_id=row["room_id"],
		user_id=row["user_id"],
		status=models.RequestStatus(row["status"]),
		requested_at=row["requested_at"],
		reviewed_at=row["reviewed_at"],
		reviewed_by=row["reviewed_by"],
	)


def _claim_from_row(row: asyncpg.Record) -> models.OwnershipClaim:
	return models.OwnershipClaim(
		id=row["id"],
		room_id=row["room_id"],
		owner_id=row["owner_id"],
		status=models.RequestStatus(row["status"]),
		requested_at=row["requested_at"],
		approved_at=row["approved_at"],
		rejected_at=row["rejected_at"],
		reviewed_by=row["reviewed_by"],
	)


def _where(filters: Sequence[Tuple[str, Any]]) -> Tuple[str, List[Any]]:
	"""Build a WHERE clause from (``"column = {}"``, value) pairs."""
	clauses: List[str] = []
	args: List[Any] = []
	for template, value in filters:
		if value is None:
			continue
		args.append(value)
		clauses.append(template.format(f"${len(args)}"))
	if not clauses:
		return "", args
	return "WHERE " + " AND ".join(clauses), args


class PostgresRoomSession:
	"""RoomStoreSession over a single asyncpg connection."""

	def __init__(self, conn: asyncpg.Connection) -> None:
		self._conn = conn

	async def get_room(self, room_id: str, *, for_update: bool = False) -> Optional[models.Room]:
		suffix = " FOR UPDATE" if for_update else ""
		row = await self._conn.fetchrow(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE id = $1{suffix}", room_id)
		return _room_from_row(row) if row else None

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
		where, args = _where(
			[
				("status = {}", status.value if status is not None else None),
				("is_public = {}", is_public),
				("creation_type = {}", creation_type.value if creation_type is not None else None),
				("created_by = {}", created_by),
				("owner_id = {}", owner_id),
			]
		)
		query = f"SELECT {_ROOM_COLUMNS} FROM rooms {where} ORDER BY created_at DESC, id DESC"
		if limit is not None:
			args.append(limit)
			query += f" LIMIT ${len(args)}"
		rows = await self._conn.fetch(query, *args)
		return [_room_from_row(row) for row in rows]

	async def save_room(self, room: models.Room) -> None:
		await self._conn.execute(
			f"""
			INSERT INTO rooms ({_ROOM_COLUMNS})
			VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15,$16,$17,$18,$19,$20,$21)
			ON CONFLICT (id) DO UPDATE SET
				name = EXCLUDED.name,
				description = EXCLUDED.description,
				location = EXCLUDED.location,
				lat = EXCLUDED.lat,
				lng = EXCLUDED.lng,
				room_type = EXCLUDED.room_type,
				capacity = EXCLUDED.capacity,
				rent_amount = EXCLUDED.rent_amount,
				rent_currency = EXCLUDED.rent_currency,
				rent_advance = EXCLUDED.rent_advance,
				amenities = EXCLUDED.amenities,
				image_urls = EXCLUDED.image_urls,
				status = EXCLUDED.status,
				is_public = EXCLUDED.is_public,
				creation_type = EXCLUDED.creation_type,
				owner_id = EXCLUDED.owner_id,
				member_count = EXCLUDED.member_count,
				updated_at = EXCLUDED.updated_at
			""",
			room.id,
			room.created_by,
			room.name,
			room.description,
			room.location,
			room.lat,
			room.lng,
			room.room_type,
			room.capacity,
			room.rent.amount,
			room.rent.currency,
			room.rent.advance_amount,
			list(room.amenities),
			list(room.image_urls),
			room.status.value,
			room.is_public,
			room.creation_type.value,
			room.owner_id,
			room.member_count,
			room.created_at,
			room.updated_at,
		)

	async def get_membership(self, room_id: str, user_id: str) -> Optional[models.MembershipRecord]:
		row = await self._conn.fetchrow(
			f"SELECT {_MEMBERSHIP_COLUMNS} FROM membership_records WHERE room_id = $1 AND user_id = $2",
			room_id,
			user_id,
		)
		return _membership_from_row(row) if row else None

	async def get_active_membership(self, user_id: str) -> Optional[models.MembershipRecord]:
		row = await self._conn.fetchrow(
			f"SELECT {_MEMBERSHIP_COLUMNS} FROM membership_records WHERE user_id = $1 AND is_active LIMIT 1",
			user_id,
		)
		return _membership_from_row(row) if row else None

	async def list_memberships(
		self,
		*,
		room_id: Optional[str] = None,
		user_id: Optional[str] = None,
		active_only: bool = False,
	) -> List[models.MembershipRecord]:
		where, args = _where(
			[
				("room_id = {}", room_id),
				("user_id = {}", user_id),
				("is_active = {}", True if active_only else None),
			]
		)
		rows = await self._conn.fetch(
			f"SELECT {_MEMBERSHIP_COLUMNS} FROM membership_records {where} ORDER BY joined_at ASC, id ASC",
			*args,
		)
		return [_membership_from_row(row) for row in rows]

	async def count_active_members(self, room_id: str) -> int:
		count = await self._conn.fetchval(
			"SELECT COUNT(*) FROM membership_records WHERE room_id = $1 AND is_active",
			room_id,
		)
		return int(count or 0)

	async def save_membership(self, record: models.MembershipRecord) -> None:
		await self._conn.execute(
			f"""
			INSERT INTO membership_records ({_MEMBERSHIP_COLUMNS})
			VALUES ($1,$2,$3,$4,$5,$6,$7)
			ON CONFLICT (id) DO UPDATE SET
				role = EXCLUDED.role,
				joined_at = EXCLUDED.joined_at,
				left_at = EXCLUDED.left_at,
				is_active = EXCLUDED.is_active
			""",
			record.id,
			record.room_id,
			record.user_id,
			record.role.value,
			record.joined_at,
			record.left_at,
			record.is_active,
		)

	async def get_join_request(self, request_id: str, *, for_update: bool = False) -> Optional[models.JoinRequest]:
		suffix = " FOR UPDATE" if for_update else ""
		row = await self._conn.fetchrow(
			f"SELECT {_JOIN_REQUEST_COLUMNS} FROM join_requests WHERE id = $1{suffix}",
			request_id,
		)
		return _join_request_from_row(row) if row else None

	async def find_pending_join_request(self, room_id: str, user_id: str) -> Optional[models.JoinRequest]:
		row = await self._conn.fetchrow(
			f"""
			SELECT {_JOIN_REQUEST_COLUMNS} FROM join_requests
			WHERE room_id = $1 AND user_id = $2 AND status = 'pending'
			LIMIT 1
			""",
			room_id,
			user_id,
		)
		return _join_request_from_row(row) if row else None

	async def list_join_requests(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		user_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.JoinRequest]:
		where, args = _where(
			[
				("room_id = ANY({}::text[])", list(room_ids) if room_ids is not None else None),
				("user_id = {}", user_id),
				("status = {}", status.value if status is not None else None),
			]
		)
		rows = await self._conn.fetch(
			f"SELECT {_JOIN_REQUEST_COLUMNS} FROM join_requests {where} ORDER BY requested_at DESC, id DESC",
			*args,
		)
		return [_join_request_from_row(row) for row in rows]

	async def save_join_request(self, request: models.JoinRequest) -> None:
		await self._conn.execute(
			f"""
			INSERT INTO join_requests ({_JOIN_REQUEST_COLUMNS})
			VALUES ($1,$2,$3,$4,$5,$6,$7)
			ON CONFLICT (id) DO UPDATE SET
				status = EXCLUDED.status,
				reviewed_at = EXCLUDED.reviewed_at,
				reviewed_by = EXCLUDED.reviewed_by
			""",
			request.id,
			request.room_id,
			request.user_id,
			request.status.value,
			request.requested_at,
			request.reviewed_at,
			request.reviewed_by,
		)

	async def get_claim(self, claim_id: str, *, for_update: bool = False) -> Optional[models.OwnershipClaim]:
		suffix = " FOR UPDATE" if for_update else ""
		row = await self._conn.fetchrow(
			f"SELECT {_CLAIM_COLUMNS} FROM ownership_requests WHERE id = $1{suffix}",
			claim_id,
		)
		return _claim_from_row(row) if row else None

	async def find_pending_claim(self, room_id: str, owner_id: str) -> Optional[models.OwnershipClaim]:
		row = await self._conn.fetchrow(
			f"""
			SELECT {_CLAIM_COLUMNS} FROM ownership_requests
			WHERE room_id = $1 AND owner_id = $2 AND status = 'pending'
			LIMIT 1
			""",
			room_id,
			owner_id,
		)
		return _claim_from_row(row) if row else None

	async def list_claims(
		self,
		*,
		room_ids: Optional[Iterable[str]] = None,
		owner_id: Optional[str] = None,
		status: Optional[models.RequestStatus] = None,
	) -> List[models.OwnershipClaim]:
		where, args = _where(
			[
				("room_id = ANY({}::text[])", list(room_ids) if room_ids is not None else None),
				("owner_id = {}", owner_id),
				("status = {}", status.value if status is not None else None),
			]
		)
		rows = await self._conn.fetch(
			f"SELECT {_CLAIM_COLUMNS} FROM ownership_requests {where} ORDER BY requested_at DESC, id DESC",
			*args,
		)
		return [_claim_from_row(row) for row in rows]

	async def save_claim(self, claim: models.OwnershipClaim) -> None:
		await self._conn.execute(
			f"""
			INSERT INTO ownership_requests ({_CLAIM_COLUMNS})
			VALUES ($1,$2,$3,$4,$5,$6,$7,$8)
			ON CONFLICT (id) DO UPDATE SET
				status = EXCLUDED.status,
				approved_at = EXCLUDED.approved_at,
				rejected_at = EXCLUDED.rejected_at,
				reviewed_by = EXCLUDED.reviewed_by
			""",
			claim.id,
			claim.room_id,
			claim.owner_id,
			claim.status.value,
			claim.requested_at,
			claim.approved_at,
			claim.rejected_at,
			claim.reviewed_by,
		)


_MEMORY = MemoryRoomStore()


def reset_memory_state() -> None:
	_MEMORY.reset()


class RoomRepository:
	"""Hands out store sessions and runs atomic units with bounded retry.

	Falls back to the process-local store when no Postgres pool is available.
	"""

	def __init__(
		self,
		*,
		memory: Optional[MemoryRoomStore] = None,
		max_attempts: Optional[int] = None,
		backoff_seconds: Optional[float] = None,
	) -> None:
		self._memory = memory or _MEMORY
		self._max_attempts = max(1, max_attempts if max_attempts is not None else settings.rooms_txn_max_attempts)
		self._backoff = backoff_seconds if backoff_seconds is not None else settings.rooms_txn_backoff_seconds
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except (AssertionError, OSError, asyncpg.PostgresError) as exc:
			_LOG.warning("rooms.store_memory_fallback", extra={"error": type(exc).__name__})
			pool = None
		self._pool_instance = pool
		return pool

	@asynccontextmanager
	async def _session(self, *, write: bool) -> AsyncIterator[RoomStoreSession]:
		pool = await self._get_pool()
		if pool is None:
			async with self._memory.session(write=write) as session:
				yield session
			return
		async with pool.acquire() as conn:
			if write:
				async with conn.transaction(isolation="serializable"):
					yield PostgresRoomSession(conn)
			else:
				yield PostgresRoomSession(conn)

	async def run(self, unit: Unit[T], *, write: bool = True) -> T:
		"""Run ``unit`` inside one transaction, retrying transient store conflicts.

		Any other exception aborts the unit with nothing written.
		"""
		attempt = 0
		while True:
			attempt += 1
			try:
				async with self._session(write=write) as session:
					return await unit(session)
			except _RETRYABLE_ERRORS as exc:
				if attempt >= self._max_attempts:
					obs_metrics.inc_txn_exhausted()
					_LOG.warning(
						"rooms.txn_exhausted",
						extra={"attempts": attempt, "error": type(exc).__name__},
					)
					raise TransientStoreConflict("store_conflict") from exc
				obs_metrics.inc_txn_retry()
				_LOG.info("rooms.txn_retry", extra={"attempt": attempt, "error": type(exc).__name__})
				await asyncio.sleep(self._backoff * attempt * random.uniform(0.5, 1.5))

	async def read(self, unit: Unit[T]) -> T:
		return await self.run(unit, write=False)
