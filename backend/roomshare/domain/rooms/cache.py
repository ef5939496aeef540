"""Short-lived cache of each user's current room."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from roomshare.domain.rooms import models
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings

Clock = Callable[[], datetime]


class _Miss:
	__slots__ = ()

	def __repr__(self) -> str:  # pragma: no cover - debug helper
		return "MISS"


MISS = _Miss()


@dataclass(slots=True)
class _Entry:
	current: Optional[models.CurrentRoom]
	captured_at: datetime


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class CurrentRoomCache:
	"""Maps user id to the last resolved room (or to "no room").

	Entries are valid while ``now - captured_at < ttl``. ``clear`` drops
	every entry; it runs on sign-out and after any mutation that can change
	who belongs where.
	"""

	def __init__(self, *, ttl: Optional[timedelta] = None, clock: Clock = _utcnow) -> None:
		self.ttl = ttl if ttl is not None else timedelta(seconds=settings.room_cache_ttl_seconds)
		self._clock = clock
		self._entries: dict[str, _Entry] = {}
		self._generation = 0

	def get(self, user_id: str) -> Union[models.CurrentRoom, None, _Miss]:
		entry = self._entries.get(user_id)
		if entry is None or self._clock() - entry.captured_at >= self.ttl:
			obs_metrics.room_cache_lookup(False)
			return MISS
		obs_metrics.room_cache_lookup(True)
		return entry.current.copy() if entry.current is not None else None

	@property
	def generation(self) -> int:
		return self._generation

	def put(
		self,
		user_id: str,
		current: Optional[models.CurrentRoom],
		*,
		generation: Optional[int] = None,
	) -> None:
		"""Store a lookup result unless a ``clear`` happened since ``generation`` was read."""
		if generation is not None and generation != self._generation:
			return
		self._entries[user_id] = _Entry(
			current=current.copy() if current is not None else None,
			captured_at=self._clock(),
		)

	def clear(self) -> None:
		self._generation += 1
		self._entries.clear()

	def __len__(self) -> int:
		return len(self._entries)
