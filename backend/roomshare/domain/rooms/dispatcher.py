"""Worker delivering room outbox intents to external collaborators."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from roomshare.domain.rooms import outbox as outbox_module
from roomshare.domain.rooms.collaborators import LoggingNotifier, LoggingRosterMirror, Notifier, RosterMirror
from roomshare.domain.rooms.exceptions import CollaboratorFailure
from roomshare.domain.rooms.repository import RoomRepository
from roomshare.infra.redis import redis_client
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)

CURSOR_KEY = "rooms:dispatcher:last_id"


class RoomSideEffectDispatcher:
	"""Consumes the rooms outbox stream.

	Delivery is at most once: the cursor advances past an entry whether or
	not its collaborator call succeeded, and failures are only logged.
	"""

	def __init__(
		self,
		*,
		repository: Optional[RoomRepository] = None,
		notifier: Optional[Notifier] = None,
		roster: Optional[RosterMirror] = None,
		stream: Optional[str] = None,
		poll_interval: float = 0.5,
		batch_size: int = 100,
		block_ms: Optional[int] = 1000,
	) -> None:
		self.repo = repository or RoomRepository()
		self.notifier = notifier or LoggingNotifier()
		self.roster = roster or LoggingRosterMirror()
		self.stream = stream or settings.rooms_outbox_stream
		self.poll_interval = poll_interval
		self.batch_size = batch_size
		self.block_ms = block_ms
		self._running = False
		self._last_id: Optional[str] = None

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			try:
				processed = await self.process_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				_LOG.exception("rooms.dispatcher_poll_failed")
				processed = 0
			if processed == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		self._running = False

	async def _cursor(self) -> str:
		if self._last_id is None:
			stored = await redis_client.get(CURSOR_KEY)
			self._last_id = stored or "0-0"
		return self._last_id

	async def process_once(self) -> int:
		cursor = await self._cursor()
		messages = await redis_client.xread(streams={self.stream: cursor}, count=self.batch_size, block=self.block_ms)
		if not messages:
			return 0
		processed = 0
		for _stream_name, entries in messages:
			for entry_id, payload in entries:
				await self._deliver(dict(payload))
				self._last_id = entry_id
				processed += 1
		if self._last_id is not None:
			await redis_client.set(CURSOR_KEY, self._last_id)
		return processed

	async def _deliver(self, payload: dict[str, Any]) -> None:
		intent = payload.get("intent") or "unknown"
		try:
			await self._call(intent, payload)
		except CollaboratorFailure as exc:
			obs_metrics.side_effect(intent, ok=False)
			_LOG.warning("rooms.side_effect_failed", extra={"intent": intent, "error": exc.detail})
		except Exception:
			obs_metrics.side_effect(intent, ok=False)
			_LOG.exception("rooms.side_effect_failed", extra={"intent": intent})
		else:
			obs_metrics.side_effect(intent, ok=True)

	async def _call(self, intent: str, payload: dict[str, Any]) -> None:
		target = payload.get("target")
		if not target:
			raise CollaboratorFailure(detail=f"intent {intent} has no target")
		if intent == outbox_module.INTENT_SYNC_ROSTER:
			await self._sync_roster(target)
			return
		data = json.loads(payload.get("data") or "{}")
		kwargs = {
			"kind": payload.get("kind", ""),
			"title": payload.get("title", ""),
			"body": payload.get("body", ""),
			"data": data,
		}
		if intent == outbox_module.INTENT_NOTIFY_USER:
			await self.notifier.notify_user(target, **kwargs)
		elif intent == outbox_module.INTENT_NOTIFY_ROOM:
			await self.notifier.notify_room(target, **kwargs)
		else:
			raise CollaboratorFailure(detail=f"unknown intent {intent}")

	async def _sync_roster(self, room_id: str) -> None:
		async def _load(session):
			room = await session.get_room(room_id)
			members = await session.list_memberships(room_id=room_id, active_only=True)
			return room, members

		room, members = await self.repo.read(_load)
		if room is None:
			raise CollaboratorFailure(detail=f"room {room_id} vanished before roster sync")
		await self.roster.sync_room_roster(room_id, [member.user_id for member in members], room_name=room.name)
