"""Outbox for room side effects.

Mutations append intents to a Redis stream after their transaction commits;
``RoomSideEffectDispatcher`` delivers them to the notification and roster
collaborators. Appending is best effort: a failure is logged and counted,
never raised to the caller whose mutation already succeeded.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from roomshare.infra.redis import redis_client
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)

INTENT_NOTIFY_USER = "notify_user"
INTENT_NOTIFY_ROOM = "notify_room"
INTENT_SYNC_ROSTER = "sync_roster"


class RoomOutbox:
	def __init__(self, *, stream: Optional[str] = None, client: Any = None) -> None:
		self.stream = stream or settings.rooms_outbox_stream
		self._client = client or redis_client

	async def _append(self, intent: str, fields: Mapping[str, Any]) -> None:
		payload = {"intent": intent}
		payload.update({key: str(value) for key, value in fields.items() if value is not None})
		try:
			await self._client.xadd_capped(self.stream, payload, maxlen=settings.rooms_outbox_maxlen)
		except Exception:
			obs_metrics.side_effect(intent, ok=False)
			_LOG.exception("rooms.outbox_append_failed", extra={"intent": intent})

	async def notify_user(
		self,
		user_id: str,
		*,
		kind: str,
		title: str,
		body: str,
		data: Mapping[str, Any] | None = None,
	) -> None:
		await self._append(
			INTENT_NOTIFY_USER,
			{"target": user_id, "kind": kind, "title": title, "body": body, "data": json.dumps(dict(data or {}))},
		)

	async def notify_room(
		self,
		room_id: str,
		*,
		kind: str,
		title: str,
		body: str,
		data: Mapping[str, Any] | None = None,
	) -> None:
		await self._append(
			INTENT_NOTIFY_ROOM,
			{"target": room_id, "kind": kind, "title": title, "body": body, "data": json.dumps(dict(data or {}))},
		)

	async def sync_roster(self, room_id: str) -> None:
		await self._append(INTENT_SYNC_ROSTER, {"target": room_id})
