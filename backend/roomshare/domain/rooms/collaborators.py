"""Interfaces of the external collaborators the rooms domain talks to."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol, Sequence

_LOG = logging.getLogger(__name__)


class Notifier(Protocol):
	async def notify_user(
		self,
		user_id: str,
		*,
		kind: str,
		title: str,
		body: str,
		data: Mapping[str, Any],
	) -> None: ...

	async def notify_room(
		self,
		room_id: str,
		*,
		kind: str,
		title: str,
		body: str,
		data: Mapping[str, Any],
	) -> None: ...


class RosterMirror(Protocol):
	"""Keeps the room's chat participants in step with the membership ledger."""

	async def sync_room_roster(self, room_id: str, member_ids: Sequence[str], *, room_name: str) -> None: ...


class MediaUploader(Protocol):
	async def upload_image(self, data: bytes, *, folder: str) -> Optional[str]: ...


class LoggingNotifier:
	"""Default notifier: records the notification in the application log."""

	async def notify_user(self, user_id: str, *, kind: str, title: str, body: str, data: Mapping[str, Any]) -> None:
		_LOG.info("rooms.notify_user", extra={"target_user": user_id, "kind": kind, "title": title})

	async def notify_room(self, room_id: str, *, kind: str, title: str, body: str, data: Mapping[str, Any]) -> None:
		_LOG.info("rooms.notify_room", extra={"room_id": room_id, "kind": kind, "title": title})


class LoggingRosterMirror:
	async def sync_room_roster(self, room_id: str, member_ids: Sequence[str], *, room_name: str) -> None:
		_LOG.info("rooms.roster_synced", extra={"room_id": room_id, "members": len(member_ids)})
