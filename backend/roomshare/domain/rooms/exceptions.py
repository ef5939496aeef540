"""Error taxonomy for the rooms domain.

Every error carries a stable ``code`` for clients, an HTTP ``status_code``
and a human readable ``detail``.
"""

from __future__ import annotations

from fastapi import status

REASONS: dict[str, str] = {
	"room_not_found": "Room not found",
	"join_request_not_found": "Join request not found",
	"claim_not_found": "Ownership request not found",
	"room_inactive": "Room is not active",
	"room_not_public": "Room is not public",
	"room_full": "Room is full",
	"already_in_room": "You can only create or join one room at a time",
	"already_member": "You are already a member",
	"not_member": "You are not a member of this room",
	"is_owner": "You are the owner of this room",
	"request_pending": "You already have a pending request",
	"claim_pending": "You already have a pending ownership request for this room",
	"approval_required": "This room admits members through join requests",
	"not_owner_room": "This room does not accept join requests",
	"room_has_owner": "Room already has an owner",
	"creator_cannot_claim": "You created this room",
	"same_room": "Source and target room are the same",
	"capacity_below_occupancy": "Capacity cannot be lower than the current number of members",
	"request_not_pending": "Request has already been reviewed",
	"requester_has_room": "Requester already belongs to a room",
	"forbidden": "You are not allowed to manage this room",
	"not_owner": "Only the room owner can review join requests",
	"not_creator": "Only the room creator can review ownership requests",
	"store_conflict": "The room changed concurrently, please retry",
}


class RoomError(Exception):
	"""Base class for rooms domain errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	code: str = "room_error"

	def __init__(self, code: str | None = None, *, detail: str | None = None) -> None:
		if code:
			self.code = code
		self.detail = detail or REASONS.get(self.code, self.code)
		super().__init__(self.detail)


class NotFound(RoomError):
	"""Referenced room or request does not exist."""

	status_code = status.HTTP_404_NOT_FOUND
	code = "room_not_found"


class PreconditionFailed(RoomError):
	"""Operation is not allowed in the current state; nothing was mutated."""

	status_code = status.HTTP_409_CONFLICT
	code = "precondition_failed"


class Forbidden(PreconditionFailed):
	"""Caller is not the user entitled to perform the operation."""

	status_code = status.HTTP_403_FORBIDDEN
	code = "forbidden"


class InvalidTransition(PreconditionFailed):
	"""A request was asked to leave a terminal status."""

	code = "request_not_pending"


class TransientStoreConflict(RoomError):
	"""The store aborted a transaction; safe to retry."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	code = "store_conflict"


class CollaboratorFailure(RoomError):
	"""An external collaborator (notifications, roster mirror, media) failed."""

	status_code = status.HTTP_502_BAD_GATEWAY
	code = "collaborator_failure"
