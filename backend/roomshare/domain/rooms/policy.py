"""Policy helpers for rooms, memberships and approval workflows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from roomshare.domain.rooms import models
from roomshare.domain.rooms.exceptions import REASONS, Forbidden, NotFound, PreconditionFailed
from roomshare.obs import metrics as obs_metrics


@dataclass(slots=True)
class JoinEligibility:
	can_join: bool
	reason: Optional[str] = None

	@property
	def detail(self) -> Optional[str]:
		if self.reason is None:
			return None
		return REASONS.get(self.reason, self.reason)


def _fail(code: str, *, forbidden: bool = False) -> PreconditionFailed:
	obs_metrics.inc_precondition_failed(code)
	if forbidden:
		return Forbidden(code)
	return PreconditionFailed(code)


def require_room(room: Optional[models.Room]) -> models.Room:
	if room is None:
		raise NotFound("room_not_found")
	return room


def ensure_active(room: models.Room) -> None:
	if not room.is_active():
		raise _fail("room_inactive")


def ensure_capacity(room: models.Room, active_count: int) -> None:
	if not room.has_capacity_for(active_count):
		raise _fail("room_full")


def ensure_no_active_membership(current: Optional[models.MembershipRecord], room_id: Optional[str] = None) -> None:
	"""A user may hold at most one active membership across all rooms."""
	if current is None:
		return
	if room_id is not None and current.room_id == room_id:
		raise _fail("already_member")
	raise _fail("already_in_room")


def not_a_member() -> PreconditionFailed:
	return _fail("not_member")


def ensure_direct_join_allowed(room: models.Room) -> None:
	if room.creation_type is models.CreationType.OWNER_CREATED:
		raise _fail("approval_required")


def ensure_can_manage(room: models.Room, user_id: str, membership: Optional[models.MembershipRecord]) -> None:
	if room.can_be_managed_by(user_id):
		return
	if membership is not None and membership.is_active and membership.role is models.MemberRole.ADMIN:
		return
	raise _fail("forbidden", forbidden=True)


def ensure_owner(room: models.Room, user_id: str) -> None:
	if room.owner_id != user_id:
		raise _fail("not_owner", forbidden=True)


def ensure_creator(room: models.Room, user_id: str) -> None:
	if room.created_by != user_id:
		raise _fail("not_creator", forbidden=True)


def ensure_capacity_not_below(room: models.Room, capacity: int, active_count: int) -> None:
	if capacity < active_count:
		raise _fail("capacity_below_occupancy")


def evaluate_join_request(
	room: Optional[models.Room],
	user_id: str,
	*,
	active_membership: Optional[models.MembershipRecord],
	pending_request: Optional[models.JoinRequest],
	active_count: int,
) -> JoinEligibility:
	"""Decide whether ``user_id`` may ask to join an owner-created room."""
	if room is None:
		return JoinEligibility(False, "room_not_found")
	if room.creation_type is not models.CreationType.OWNER_CREATED:
		return JoinEligibility(False, "not_owner_room")
	if not room.is_active():
		return JoinEligibility(False, "room_inactive")
	if not room.is_public:
		return JoinEligibility(False, "room_not_public")
	if room.owner_id == user_id:
		return JoinEligibility(False, "is_owner")
	if active_membership is not None:
		reason = "already_member" if active_membership.room_id == room.id else "already_in_room"
		return JoinEligibility(False, reason)
	if pending_request is not None:
		return JoinEligibility(False, "request_pending")
	if not room.has_capacity_for(active_count):
		return JoinEligibility(False, "room_full")
	return JoinEligibility(True)


def ensure_eligible(eligibility: JoinEligibility) -> None:
	if eligibility.can_join:
		return
	if eligibility.reason == "room_not_found":
		raise NotFound("room_not_found")
	raise _fail(eligibility.reason or "precondition_failed")


def ensure_claimable(room: models.Room, user_id: str, pending_claim: Optional[models.OwnershipClaim]) -> None:
	ensure_active(room)
	if room.has_owner():
		raise _fail("room_has_owner")
	if room.created_by == user_id:
		raise _fail("creator_cannot_claim")
	if pending_claim is not None:
		raise _fail("claim_pending")
