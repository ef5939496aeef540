"""Domain models for shared-living rooms, memberships and approval requests."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from roomshare.domain.rooms.exceptions import InvalidTransition


class RoomStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CreationType(str, Enum):
    MEMBER_CREATED = "member_created"
    OWNER_CREATED = "owner_created"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class RequestStatus(str, Enum):
    """Lifecycle of join requests and ownership claims.

    pending is the only non-terminal state; approved and rejected are final
    and a request is never re-opened.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING

    def approve(self) -> "RequestStatus":
        return self._move(RequestStatus.APPROVED)

    def reject(self) -> "RequestStatus":
        return self._move(RequestStatus.REJECTED)

    def _move(self, target: "RequestStatus") -> "RequestStatus":
        if self.is_terminal:
            raise InvalidTransition(detail=f"Request is already {self.value}")
        return target


@dataclass(slots=True)
class RentTerms:
    amount: float = 0.0
    currency: str = "INR"
    advance_amount: float = 0.0

    def merged(self, **changes: object) -> "RentTerms":
        """Return a copy with only the provided (non-None) fields replaced."""
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


@dataclass(slots=True)
class Room:
    """Persisted representation of a shared-living room."""

    id: str
    created_by: str
    name: str
    capacity: int
    creation_type: CreationType
    created_at: datetime
    updated_at: datetime
    description: str = ""
    location: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    room_type: str = ""
    rent: RentTerms = field(default_factory=RentTerms)
    amenities: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)
    status: RoomStatus = RoomStatus.ACTIVE
    is_public: bool = True
    owner_id: Optional[str] = None
    member_count: int = 0

    def is_active(self) -> bool:
        return self.status is RoomStatus.ACTIVE

    def is_visible(self) -> bool:
        return self.is_active() and self.is_public

    def has_owner(self) -> bool:
        return self.owner_id is not None

    def is_claimable(self) -> bool:
        return not self.has_owner() and self.is_active()

    def has_capacity_for(self, active_count: int) -> bool:
        return active_count < self.capacity

    def can_be_managed_by(self, user_id: str) -> bool:
        return user_id == self.created_by or (self.owner_id is not None and user_id == self.owner_id)

    def copy(self) -> "Room":
        return replace(
            self,
            rent=replace(self.rent),
            amenities=list(self.amenities),
            image_urls=list(self.image_urls),
        )

    def to_summary(self, *, role: Optional[MemberRole] = None) -> dict:
        """Return a dictionary payload suitable for the RoomSummary schema."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "lat": self.lat,
            "lng": self.lng,
            "room_type": self.room_type,
            "capacity": self.capacity,
            "member_count": self.member_count,
            "rent": {
                "amount": self.rent.amount,
                "currency": self.rent.currency,
                "advance_amount": self.rent.advance_amount,
            },
            "amenities": list(self.amenities),
            "image_urls": list(self.image_urls),
            "status": self.status.value,
            "is_public": self.is_public,
            "creation_type": self.creation_type.value,
            "created_by": self.created_by,
            "owner_id": self.owner_id,
            "role": role.value if role is not None else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class MembershipRecord:
    """One row of the membership ledger; there is exactly one per (room, user)."""

    id: str
    room_id: str
    user_id: str
    role: MemberRole
    joined_at: datetime
    left_at: Optional[datetime] = None
    is_active: bool = True

    def deactivate(self, now: datetime) -> None:
        self.is_active = False
        self.left_at = now

    def reactivate(self, now: datetime, role: MemberRole) -> None:
        self.is_active = True
        self.left_at = None
        self.joined_at = now
        self.role = role

    def copy(self) -> "MembershipRecord":
        return replace(self)

    def to_summary(self) -> dict:
        return {
            "user_id": self.user_id,
            "room_id": self.room_id,
            "role": self.role.value,
            "joined_at": self.joined_at,
            "left_at": self.left_at,
            "is_active": self.is_active,
        }


@dataclass(slots=True)
class CurrentRoom:
    """A user's resolved room together with their role in it."""

    room: Room
    role: MemberRole

    def copy(self) -> "CurrentRoom":
        return CurrentRoom(room=self.room.copy(), role=self.role)


@dataclass(slots=True)
class JoinRequest:
    id: str
    room_id: str
    user_id: str
    requested_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    def approve(self, actor_id: str, now: datetime) -> None:
        self.status = self.status.approve()
        self.reviewed_at = now
        self.reviewed_by = actor_id

    def reject(self, actor_id: str, now: datetime) -> None:
        self.status = self.status.reject()
        self.reviewed_at = now
        self.reviewed_by = actor_id

    def copy(self) -> "JoinRequest":
        return replace(self)

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "requested_at": self.requested_at,
            "reviewed_at": self.reviewed_at,
            "reviewed_by": self.reviewed_by,
        }


@dataclass(slots=True)
class OwnershipClaim:
    id: str
    room_id: str
    owner_id: str
    requested_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    def approve(self, actor_id: str, now: datetime) -> None:
        self.status = self.status.approve()
        self.approved_at = now
        self.reviewed_by = actor_id

    def reject(self, actor_id: str, now: datetime) -> None:
        self.status = self.status.reject()
        self.rejected_at = now
        self.reviewed_by = actor_id

    def copy(self) -> "OwnershipClaim":
        return replace(self)

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "requested_at": self.requested_at,
            "approved_at": self.approved_at,
            "rejected_at": self.rejected_at,
            "reviewed_by": self.reviewed_by,
        }
