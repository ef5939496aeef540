"""Pydantic schemas for the rooms API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _require_name(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError("name must not be blank")
    return value


class RentPayload(BaseModel):
    amount: float = Field(default=0.0, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    advance_amount: float = Field(default=0.0, ge=0)


class RentPatch(BaseModel):
    amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    advance_amount: Optional[float] = Field(default=None, ge=0)


class RoomCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    description: str = Field(default="", max_length=2000)
    location: str = Field(default="", max_length=200)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    room_type: str = Field(default="", max_length=40)
    capacity: Optional[int] = Field(default=None, ge=1, le=50)
    rent: RentPayload = Field(default_factory=RentPayload)
    amenities: List[str] = Field(default_factory=list, max_length=30)
    image_urls: List[str] = Field(default_factory=list, max_length=10)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value):
        return _require_name(value)


class RoomUpdateRequest(BaseModel):
    """Partial update; only fields that are sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=200)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    room_type: Optional[str] = Field(default=None, max_length=40)
    capacity: Optional[int] = Field(default=None, ge=1, le=50)
    rent: Optional[RentPatch] = None
    amenities: Optional[List[str]] = Field(default=None, max_length=30)
    image_urls: Optional[List[str]] = Field(default=None, max_length=10)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value):
        return _require_name(value)


class VisibilityRequest(BaseModel):
    is_public: bool


class SwitchRoomRequest(BaseModel):
    from_room_id: str
    to_room_id: str


class RentSummary(BaseModel):
    amount: float
    currency: str
    advance_amount: float


class RoomSummary(BaseModel):
    id: str
    name: str
    description: str
    location: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    room_type: str
    capacity: int
    member_count: int
    rent: RentSummary
    amenities: List[str]
    image_urls: List[str]
    status: str
    is_public: bool
    creation_type: str
    created_by: str
    owner_id: Optional[str] = None
    role: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MembershipSummary(BaseModel):
    user_id: str
    room_id: str
    role: str
    joined_at: datetime
    left_at: Optional[datetime] = None
    is_active: bool


class RoomDetail(RoomSummary):
    members: List[MembershipSummary] = Field(default_factory=list)


class RoomListResponse(BaseModel):
    items: List[RoomSummary]


class MembershipListResponse(BaseModel):
    items: List[MembershipSummary]


class CurrentRoomResponse(BaseModel):
    room: Optional[RoomSummary] = None


class JoinEligibilityResponse(BaseModel):
    can_join: bool
    reason: Optional[str] = None
    message: Optional[str] = None


class JoinRequestSummary(BaseModel):
    id: str
    room_id: str
    user_id: str
    status: str
    requested_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


class JoinRequestListResponse(BaseModel):
    items: List[JoinRequestSummary]


class OwnershipClaimSummary(BaseModel):
    id: str
    room_id: str
    owner_id: str
    status: str
    requested_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


class OwnershipClaimListResponse(BaseModel):
    items: List[OwnershipClaimSummary]
