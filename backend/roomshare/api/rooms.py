"""FastAPI routes for rooms and room membership."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status

from roomshare.domain.rooms import RoomServices, schemas
from roomshare.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_room_services(request: Request) -> RoomServices:
	return request.app.state.room_services


@router.post("", response_model=schemas.RoomSummary, status_code=status.HTTP_201_CREATED)
async def create_room_endpoint(
	payload: schemas.RoomCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.create_room(auth_user, payload)


@router.post("/owner", response_model=schemas.RoomSummary, status_code=status.HTTP_201_CREATED)
async def create_owner_room_endpoint(
	payload: schemas.RoomCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.create_owner_room(auth_user, payload)


@router.get("/available", response_model=schemas.RoomListResponse)
async def list_available_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomListResponse:
	return schemas.RoomListResponse(items=await services.rooms.list_available(auth_user))


@router.get("/available/owner", response_model=schemas.RoomListResponse)
async def list_available_owner_rooms_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomListResponse:
	return schemas.RoomListResponse(items=await services.rooms.list_available_owner_rooms(auth_user))


@router.get("/current", response_model=schemas.CurrentRoomResponse)
async def current_room_endpoint(
	refresh: bool = Query(default=False),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.CurrentRoomResponse:
	room = await services.rooms.get_current_room(auth_user, force_refresh=refresh)
	return schemas.CurrentRoomResponse(room=room)


@router.post("/switch", response_model=schemas.RoomSummary)
async def switch_room_endpoint(
	payload: schemas.SwitchRoomRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.switch_room(auth_user, payload.from_room_id, payload.to_room_id)


@router.post("/session/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out_endpoint(
	_: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> Response:
	services.rooms.handle_sign_out()
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}", response_model=schemas.RoomDetail)
async def get_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomDetail:
	return await services.rooms.get_room(auth_user, room_id)


@router.patch("/{room_id}", response_model=schemas.RoomSummary)
async def update_room_endpoint(
	room_id: str,
	payload: schemas.RoomUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.update_room(auth_user, room_id, payload)


@router.post("/{room_id}/deactivate", response_model=schemas.RoomSummary)
async def deactivate_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.deactivate_room(auth_user, room_id)


@router.post("/{room_id}/reactivate", response_model=schemas.RoomSummary)
async def reactivate_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.reactivate_room(auth_user, room_id)


@router.post("/{room_id}/visibility", response_model=schemas.RoomSummary)
async def set_visibility_endpoint(
	room_id: str,
	payload: schemas.VisibilityRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.set_visibility(auth_user, room_id, payload.is_public)


@router.post("/{room_id}/join", response_model=schemas.RoomSummary)
async def join_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.RoomSummary:
	return await services.rooms.join_room(auth_user, room_id)


@router.post("/{room_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> Response:
	await services.rooms.leave_room(auth_user, room_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}/members", response_model=schemas.MembershipListResponse)
async def list_members_endpoint(
	room_id: str,
	_: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.MembershipListResponse:
	return schemas.MembershipListResponse(items=await services.rooms.list_active_members(room_id))


@router.get("/{room_id}/members/history", response_model=schemas.MembershipListResponse)
async def list_member_history_endpoint(
	room_id: str,
	_: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.MembershipListResponse:
	return schemas.MembershipListResponse(items=await services.rooms.list_membership_history(room_id))
