"""FastAPI routes for join requests and ownership claims."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from roomshare.api.rooms import get_room_services
from roomshare.domain.rooms import RoomServices, schemas
from roomshare.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["room-requests"])


# --- join requests ----------------------------------------------------------


@router.get("/rooms/{room_id}/join-requests/eligibility", response_model=schemas.JoinEligibilityResponse)
async def join_eligibility_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinEligibilityResponse:
	eligibility = await services.join_requests.check_eligibility(auth_user, room_id)
	return schemas.JoinEligibilityResponse(
		can_join=eligibility.can_join,
		reason=eligibility.reason,
		message=eligibility.detail,
	)


@router.post(
	"/rooms/{room_id}/join-requests",
	response_model=schemas.JoinRequestSummary,
	status_code=status.HTTP_201_CREATED,
)
async def request_to_join_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestSummary:
	return await services.join_requests.request_to_join(auth_user, room_id)


@router.get("/rooms/{room_id}/join-requests", response_model=schemas.JoinRequestListResponse)
async def list_room_join_requests_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestListResponse:
	items = await services.join_requests.list_pending_for_room(auth_user, room_id)
	return schemas.JoinRequestListResponse(items=items)


@router.get("/join-requests/mine", response_model=schemas.JoinRequestListResponse)
async def list_my_join_requests_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestListResponse:
	return schemas.JoinRequestListResponse(items=await services.join_requests.list_mine(auth_user))


@router.get("/join-requests/pending", response_model=schemas.JoinRequestListResponse)
async def list_owner_pending_join_requests_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestListResponse:
	items = [item async for item in services.join_requests.iter_pending_for_owner(auth_user)]
	return schemas.JoinRequestListResponse(items=items)


@router.post("/join-requests/{request_id}/approve", response_model=schemas.JoinRequestSummary)
async def approve_join_request_endpoint(
	request_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestSummary:
	return await services.join_requests.approve(auth_user, request_id)


@router.post("/join-requests/{request_id}/reject", response_model=schemas.JoinRequestSummary)
async def reject_join_request_endpoint(
	request_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.JoinRequestSummary:
	return await services.join_requests.reject(auth_user, request_id)


# --- ownership claims -------------------------------------------------------


@router.post(
	"/rooms/{room_id}/ownership-claims",
	response_model=schemas.OwnershipClaimSummary,
	status_code=status.HTTP_201_CREATED,
)
async def create_claim_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimSummary:
	return await services.claims.create_claim(auth_user, room_id)


@router.get("/rooms/{room_id}/ownership-claims", response_model=schemas.OwnershipClaimListResponse)
async def list_room_claims_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimListResponse:
	items = await services.claims.list_pending_for_room(auth_user, room_id)
	return schemas.OwnershipClaimListResponse(items=items)


@router.get("/rooms/{room_id}/ownership-claims/history", response_model=schemas.OwnershipClaimListResponse)
async def list_room_claim_history_endpoint(
	room_id: str,
	_: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimListResponse:
	return schemas.OwnershipClaimListResponse(items=await services.claims.list_history(room_id))


@router.get("/ownership-claims/mine", response_model=schemas.OwnershipClaimListResponse)
async def list_my_claims_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimListResponse:
	return schemas.OwnershipClaimListResponse(items=await services.claims.list_mine(auth_user))


@router.get("/ownership-claims/pending", response_model=schemas.OwnershipClaimListResponse)
async def list_creator_pending_claims_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimListResponse:
	items = [item async for item in services.claims.iter_pending_for_creator(auth_user)]
	return schemas.OwnershipClaimListResponse(items=items)


@router.post("/ownership-claims/{claim_id}/approve", response_model=schemas.OwnershipClaimSummary)
async def approve_claim_endpoint(
	claim_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimSummary:
	return await services.claims.approve(auth_user, claim_id)


@router.post("/ownership-claims/{claim_id}/reject", response_model=schemas.OwnershipClaimSummary)
async def reject_claim_endpoint(
	claim_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: RoomServices = Depends(get_room_services),
) -> schemas.OwnershipClaimSummary:
	return await services.claims.reject(auth_user, claim_id)
