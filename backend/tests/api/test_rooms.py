import pytest

CREATOR = {"X-User-Id": "user-a"}
ROOMMATE = {"X-User-Id": "user-b"}
LANDLORD = {"X-User-Id": "user-x"}
TENANT = {"X-User-Id": "user-d"}


@pytest.mark.asyncio
async def test_member_room_flow(api_client):
    response = await api_client.post(
        "/rooms",
        json={"name": "Flat 4B", "capacity": 2, "rent": {"amount": 9000, "currency": "inr"}},
        headers=CREATOR,
    )
    assert response.status_code == 201
    room = response.json()
    assert room["member_count"] == 1
    assert room["role"] == "admin"
    assert room["rent"]["currency"] == "INR"
    room_id = room["id"]

    join = await api_client.post(f"/rooms/{room_id}/join", headers=ROOMMATE)
    assert join.status_code == 200
    assert join.json()["member_count"] == 2

    full = await api_client.post(f"/rooms/{room_id}/join", headers={"X-User-Id": "user-c"})
    assert full.status_code == 409
    body = full.json()
    assert body["detail"] == "room_full"
    assert body["request_id"]

    current = await api_client.get("/rooms/current", headers=ROOMMATE)
    assert current.status_code == 200
    assert current.json()["room"]["id"] == room_id

    leave = await api_client.post(f"/rooms/{room_id}/leave", headers=ROOMMATE)
    assert leave.status_code == 204
    again = await api_client.post(f"/rooms/{room_id}/leave", headers=ROOMMATE)
    assert again.status_code == 409
    assert again.json()["detail"] == "not_member"

    current = await api_client.get("/rooms/current", params={"refresh": "true"}, headers=ROOMMATE)
    assert current.json()["room"] is None

    history = await api_client.get(f"/rooms/{room_id}/members/history", headers=CREATOR)
    assert {item["user_id"]: item["is_active"] for item in history.json()["items"]} == {
        "user-a": True,
        "user-b": False,
    }

    forbidden = await api_client.post(f"/rooms/{room_id}/deactivate", headers=ROOMMATE)
    assert forbidden.status_code == 403
    deactivated = await api_client.post(f"/rooms/{room_id}/deactivate", headers=CREATOR)
    assert deactivated.json()["status"] == "inactive"

    available = await api_client.get("/rooms/available", headers=ROOMMATE)
    assert room_id not in {item["id"] for item in available.json()["items"]}


@pytest.mark.asyncio
async def test_owner_room_join_request_flow(api_client):
    response = await api_client.post("/rooms/owner", json={"name": "Listing", "capacity": 3}, headers=LANDLORD)
    assert response.status_code == 201
    listing_id = response.json()["id"]

    direct = await api_client.post(f"/rooms/{listing_id}/join", headers=TENANT)
    assert direct.status_code == 409
    assert direct.json()["detail"] == "approval_required"

    eligibility = await api_client.get(f"/rooms/{listing_id}/join-requests/eligibility", headers=TENANT)
    assert eligibility.json() == {"can_join": True, "reason": None, "message": None}

    created = await api_client.post(f"/rooms/{listing_id}/join-requests", headers=TENANT)
    assert created.status_code == 201
    request_id = created.json()["id"]

    pending = await api_client.get("/join-requests/pending", headers=LANDLORD)
    assert [item["id"] for item in pending.json()["items"]] == [request_id]

    not_owner = await api_client.post(f"/join-requests/{request_id}/approve", headers=TENANT)
    assert not_owner.status_code == 403

    approved = await api_client.post(f"/join-requests/{request_id}/approve", headers=LANDLORD)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    twice = await api_client.post(f"/join-requests/{request_id}/reject", headers=LANDLORD)
    assert twice.status_code == 409
    assert twice.json()["detail"] == "request_not_pending"

    detail = await api_client.get(f"/rooms/{listing_id}", headers=TENANT)
    assert detail.json()["member_count"] == 1
    assert [member["user_id"] for member in detail.json()["members"]] == ["user-d"]

    mine = await api_client.get("/join-requests/mine", headers=TENANT)
    assert mine.json()["items"][0]["status"] == "approved"


@pytest.mark.asyncio
async def test_ownership_claim_flow(api_client):
    room = (await api_client.post("/rooms", json={"name": "Shared flat"}, headers=CREATOR)).json()

    claim = await api_client.post(f"/rooms/{room['id']}/ownership-claims", headers=LANDLORD)
    assert claim.status_code == 201
    claim_id = claim.json()["id"]

    pending = await api_client.get("/ownership-claims/pending", headers=CREATOR)
    assert [item["id"] for item in pending.json()["items"]] == [claim_id]

    approved = await api_client.post(f"/ownership-claims/{claim_id}/approve", headers=CREATOR)
    assert approved.status_code == 200

    detail = (await api_client.get(f"/rooms/{room['id']}", headers=CREATOR)).json()
    assert detail["owner_id"] == "user-x"
    assert detail["creation_type"] == "owner_created"
    assert detail["member_count"] == 1

    another = await api_client.post(f"/rooms/{room['id']}/ownership-claims", headers=TENANT)
    assert another.status_code == 409
    assert another.json()["detail"] == "room_has_owner"


@pytest.mark.asyncio
async def test_switch_and_validation(api_client):
    source = (await api_client.post("/rooms", json={"name": "Source"}, headers=CREATOR)).json()
    target = (await api_client.post("/rooms", json={"name": "Target"}, headers=LANDLORD)).json()
    await api_client.post(f"/rooms/{source['id']}/join", headers=ROOMMATE)

    switched = await api_client.post(
        "/rooms/switch",
        json={"from_room_id": source["id"], "to_room_id": target["id"]},
        headers=ROOMMATE,
    )
    assert switched.status_code == 200
    assert switched.json()["id"] == target["id"]

    invalid = await api_client.post("/rooms", json={"name": "", "capacity": 0}, headers=TENANT)
    assert invalid.status_code == 422
    assert invalid.json()["detail"] == "validation_error"

    missing = await api_client.get("/rooms/nope", headers=TENANT)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "room_not_found"


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(api_client):
    response = await api_client.get("/rooms/current")
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_bearer_token_required_outside_dev(api_client, monkeypatch):
    from roomshare.infra.jwt import encode_access
    from roomshare.settings import settings

    monkeypatch.setattr(settings, "environment", "production")
    header_only = await api_client.get("/rooms/current", headers=CREATOR)
    assert header_only.status_code == 401

    token = encode_access({"sub": "user-a"})
    created = await api_client.post(
        "/rooms",
        json={"name": "Token flat"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert created.status_code == 201
    assert created.json()["created_by"] == "user-a"


@pytest.mark.asyncio
async def test_invalid_bearer_token_is_rejected(api_client):
    response = await api_client.get("/rooms/current", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"
