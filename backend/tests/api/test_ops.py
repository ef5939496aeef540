import pytest

from roomshare.settings import settings


@pytest.mark.asyncio
async def test_liveness(api_client):
    response = await api_client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
    monkeypatch.setattr(settings, "obs_metrics_public", False)
    monkeypatch.setattr(settings, "obs_admin_token", "ops-secret")

    denied = await api_client.get("/metrics")
    assert denied.status_code == 403

    allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "ops-secret"})
    assert allowed.status_code == 200
    assert "rooms_" in allowed.text
