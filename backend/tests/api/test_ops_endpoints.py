import pytest

from chirisu.settings import settings


@pytest.mark.asyncio
async def test_liveness_and_request_id(api_client):
	response = await api_client.get("/health/live", headers={"X-Request-Id": "req-123"})
	assert response.status_code == 200
	assert response.json() == {"status": "ok"}
	assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_metrics_requires_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "s3cret")

	denied = await api_client.get("/metrics")
	assert denied.status_code == 403

	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "s3cret"})
	assert allowed.status_code == 200
	assert "chirisu_http_requests_total" in allowed.text
