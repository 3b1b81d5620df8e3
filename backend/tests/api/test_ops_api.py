import pytest

from academyhub.settings import settings


@pytest.mark.asyncio
async def test_liveness(api_client):
	response = await api_client.get("/health/live")
	assert response.status_code == 200
	assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readiness_follows_store(api_client, memory_store):
	response = await api_client.get("/health/ready")
	assert response.status_code == 200
	assert response.json()["checks"]["store"]["ok"] is True

	memory_store.set_offline(True)
	response = await api_client.get("/health/ready")
	assert response.status_code == 503
	assert response.json()["status"] == "unavailable"


@pytest.mark.asyncio
async def test_readiness_reports_search_tiers(api_client, indexed_campus):
	response = await api_client.get("/health/ready")
	payload = response.json()
	assert response.status_code == 200
	assert payload["status"] == "ok"
	assert payload["checks"]["search"]["tiers"]["notes"] == "basic_weighted_text"
	assert payload["checks"]["search"]["degraded"] == []


@pytest.mark.asyncio
async def test_readiness_degraded_without_text_indexes(api_client, campus):
	response = await api_client.get("/health/ready")
	assert response.status_code == 200
	assert response.json()["status"] == "degraded"
	assert "posts" in response.json()["checks"]["search"]["degraded"]


@pytest.mark.asyncio
async def test_search_health_requires_admin_token(api_client, monkeypatch):
	response = await api_client.get("/health/search")
	assert response.status_code == 403
	assert response.json()["detail"] == "admin_token_not_configured"

	monkeypatch.setattr(settings, "obs_admin_token", "ops-secret")
	response = await api_client.get("/health/search", headers={"X-Admin-Token": "wrong"})
	assert response.status_code == 403
	assert response.json()["detail"] == "forbidden"


@pytest.mark.asyncio
async def test_search_health_reports_capabilities(api_client, indexed_campus, memory_store, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "ops-secret")
	await memory_store.define_search_index("posts", "posts_search", paths=["title", "content", "tags"])
	response = await api_client.get("/health/search", headers={"Authorization": "Bearer ops-secret"})
	assert response.status_code == 200
	collections = response.json()["collections"]
	assert collections["posts"]["capability"] == "managed_full_text"
	assert collections["notes"]["capability"] == "basic_weighted_text"
	assert collections["notes"]["text_index"] == "notes_text_search"
	assert collections["posts"]["recommendation"] == "managed search active"
	assert response.json()["degraded"] == []


@pytest.mark.asyncio
async def test_metrics_endpoint(api_client, indexed_campus, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", True)
	await api_client.get("/search", params={"q": "ivy"})
	response = await api_client.get("/metrics")
	assert response.status_code == 200
	assert "academyhub_search_queries_total" in response.text
	assert "academyhub_search_strategy_total" in response.text


@pytest.mark.asyncio
async def test_search_health_lists_degraded_collections(api_client, campus, memory_store, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "ops-secret")
	headers = {"X-Admin-Token": "ops-secret"}
	response = await api_client.get("/health/search", headers=headers)
	assert response.json()["degraded"] == ["notes", "posts", "reviews", "universities", "users"]

	await memory_store.create_index("notes", [("title", "text")], name="notes_text_search")
	cached = await api_client.get("/health/search", headers=headers)
	assert "notes" in cached.json()["degraded"]
	refreshed = await api_client.get("/health/search", params={"refresh": "true"}, headers=headers)
	assert "notes" not in refreshed.json()["degraded"]


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_replaced(api_client):
	echoed = await api_client.get("/health/live", headers={"X-Request-Id": "edge-42"})
	assert echoed.headers["X-Request-Id"] == "edge-42"

	replaced = await api_client.get("/health/live", headers={"X-Request-Id": "bad id with spaces"})
	assert replaced.headers["X-Request-Id"] != "bad id with spaces"
	assert len(replaced.headers["X-Request-Id"]) == 32
