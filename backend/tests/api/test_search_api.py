import httpx
import pytest
from bson import ObjectId

from academyhub.api import search as search_api
from academyhub.domain.enrichment.campus_images import CampusImageService
from academyhub.domain.enrichment.enricher import UniversityEnricher
from academyhub.domain.enrichment.logos import LogoResolver
from academyhub.domain.enrichment.throttle import RequestThrottle
from academyhub.settings import settings

USER_ME = str(ObjectId())


@pytest.mark.asyncio
async def test_global_search_endpoint(api_client, indexed_campus):
	response = await api_client.get("/search", params={"q": "ivy"})
	payload = response.json()
	assert response.status_code == 200
	assert payload["query"] == "ivy"
	assert payload["results"]["universities"][0]["name"] == "Ivy State University"
	assert payload["results"]["universities"][0]["type"] == "universities"
	assert payload["results"]["posts"][0]["author"]["username"] == "alice_ivy"
	assert payload["counts"]["total"] == 5
	assert payload["pagination"]["limit"] == settings.search_global_type_limit
	assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_global_search_with_type_and_filters(api_client, indexed_campus):
	response = await api_client.get(
		"/search",
		params={"q": "chemistry", "type": "reviews", "minRating": "2", "universityId": str(indexed_campus.maple)},
	)
	payload = response.json()
	assert response.status_code == 200
	assert list(payload["results"]) == ["reviews"]
	assert payload["results"]["reviews"][0]["author"] is None
	assert payload["counts"] == {"reviews": 1, "total": 1}


@pytest.mark.asyncio
async def test_malformed_paging_values_fall_back(api_client, indexed_campus):
	response = await api_client.get("/search/notes", params={"q": "chemistry", "page": "abc", "limit": "-3", "minRating": "lots"})
	payload = response.json()
	assert response.status_code == 200
	assert payload["pagination"]["page"] == 1
	assert payload["pagination"]["limit"] == settings.search_default_limit


@pytest.mark.asyncio
async def test_invalid_type_is_rejected(api_client, indexed_campus):
	response = await api_client.get("/search", params={"q": "ivy", "type": "clubs"}, headers={"X-Request-Id": "rid-1"})
	assert response.status_code == 400
	assert response.json() == {"detail": "invalid_type", "request_id": "rid-1"}

	for path in ("/search/clubs", "/search/all"):
		response = await api_client.get(path, params={"q": "ivy"})
		assert response.status_code == 400
		assert response.json()["detail"] == "invalid_type"


@pytest.mark.asyncio
async def test_short_query_is_neutral(api_client, indexed_campus):
	response = await api_client.get("/search", params={"q": "a"})
	payload = response.json()
	assert response.status_code == 200
	assert payload["counts"]["total"] == 0
	assert all(items == [] for items in payload["results"].values())


@pytest.mark.asyncio
async def test_type_endpoint_cursor_pagination(api_client, indexed_campus, memory_store):
	await memory_store.seed(
		"posts",
		[{"title": f"Ivy club fair {n}", "status": "active", "parentPost": None} for n in range(3)],
	)
	first = await api_client.get("/search/posts", params={"q": "club fair", "limit": "2", "sortBy": "newest"})
	body = first.json()
	assert first.status_code == 200
	assert body["type"] == "posts"
	assert body["total"] == 3
	assert body["pagination"]["has_more"] is True

	cursor = body["results"][-1]["id"]
	second = await api_client.get(
		"/search/posts",
		params={"q": "club fair", "limit": "2", "sortBy": "newest", "cursor": cursor},
	)
	page = second.json()["pagination"]
	assert page["mode"] == "cursor"
	assert {item["id"] for item in second.json()["results"]}.isdisjoint({item["id"] for item in body["results"]})


@pytest.mark.asyncio
async def test_store_outage_returns_503(api_client, indexed_campus, memory_store):
	memory_store.set_offline(True)
	response = await api_client.get("/search", params={"q": "ivy"})
	assert response.status_code == 503
	assert response.json()["detail"] == "search_unavailable"


@pytest.mark.asyncio
async def test_suggestions_endpoint(api_client, indexed_campus):
	response = await api_client.get("/search/suggestions", params={"q": "chem"})
	payload = response.json()
	assert response.status_code == 200
	assert {"text": "Chemistry", "type": "subject"} in payload["suggestions"]
	assert {"text": "chemistry", "type": "tag"} in payload["suggestions"]

	empty = await api_client.get("/search/suggestions", params={"q": "c"})
	assert empty.json() == {"suggestions": []}


@pytest.mark.asyncio
async def test_recent_and_popular_history(api_client, indexed_campus):
	headers = {"X-User-Id": USER_ME}
	await api_client.get("/search", params={"q": "Ivy"}, headers=headers)
	await api_client.get("/search/notes", params={"q": "chemistry"}, headers=headers)
	await api_client.get("/search", params={"q": "ivy"}, headers=headers)
	await search_api.get_service().flush()

	recent = await api_client.get("/search/recent", headers=headers)
	assert recent.status_code == 200
	assert recent.json()["searches"] == ["ivy", "chemistry"]
	assert recent.json()["entries"][0]["count"] == 2

	popular = await api_client.get("/search/popular")
	assert popular.json()["entries"] == [{"query": "ivy", "count": 2}, {"query": "chemistry", "count": 1}]

	cleared = await api_client.delete("/search/history", headers=headers)
	assert cleared.json() == {"cleared": True, "removed": 2}
	again = await api_client.delete("/search/recent", headers=headers)
	assert again.json() == {"cleared": True, "removed": 0}
	assert (await api_client.get("/search/recent", headers=headers)).json()["searches"] == []


@pytest.mark.asyncio
async def test_recent_requires_user(api_client):
	response = await api_client.get("/search/recent")
	assert response.status_code == 401
	assert response.json()["detail"] == "not_authenticated"


@pytest.mark.asyncio
async def test_search_rate_limit(api_client, indexed_campus, monkeypatch):
	monkeypatch.setattr(settings, "search_rate_limit_per_minute", 2)
	for _ in range(2):
		assert (await api_client.get("/search", params={"q": "ivy"})).status_code == 200
	response = await api_client.get("/search", params={"q": "ivy"})
	assert response.status_code == 429
	assert response.json()["detail"] == "rate_limit"
	assert 1 <= int(response.headers["Retry-After"]) <= 60
	# authenticated callers have their own budget
	other = await api_client.get("/search", params={"q": "ivy"}, headers={"X-User-Id": USER_ME})
	assert other.status_code == 200
	await search_api.get_service().flush()


@pytest.mark.asyncio
async def test_university_results_get_logos_when_enrichment_enabled(api_client, indexed_campus, monkeypatch):
	async def _no_sleep(_: float) -> None:
		return None

	client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
	resolver = LogoResolver(client, throttle=RequestThrottle(0, sleep=_no_sleep), logodev_api_key=None, brandfetch_api_key=None)
	monkeypatch.setattr(settings, "search_enrichment_enabled", True)
	monkeypatch.setattr(search_api.get_service(), "enricher", UniversityEnricher(resolver))
	async with client:
		response = await api_client.get("/search/universities", params={"q": "ivy"})
	item = response.json()["results"][0]
	assert item["logoSource"] == "google"
	assert "ivystate.edu" in item["logo"]


@pytest.mark.asyncio
async def test_campus_images_endpoint(api_client, monkeypatch):
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(200, json={"results": [{"id": "p1", "urls": {"regular": "https://img/p1.jpg"}}]})

	client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
	monkeypatch.setattr(
		search_api.get_service(),
		"campus_image_service",
		CampusImageService(client, access_key="key"),
	)
	async with client:
		response = await api_client.get("/search/campus-images", params={"university": "Ivy State University", "count": "3"})
	payload = response.json()
	assert response.status_code == 200
	assert payload["university"] == "Ivy State University"
	assert payload["images"][0]["url"] == "https://img/p1.jpg"


@pytest.mark.asyncio
async def test_campus_images_requires_university(api_client):
	response = await api_client.get("/search/campus-images")
	assert response.status_code == 422
	assert response.json()["detail"] == "validation_error"
