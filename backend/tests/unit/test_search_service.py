import asyncio

import pytest
from bson import ObjectId

from academyhub.domain.search import models, policy
from academyhub.domain.search.resolvers import build_resolvers
from academyhub.domain.search.service import SearchService, order_suggestions
from academyhub.infra.store import StoreOperationError
from academyhub.settings import settings


class _FailingResolver:
	count_cache = None

	def __init__(self, exc: Exception) -> None:
		self.exc = exc

	async def search(self, query, report=None):
		raise self.exc


class _SlowResolver:
	count_cache = None

	async def search(self, query, report=None):
		await asyncio.sleep(5)
		raise AssertionError("should have timed out")


def _query(text: str, **kwargs) -> models.SearchQuery:
	return models.SearchQuery(text=text, **kwargs)


def _service_with(memory_store, entity: models.EntityType, resolver) -> SearchService:
	resolvers = build_resolvers(memory_store)
	resolvers[entity] = resolver
	return SearchService(memory_store, resolvers=resolvers)


@pytest.mark.asyncio
async def test_global_search_fills_every_slot(memory_store, indexed_campus):
	service = SearchService(memory_store)
	response = await service.global_search(_query("ivy"))

	assert list(response.results) == ["universities", "users", "posts", "notes", "reviews"]
	assert response.results["universities"][0]["name"] == "Ivy State University"
	assert response.results["posts"][0]["title"] == "Ivy orientation tips"
	assert response.results["notes"][0]["subject"] == "Ivy League Admissions"
	assert response.results["reviews"][0]["title"] == "Great campus life"
	assert response.counts == {
		"universities": 1,
		"users": 1,
		"posts": 1,
		"notes": 1,
		"reviews": 1,
		"total": 5,
	}
	assert response.errors == {}
	assert set(response.strategies.values()) == {"text"}
	assert response.pagination.total == 5
	assert response.pagination.has_more is False


@pytest.mark.asyncio
async def test_global_search_caps_per_type_limit(memory_store, indexed_campus):
	await memory_store.seed(
		"posts",
		[{"title": f"Ivy meetup {n}", "status": "active", "parentPost": None} for n in range(8)],
	)
	response = await SearchService(memory_store).global_search(_query("ivy", limit=40))
	assert len(response.results["posts"]) == settings.search_global_type_limit
	assert response.counts["posts"] == 9
	assert response.pagination.limit == settings.search_global_type_limit
	assert response.pagination.has_more is True


@pytest.mark.asyncio
async def test_one_failing_type_keeps_the_others(memory_store, indexed_campus):
	service = _service_with(
		memory_store,
		models.EntityType.NOTES,
		_FailingResolver(StoreOperationError("boom", code=1)),
	)
	response = await service.global_search(_query("ivy"))
	assert response.results["notes"] == []
	assert response.counts["notes"] == 0
	assert response.errors == {"notes": "error"}
	assert response.results["universities"][0]["name"] == "Ivy State University"
	assert response.counts["total"] == 4


@pytest.mark.asyncio
async def test_unexpected_resolver_error_stays_in_its_slot(memory_store, indexed_campus):
	service = _service_with(memory_store, models.EntityType.NOTES, _FailingResolver(RuntimeError("boom")))

	single = await service.search_type(models.EntityType.NOTES, _query("chemistry"))
	assert single.error == "error"
	assert single.results == []
	assert single.total == 0

	typed = await service.global_search(_query("chemistry", type=models.EntityType.NOTES))
	assert typed.results == {"notes": []}
	assert typed.errors == {"notes": "error"}

	everything = await service.global_search(_query("ivy"))
	assert everything.errors == {"notes": "error"}
	assert everything.results["universities"][0]["name"] == "Ivy State University"


@pytest.mark.asyncio
async def test_slow_resolver_times_out_into_empty_slot(memory_store, indexed_campus, monkeypatch):
	monkeypatch.setattr(settings, "search_resolver_timeout_seconds", 0.05)
	service = _service_with(memory_store, models.EntityType.USERS, _SlowResolver())
	response = await service.global_search(_query("ivy"))
	assert response.errors == {"users": "timeout"}
	assert response.results["users"] == []
	assert response.counts["posts"] == 1


@pytest.mark.asyncio
async def test_unreachable_store_raises_unavailable(memory_store, indexed_campus):
	memory_store.set_offline(True)
	with pytest.raises(policy.SearchUnavailableError) as excinfo:
		await SearchService(memory_store).global_search(_query("ivy"))
	assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_trivial_query_returns_neutral_response(memory_store, indexed_campus):
	response = await SearchService(memory_store).global_search(_query(" i "))
	assert response.query == "i"
	assert all(items == [] for items in response.results.values())
	assert response.counts["total"] == 0
	assert response.pagination is None


@pytest.mark.asyncio
async def test_single_type_search_restricts_slots(memory_store, indexed_campus):
	response = await SearchService(memory_store).global_search(_query("ivy", type=models.EntityType.POSTS))
	assert list(response.results) == ["posts"]
	assert response.counts == {"posts": 1, "total": 1}
	assert response.pagination.page == 1


@pytest.mark.asyncio
async def test_search_type_paginates(memory_store, indexed_campus):
	await memory_store.seed(
		"notes",
		[
			{"title": f"Chemistry lab {n}", "status": "active", "isPublic": True, "subject": "Chemistry"}
			for n in range(4)
		],
	)
	service = SearchService(memory_store)
	response = await service.search_type(models.EntityType.NOTES, _query("chemistry", limit=2))
	assert response.type == "notes"
	assert response.total == 5
	assert len(response.results) == 2
	assert response.pagination.pages == 3
	assert response.pagination.has_more is True
	assert response.strategy == "text"

	cursor = response.results[-1]["id"]
	follow = await service.search_type(
		models.EntityType.NOTES,
		_query("chemistry", limit=2, sort="newest", cursor=cursor),
	)
	assert follow.pagination.mode == "cursor"


@pytest.mark.asyncio
async def test_search_records_history_in_background(memory_store, indexed_campus):
	user_id = str(ObjectId())
	service = SearchService(memory_store)
	await service.global_search(_query("Ivy  League"), user_id=user_id)
	await service.global_search(_query("ivy league"), user_id=user_id)
	await service.flush()

	recent = await service.recent_searches(user_id)
	assert [(entry.query, entry.count) for entry in recent] == [("ivy league", 2)]
	assert await service.popular_searches() == [("ivy league", 2)]


@pytest.mark.asyncio
async def test_anonymous_search_records_nothing(memory_store, indexed_campus):
	service = SearchService(memory_store)
	await service.global_search(_query("ivy"))
	await service.flush()
	assert await service.popular_searches() == []


@pytest.mark.asyncio
async def test_clear_history_invalidates_popular_cache(memory_store, indexed_campus):
	user_id = str(ObjectId())
	service = SearchService(memory_store)
	await service.global_search(_query("maple"), user_id=user_id)
	await service.flush()
	assert await service.popular_searches() == [("maple", 1)]

	assert await service.clear_history(user_id) == 1
	assert await service.popular_searches() == []


@pytest.mark.asyncio
async def test_suggestions_merge_sources(memory_store, indexed_campus):
	service = SearchService(memory_store)
	items = await service.suggestions("iv")
	assert [(item.text, item.type) for item in items] == [
		("ivy", "tag"),
		("Ivy League Admissions", "subject"),
		("Ivy State University", "university"),
	]


@pytest.mark.asyncio
async def test_suggestions_use_autocomplete_index_when_available(memory_store, indexed_campus):
	await memory_store.define_search_index("universities", "universities_autocomplete", kind="autocomplete", paths=["name"])
	items = await SearchService(memory_store).suggestions("maple")
	assert ("Maple Ridge College", "university") in [(item.text, item.type) for item in items]


@pytest.mark.asyncio
async def test_suggestions_short_input_is_empty(memory_store, indexed_campus):
	assert await SearchService(memory_store).suggestions("i") == []
	assert await SearchService(memory_store).suggestions(None) == []


@pytest.mark.asyncio
async def test_suggestions_unreachable_store(memory_store, indexed_campus):
	memory_store.set_offline(True)
	with pytest.raises(policy.SearchUnavailableError):
		await SearchService(memory_store).suggestions("ivy")


def test_order_suggestions_prefix_first_and_deduped():
	items = [
		models.Suggestion(text="Advanced Chemistry", type="subject"),
		models.Suggestion(text="chemistry", type="tag"),
		models.Suggestion(text="Chemistry", type="subject"),
		models.Suggestion(text="chemistry", type="tag"),
	]
	ordered = order_suggestions(items, "chem", 10)
	assert [(item.text, item.type) for item in ordered] == [
		("Chemistry", "subject"),
		("chemistry", "tag"),
		("Advanced Chemistry", "subject"),
	]
	assert len(order_suggestions(items, "chem", 1)) == 1


@pytest.mark.asyncio
async def test_campus_images_without_service(memory_store):
	assert await SearchService(memory_store).campus_images("Ivy State University") == []
