import pytest

from academyhub.infra.store import StoreConnectionError, StoreOperationError


@pytest.mark.asyncio
async def test_find_filters_sorts_and_projects(memory_store):
	await memory_store.seed(
		"posts",
		[
			{"title": "b", "likesCount": 2, "status": "active"},
			{"title": "a", "likesCount": 5, "status": "active"},
			{"title": "c", "likesCount": 9, "status": "deleted"},
		],
	)
	rows = await memory_store.find(
		"posts",
		{"status": "active"},
		projection={"title": 1},
		sort=[("likesCount", -1)],
	)
	assert [row["title"] for row in rows] == ["a", "b"]
	assert set(rows[0]) == {"_id", "title"}


@pytest.mark.asyncio
async def test_text_match_requires_text_index(memory_store):
	await memory_store.seed("notes", [{"title": "Organic chemistry"}])
	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.aggregate("notes", [{"$match": {"$text": {"$search": "chemistry"}}}])
	assert excinfo.value.code == 27


@pytest.mark.asyncio
async def test_text_match_scores_by_field_weight(memory_store):
	await memory_store.seed(
		"notes",
		[
			{"title": "Lab safety", "description": "chemistry basics"},
			{"title": "Chemistry notes", "description": "week one"},
		],
	)
	await memory_store.create_index(
		"notes",
		[("title", "text"), ("description", "text")],
		name="notes_text",
		weights={"title": 10, "description": 2},
	)
	rows = await memory_store.aggregate(
		"notes",
		[
			{"$match": {"$text": {"$search": "chemistry"}}},
			{"$addFields": {"score": {"$meta": "textScore"}}},
			{"$sort": {"score": -1}},
		],
	)
	assert [row["title"] for row in rows] == ["Chemistry notes", "Lab safety"]
	assert rows[0]["score"] > rows[1]["score"]


@pytest.mark.asyncio
async def test_text_match_must_be_first_stage(memory_store):
	await memory_store.create_index("notes", [("title", "text")], name="notes_text")
	with pytest.raises(StoreOperationError):
		await memory_store.aggregate(
			"notes",
			[{"$limit": 1}, {"$match": {"$text": {"$search": "x"}}}],
		)


@pytest.mark.asyncio
async def test_search_stage_needs_registered_index(memory_store):
	await memory_store.seed("universities", [{"name": "Ivy State University"}])
	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.aggregate("universities", [{"$search": {"index": "missing", "text": {"query": "ivy", "path": "name"}}}])
	assert excinfo.value.code == 27

	await memory_store.define_search_index("universities", "universities_search", paths=["name"])
	rows = await memory_store.aggregate(
		"universities",
		[{"$search": {"index": "universities_search", "text": {"query": "ivy", "path": "name"}}}],
	)
	assert rows[0]["name"] == "Ivy State University"

	memory_store.managed_search_enabled = False
	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.aggregate(
			"universities",
			[{"$search": {"index": "universities_search", "text": {"query": "ivy", "path": "name"}}}],
		)
	assert excinfo.value.code == 31082


@pytest.mark.asyncio
async def test_facet_with_count_on_empty_input(memory_store):
	rows = await memory_store.aggregate(
		"posts",
		[{"$facet": {"results": [{"$limit": 5}], "total": [{"$count": "count"}]}}],
	)
	assert rows == [{"results": [], "total": []}]


@pytest.mark.asyncio
async def test_lookup_and_unwind_keep_missing_refs(memory_store):
	users = await memory_store.seed("users", [{"username": "alice"}])
	await memory_store.seed("posts", [{"title": "one", "user": users[0]}, {"title": "two", "user": None}])
	rows = await memory_store.aggregate(
		"posts",
		[
			{"$lookup": {"from": "users", "localField": "user", "foreignField": "_id", "as": "user"}},
			{"$unwind": {"path": "$user", "preserveNullAndEmptyArrays": True}},
			{"$project": {"title": 1, "user.username": 1}},
		],
	)
	by_title = {row["title"]: row for row in rows}
	assert by_title["one"]["user"] == {"username": "alice"}
	assert "user" not in by_title["two"]


@pytest.mark.asyncio
async def test_index_conflicts_report_engine_codes(memory_store):
	await memory_store.create_index("posts", [("category", 1)], name="posts_category")
	# same name and shape is a no-op
	assert await memory_store.create_index("posts", [("category", 1)], name="posts_category") == "posts_category"

	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.create_index("posts", [("category", 1)], name="other_name")
	assert excinfo.value.code == 85
	assert excinfo.value.is_index_conflict

	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.create_index("posts", [("title", 1)], name="posts_category")
	assert excinfo.value.code == 86


@pytest.mark.asyncio
async def test_upsert_honours_unique_index_and_operators(memory_store):
	await memory_store.create_index(
		"searchhistories",
		[("user", 1), ("query", 1)],
		name="searchhistory_user_query",
		unique=True,
	)
	update = {"$inc": {"count": 1}, "$setOnInsert": {"createdAt": 1}, "$set": {"updatedAt": 2}}
	await memory_store.update_one("searchhistories", {"user": "u1", "query": "ivy"}, update, upsert=True)
	await memory_store.update_one("searchhistories", {"user": "u1", "query": "ivy"}, update, upsert=True)
	rows = await memory_store.find("searchhistories", {"user": "u1"})
	assert len(rows) == 1
	assert rows[0]["count"] == 2
	assert rows[0]["createdAt"] == 1

	with pytest.raises(StoreOperationError) as excinfo:
		await memory_store.insert_many("searchhistories", [{"user": "u1", "query": "ivy"}])
	assert excinfo.value.is_duplicate_key


@pytest.mark.asyncio
async def test_group_and_distinct(memory_store):
	await memory_store.seed(
		"searchhistories",
		[
			{"query": "ivy", "count": 2},
			{"query": "ivy", "count": 3},
			{"query": "maple", "count": 1},
		],
	)
	rows = await memory_store.aggregate(
		"searchhistories",
		[{"$group": {"_id": "$query", "totalCount": {"$sum": "$count"}}}, {"$sort": {"totalCount": -1}}],
	)
	assert rows == [{"_id": "ivy", "totalCount": 5}, {"_id": "maple", "totalCount": 1}]
	await memory_store.seed("posts", [{"tags": ["ivy", "study"]}, {"tags": ["study"]}])
	assert await memory_store.distinct("posts", "tags") == ["ivy", "study"]


@pytest.mark.asyncio
async def test_offline_store_raises_connection_error(memory_store):
	memory_store.set_offline(True)
	with pytest.raises(StoreConnectionError):
		await memory_store.find("posts", {})
	with pytest.raises(StoreConnectionError):
		await memory_store.ping()
	memory_store.set_offline(False)
	assert await memory_store.find("posts", {}) == []
