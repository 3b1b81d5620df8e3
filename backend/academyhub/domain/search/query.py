"""Sort specs, pagination and aggregation fragments shared by the resolvers.

Everything here is pure except ``count_documents`` and ``batch_fetch``, which
take the store explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from bson import ObjectId

from academyhub.infra.cache import TTLCache
from academyhub.infra.store import CollectionStore, Document
from academyhub.settings import settings

SortSpec = list[tuple[str, int]]

SORT_OPTIONS: dict[str, SortSpec] = {
	"newest": [("createdAt", -1)],
	"oldest": [("createdAt", 1)],
	"popular": [("likesCount", -1), ("createdAt", -1)],
	"mostViewed": [("viewsCount", -1), ("createdAt", -1)],
	"mostDownloaded": [("downloadCount", -1), ("createdAt", -1)],
	"topRated": [("averageRating", -1), ("reviewCount", -1)],
	"alphabetical": [("name", 1)],
	"trending": [("trendingScore", -1), ("createdAt", -1)],
}

RELEVANCE = "relevance"
DEFAULT_SORT = "newest"


def build_sort(sort_key: Optional[str]) -> SortSpec:
	"""Map a client sort key to a field/direction list; unknown keys mean newest."""

	return list(SORT_OPTIONS.get(sort_key or "", SORT_OPTIONS[DEFAULT_SORT]))


def clamp_page(page: Any) -> int:
	try:
		value = int(page)
	except (TypeError, ValueError):
		return 1
	return max(1, value)


def clamp_limit(limit: Any, *, default: Optional[int] = None, maximum: Optional[int] = None) -> int:
	fallback = settings.search_default_limit if default is None else default
	ceiling = settings.search_max_limit if maximum is None else maximum
	try:
		value = int(limit)
	except (TypeError, ValueError):
		value = fallback
	if value < 1:
		value = fallback
	return min(value, ceiling)


def as_object_id(value: Any) -> Optional[ObjectId]:
	if isinstance(value, ObjectId):
		return value
	if isinstance(value, str) and ObjectId.is_valid(value):
		return ObjectId(value)
	return None


def id_match(value: Any) -> Any:
	"""Match a reference stored either as ObjectId or as its hex string."""

	oid = as_object_id(value)
	if oid is None:
		return value
	return {"$in": [oid, str(oid)]}


@dataclass(slots=True)
class PageSpec:
	filter: dict[str, Any]
	skip: int
	limit: int
	mode: str

	def stages(self) -> list[dict[str, Any]]:
		return page_stages(self.skip, self.limit)


def paginate(
	base_filter: Optional[Mapping[str, Any]],
	*,
	page: Any = 1,
	limit: Any = None,
	cursor: Any = None,
	cursor_field: str = "_id",
) -> PageSpec:
	"""Resolve cursor or offset pagination for a filter.

	With a cursor, records strictly before the cursor value on ``cursor_field``
	are selected and ``skip`` is always 0. Otherwise ``skip = (page-1)*limit``.
	"""

	size = clamp_limit(limit)
	base = dict(base_filter or {})
	if cursor not in (None, ""):
		boundary = as_object_id(cursor) if cursor_field == "_id" else None
		condition = {"$lt": boundary if boundary is not None else cursor}
		if cursor_field in base:
			merged = {"$and": [base, {cursor_field: condition}]}
		else:
			merged = {**base, cursor_field: condition}
		return PageSpec(filter=merged, skip=0, limit=size, mode="cursor")
	return PageSpec(filter=base, skip=(clamp_page(page) - 1) * size, limit=size, mode="offset")


async def count_documents(
	store: CollectionStore,
	collection: str,
	filter: Optional[Mapping[str, Any]] = None,
	*,
	cache: Optional[TTLCache[int]] = None,
) -> int:
	"""Exact count for narrowed queries, cached estimate for the whole collection."""

	if filter:
		return await store.count(collection, filter)
	if cache is not None:
		cached = cache.get(collection)
		if cached is not None:
			return cached
	total = await store.estimated_count(collection)
	if cache is not None:
		cache.set(collection, total)
	return total


def escape_regex(text: str) -> str:
	return re.escape(text)


def substring_filter(field: str, text: str) -> dict[str, Any]:
	return {field: {"$regex": escape_regex(text), "$options": "i"}}


def prefix_filter(field: str, text: str) -> dict[str, Any]:
	return {field: {"$regex": "^" + escape_regex(text), "$options": "i"}}


async def batch_fetch(
	store: CollectionStore,
	collection: str,
	ids: Iterable[Any],
	projection: Optional[Mapping[str, Any]] = None,
) -> dict[str, Document]:
	"""Fetch referenced documents in one query, keyed by stringified id."""

	wanted: list[Any] = []
	for raw in ids:
		if raw is None:
			continue
		for candidate in (raw, as_object_id(raw)):
			if candidate is not None and candidate not in wanted:
				wanted.append(candidate)
	if not wanted:
		return {}
	docs = await store.find(collection, {"_id": {"$in": wanted}}, projection=projection)
	return {str(doc["_id"]): doc for doc in docs}


# Aggregation fragments ------------------------------------------------------


def match(conditions: Mapping[str, Any]) -> dict[str, Any]:
	return {"$match": dict(conditions)}


def add_score(meta: str) -> dict[str, Any]:
	return {"$addFields": {"score": {"$meta": meta}}}


def sort_stage(spec: Sequence[tuple[str, Any]]) -> dict[str, Any]:
	return {"$sort": dict(spec)}


def page_stages(skip: int, limit: int) -> list[dict[str, Any]]:
	return [{"$skip": max(0, int(skip))}, {"$limit": int(limit)}]


def lookup_one(from_collection: str, local_field: str, as_field: Optional[str] = None) -> list[dict[str, Any]]:
	"""Join one referenced document, keeping rows whose reference is missing."""

	target = as_field or local_field
	return [
		{"$lookup": {"from": from_collection, "localField": local_field, "foreignField": "_id", "as": target}},
		{"$unwind": {"path": f"${target}", "preserveNullAndEmptyArrays": True}},
	]


def project(fields: Mapping[str, Any]) -> dict[str, Any]:
	return {"$project": dict(fields)}


def results_facet(result_stages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
	return {"$facet": {"results": list(result_stages), "total": [{"$count": "count"}]}}


def unpack_facet(rows: Sequence[Mapping[str, Any]]) -> tuple[list[Document], int]:
	if not rows:
		return [], 0
	head = rows[0]
	total_rows = head.get("total") or []
	total = int(total_rows[0].get("count", 0)) if total_rows else 0
	return list(head.get("results") or []), total


# Summary projections --------------------------------------------------------

PROJECTIONS: dict[str, dict[str, int]] = {
	"university": {
		"name": 1,
		"city": 1,
		"state": 1,
		"country": 1,
		"website": 1,
		"emailDomains": 1,
		"images": 1,
		"averageRating": 1,
		"reviewCount": 1,
		"studentCount": 1,
		"createdAt": 1,
	},
	"user": {
		"username": 1,
		"fullName": 1,
		"bio": 1,
		"profilePicture": 1,
		"isVerifiedStudent": 1,
		"university": 1,
		"createdAt": 1,
	},
	"post": {
		"title": 1,
		"content": 1,
		"category": 1,
		"tags": 1,
		"likesCount": 1,
		"replyCount": 1,
		"viewsCount": 1,
		"isQuestion": 1,
		"isAnswered": 1,
		"user": 1,
		"university": 1,
		"createdAt": 1,
	},
	"note": {
		"title": 1,
		"description": 1,
		"subject": 1,
		"course": 1,
		"noteType": 1,
		"tags": 1,
		"likesCount": 1,
		"downloadCount": 1,
		"author": 1,
		"university": 1,
		"createdAt": 1,
	},
	"review": {
		"title": 1,
		"content": 1,
		"overallRating": 1,
		"helpfulCount": 1,
		"isAnonymous": 1,
		"author": 1,
		"university": 1,
		"createdAt": 1,
	},
	"author": {"username": 1, "fullName": 1, "profilePicture": 1, "isVerifiedStudent": 1},
	"university_ref": {"name": 1, "images": 1, "city": 1, "state": 1},
}

_PREVIEW_LENGTH = 280


def preview(text: Any, length: int = _PREVIEW_LENGTH) -> Optional[str]:
	if not isinstance(text, str):
		return None
	if len(text) <= length:
		return text
	return text[: length - 1].rstrip() + "…"


def jsonable(value: Any) -> Any:
	"""Convert store values (ObjectId, datetimes) into JSON-friendly ones."""

	if isinstance(value, ObjectId):
		return str(value)
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, Mapping):
		return {str(key): jsonable(item) for key, item in value.items()}
	if isinstance(value, (list, tuple)):
		return [jsonable(item) for item in value]
	return value
