"""Per-user search history powering recent and popular suggestions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from academyhub.domain.search import models, query as q
from academyhub.infra.store import CollectionStore, StoreOperationError, get_store
from academyhub.obs import metrics as obs_metrics
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

COLLECTION = "searchhistories"
MAX_QUERY_LENGTH = 200


def normalize_query(raw: Optional[str]) -> str:
	"""Lower-case, trim and collapse whitespace; bounded to 200 characters."""

	return " ".join(str(raw or "").split()).lower()[:MAX_QUERY_LENGTH].strip()


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _user_ref(user_id: str) -> Any:
	oid = q.as_object_id(user_id)
	return oid if oid is not None else user_id


class SearchHistoryStore:
	"""One row per (user, normalised query) with a running count."""

	def __init__(
		self,
		store: Optional[CollectionStore] = None,
		*,
		max_per_user: Optional[int] = None,
		clock: Callable[[], datetime] = _now,
	) -> None:
		self._store = store
		self._max_per_user = settings.search_history_max_per_user if max_per_user is None else max_per_user
		self._clock = clock

	@property
	def store(self) -> CollectionStore:
		return self._store or get_store()

	async def record(self, user_id: str, raw_query: str) -> bool:
		"""Upsert the history row; returns False when the query is too short."""

		normalized = normalize_query(raw_query)
		if not user_id or len(normalized) < settings.search_min_query_length:
			return False
		user = _user_ref(user_id)
		selector = {"user": user, "query": normalized}
		now = self._clock()
		update = {
			"$set": {"updatedAt": now},
			"$inc": {"count": 1},
			"$setOnInsert": {"createdAt": now},
		}
		try:
			await self.store.update_one(COLLECTION, selector, update, upsert=True)
		except StoreOperationError as exc:
			if not exc.is_duplicate_key:
				raise
			# Two concurrent upserts raced on the unique (user, query) index.
			await self.store.update_one(COLLECTION, selector, update, upsert=True)
		obs_metrics.inc_history_write("ok")
		await self._prune(user)
		return True

	async def _prune(self, user: Any) -> None:
		if self._max_per_user <= 0:
			return
		stale = await self.store.find(
			COLLECTION,
			{"user": user},
			projection={"_id": 1},
			sort=[("updatedAt", -1), ("_id", -1)],
			skip=self._max_per_user,
		)
		if stale:
			removed = await self.store.delete_many(COLLECTION, {"_id": {"$in": [row["_id"] for row in stale]}})
			_LOG.debug("search.history.pruned", extra={"removed": removed})

	async def clear(self, user_id: str) -> int:
		"""Delete every row of the user; clearing an empty history is fine."""

		return await self.store.delete_many(COLLECTION, {"user": _user_ref(user_id)})

	async def recent(self, user_id: str, limit: int = 10) -> list[models.SearchHistoryEntry]:
		rows = await self.store.find(
			COLLECTION,
			{"user": _user_ref(user_id)},
			projection={"query": 1, "count": 1, "updatedAt": 1},
			sort=[("updatedAt", -1), ("_id", -1)],
			limit=max(1, limit),
		)
		return [
			models.SearchHistoryEntry(
				user_id=user_id,
				query=row.get("query", ""),
				count=int(row.get("count", 0)),
				last_used=row.get("updatedAt"),
			)
			for row in rows
		]

	async def popular(self, limit: int = 10) -> list[tuple[str, int]]:
		rows = await self.store.aggregate(
			COLLECTION,
			[
				{"$group": {"_id": "$query", "totalCount": {"$sum": "$count"}}},
				{"$sort": {"totalCount": -1, "_id": 1}},
				{"$limit": max(1, limit)},
			],
		)
		return [(str(row["_id"]), int(row.get("totalCount", 0))) for row in rows if row.get("_id")]
