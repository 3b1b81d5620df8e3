"""Service layer for global search, suggestions and search history."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
import time
from typing import Any, Mapping, Optional, Sequence

from academyhub.domain.enrichment.campus_images import CampusImageService
from academyhub.domain.enrichment.enricher import UniversityEnricher
from academyhub.domain.search import models, policy, query as q, schemas
from academyhub.domain.search.capabilities import CapabilityProber, get_prober
from academyhub.domain.search.history import SearchHistoryStore
from academyhub.domain.search.resolvers import EntityResolver, build_resolvers
from academyhub.infra.cache import TTLCache
from academyhub.infra.store import CollectionStore, StoreConnectionError, StoreError, StoreOperationError, get_store
from academyhub.obs import metrics as obs_metrics
from academyhub.settings import settings

logger = logging.getLogger(__name__)

SUGGESTIONS_PER_SOURCE = 3
MAX_SUGGESTIONS = 20
AUTOCOMPLETE_FUZZY = {"maxEdits": 1, "prefixLength": 2}


def _failure_reason(exc: BaseException) -> str:
	if isinstance(exc, asyncio.TimeoutError):
		return "timeout"
	if isinstance(exc, StoreConnectionError):
		return "unavailable"
	return "error"


def _autocomplete(index_name: str, path: str, text: str) -> dict[str, Any]:
	return {
		"$search": {
			"index": index_name,
			"autocomplete": {
				"query": text,
				"path": path,
				"tokenOrder": "sequential",
				"fuzzy": dict(AUTOCOMPLETE_FUZZY),
			},
		}
	}


def _prefix_values(values: Sequence[Any], text: str) -> list[str]:
	"""Distinct string values starting with ``text``, alphabetically, case-insensitive."""

	needle = text.lower()
	seen: dict[str, str] = {}
	for value in values:
		if isinstance(value, str) and value.lower().startswith(needle):
			seen.setdefault(value.lower(), value)
	return sorted(seen.values(), key=str.lower)


def order_suggestions(items: Sequence[models.Suggestion], text: str, limit: int) -> list[models.Suggestion]:
	"""Prefix matches first, then alphabetical; duplicates within a type dropped."""

	needle = text.lower()
	unique: dict[tuple[str, str], models.Suggestion] = {}
	for item in items:
		if item.text:
			unique.setdefault((item.type, item.text.lower()), item)
	ordered = sorted(
		unique.values(),
		key=lambda item: (not item.text.lower().startswith(needle), item.text.lower(), item.type),
	)
	return ordered[:limit]


def _pagination(
	query: models.SearchQuery,
	limit: int,
	total: int,
	items: Sequence[models.SearchResult],
) -> schemas.Pagination:
	pages = math.ceil(total / limit) if total else 0
	if query.cursor:
		next_cursor = items[-1].id if len(items) >= limit else None
		return schemas.Pagination(
			page=1,
			limit=limit,
			total=total,
			pages=pages,
			has_more=next_cursor is not None,
			mode="cursor",
			next_cursor=next_cursor,
		)
	return schemas.Pagination(
		page=query.page,
		limit=limit,
		total=total,
		pages=pages,
		has_more=query.page * limit < total,
	)


class SearchService:
	def __init__(
		self,
		store: Optional[CollectionStore] = None,
		*,
		prober: Optional[CapabilityProber] = None,
		resolvers: Optional[Mapping[models.EntityType, EntityResolver]] = None,
		history: Optional[SearchHistoryStore] = None,
		enricher: Optional[UniversityEnricher] = None,
		campus_image_service: Optional[CampusImageService] = None,
	) -> None:
		self._store = store
		self._prober = prober
		self.resolvers = dict(resolvers) if resolvers is not None else build_resolvers(store, prober=prober)
		self.history = history or SearchHistoryStore(store)
		self.enricher = enricher
		self.campus_image_service = campus_image_service
		self._popular_cache: TTLCache[list[tuple[str, int]]] = TTLCache.create(settings.search_popular_cache_ttl_seconds)
		self._pending: set[asyncio.Task] = set()

	@property
	def store(self) -> CollectionStore:
		return self._store or get_store()

	@property
	def prober(self) -> CapabilityProber:
		return self._prober or get_prober()

	def reset_caches(self) -> None:
		self._popular_cache.reset()
		for resolver in self.resolvers.values():
			if resolver.count_cache is not None:
				resolver.count_cache.reset()

	# ---------------------------------------------------------------- search

	async def global_search(
		self,
		query: models.SearchQuery,
		*,
		user_id: Optional[str] = None,
	) -> schemas.GlobalSearchResponse:
		"""Fan the query out to every entity type, or to the one it is restricted to."""

		kind = query.type.value if query.type else "global"
		start = time.perf_counter()
		try:
			types = (query.type,) if query.type else models.TYPE_PRIORITY
			if query.is_trivial(settings.search_min_query_length):
				obs_metrics.inc_search_query(kind)
				return schemas.GlobalSearchResponse(
					query=query.normalized_text,
					results={entity.value: [] for entity in types},
					counts={**{entity.value: 0 for entity in types}, "total": 0},
				)

			if query.type:
				limit = q.clamp_limit(query.limit)
				page = await self._search_one(query.type, query)
				pages = [page]
				pagination = _pagination(query, limit, page.total, page.items)
			else:
				limit = min(q.clamp_limit(query.limit), settings.search_global_type_limit)
				per_type = dataclasses.replace(query, limit=limit, cursor=None)
				pages = await self._fan_out(per_type)
				totals = [page.total for page in pages]
				pagination = schemas.Pagination(
					page=per_type.page,
					limit=limit,
					total=sum(totals),
					pages=math.ceil(max(totals) / limit) if any(totals) else 0,
					has_more=any(per_type.page * limit < total for total in totals),
				)

			await self._enrich(pages)
			response = schemas.GlobalSearchResponse(
				query=query.normalized_text,
				results={page.type.value: [item.as_dict() for item in page.items] for page in pages},
				counts={**{page.type.value: page.total for page in pages}, "total": sum(page.total for page in pages)},
				errors={page.type.value: page.error for page in pages if page.error},
				strategies={page.type.value: page.strategy for page in pages if page.strategy},
				pagination=pagination,
			)
			self._schedule_history(user_id, query.text)
			obs_metrics.inc_search_query(kind)
			logger.info(
				"search.global",
				extra={"types": len(pages), "total": response.counts["total"], "errors": len(response.errors)},
			)
			return response
		finally:
			obs_metrics.observe_search_latency(kind, time.perf_counter() - start)

	async def search_type(
		self,
		entity: models.EntityType,
		query: models.SearchQuery,
		*,
		user_id: Optional[str] = None,
	) -> schemas.TypeSearchResponse:
		"""Single-type search with full pagination."""

		start = time.perf_counter()
		try:
			query = dataclasses.replace(query, type=entity)
			limit = q.clamp_limit(query.limit)
			if query.is_trivial(settings.search_min_query_length):
				obs_metrics.inc_search_query(entity.value)
				return schemas.TypeSearchResponse(
					query=query.normalized_text,
					type=entity.value,
					pagination=_pagination(query, limit, 0, []),
				)
			page = await self._search_one(entity, query)
			await self._enrich([page])
			self._schedule_history(user_id, query.text)
			obs_metrics.inc_search_query(entity.value)
			return schemas.TypeSearchResponse(
				query=query.normalized_text,
				type=entity.value,
				results=[item.as_dict() for item in page.items],
				total=page.total,
				strategy=page.strategy,
				error=page.error,
				pagination=_pagination(query, limit, page.total, page.items),
			)
		finally:
			obs_metrics.observe_search_latency(entity.value, time.perf_counter() - start)

	async def _resolve(self, entity: models.EntityType, query: models.SearchQuery) -> models.ResolverPage:
		resolver = self.resolvers[entity]
		return await asyncio.wait_for(resolver.search(query), timeout=settings.search_resolver_timeout_seconds)

	async def _search_one(self, entity: models.EntityType, query: models.SearchQuery) -> models.ResolverPage:
		try:
			return await self._resolve(entity, query)
		except StoreConnectionError as exc:
			self._failed_slot(entity, exc)
			raise policy.SearchUnavailableError() from exc
		except Exception as exc:
			return self._failed_slot(entity, exc)

	async def _fan_out(self, query: models.SearchQuery) -> list[models.ResolverPage]:
		settled = await asyncio.gather(
			*(self._resolve(entity, query) for entity in models.TYPE_PRIORITY),
			return_exceptions=True,
		)
		pages: list[models.ResolverPage] = []
		failures: list[BaseException] = []
		for entity, outcome in zip(models.TYPE_PRIORITY, settled):
			if isinstance(outcome, BaseException):
				if not isinstance(outcome, Exception):
					raise outcome
				failures.append(outcome)
				pages.append(self._failed_slot(entity, outcome))
			else:
				pages.append(outcome)
		if failures and len(failures) == len(pages) and all(isinstance(exc, StoreConnectionError) for exc in failures):
			raise policy.SearchUnavailableError()
		return pages

	def _failed_slot(self, entity: models.EntityType, exc: BaseException) -> models.ResolverPage:
		reason = _failure_reason(exc)
		logger.warning(
			"search.resolver_failed",
			exc_info=None if isinstance(exc, (StoreError, asyncio.TimeoutError)) else exc,
			extra={"entity": entity.value, "reason": reason, "error": str(exc) or exc.__class__.__name__},
		)
		obs_metrics.inc_resolver_failure(entity.value, reason)
		return models.ResolverPage(type=entity, error=reason)

	async def _enrich(self, pages: Sequence[models.ResolverPage]) -> None:
		if not settings.search_enrichment_enabled or self.enricher is None:
			return
		for page in pages:
			if page.type is models.EntityType.UNIVERSITIES and page.items:
				await self.enricher.enrich(page.items)

	# --------------------------------------------------------------- history

	def _schedule_history(self, user_id: Optional[str], text: str) -> None:
		if not user_id:
			return
		task = asyncio.create_task(self._record_history(user_id, text))
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _record_history(self, user_id: str, text: str) -> None:
		try:
			await self.history.record(user_id, text)
		except StoreError as exc:
			obs_metrics.inc_history_write("error")
			logger.warning("search.history.record_failed", extra={"error": exc.message, "code": exc.code})

	async def flush(self) -> None:
		"""Wait for background history writes; used at shutdown and in tests."""

		if self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)

	async def recent_searches(self, user_id: str, limit: int = 10) -> list[models.SearchHistoryEntry]:
		return await self.history.recent(user_id, q.clamp_limit(limit, default=10))

	async def popular_searches(self, limit: int = 10) -> list[tuple[str, int]]:
		size = q.clamp_limit(limit, default=10)
		cache_key = f"popular:{size}"
		cached = self._popular_cache.get(cache_key)
		if cached is not None:
			return cached
		rows = await self.history.popular(size)
		self._popular_cache.set(cache_key, rows)
		return rows

	async def clear_history(self, user_id: str) -> int:
		removed = await self.history.clear(user_id)
		self._popular_cache.invalidate()
		return removed

	# ----------------------------------------------------------- suggestions

	async def suggestions(self, partial: Optional[str], limit: Optional[int] = None) -> list[models.Suggestion]:
		"""Typeahead from university names, note subjects and post tags."""

		text = policy.clean_text(partial)
		if len(text) < settings.search_min_query_length:
			return []
		size = q.clamp_limit(limit, default=settings.search_suggestions_limit, maximum=MAX_SUGGESTIONS)
		start = time.perf_counter()
		try:
			settled = await asyncio.gather(
				self._university_suggestions(text),
				self._subject_suggestions(text),
				self._tag_suggestions(text),
				return_exceptions=True,
			)
			collected: list[models.Suggestion] = []
			failures: list[BaseException] = []
			for outcome in settled:
				if isinstance(outcome, BaseException):
					failures.append(outcome)
					logger.warning("search.suggestions.source_failed", extra={"error": str(outcome)})
				else:
					collected.extend(outcome)
			if len(failures) == len(settled) and all(isinstance(exc, StoreConnectionError) for exc in failures):
				raise policy.SearchUnavailableError()
			obs_metrics.inc_search_query("suggestions")
			return order_suggestions(collected, text, size)
		finally:
			obs_metrics.observe_search_latency("suggestions", time.perf_counter() - start)

	async def _managed_rows(self, collection: str, index_name: str, pipeline: list[dict[str, Any]]) -> Optional[list[dict[str, Any]]]:
		report = await self.prober.check(collection)
		if not report.managed_available(index_name):
			return None
		try:
			return await self.store.aggregate(collection, pipeline)
		except StoreOperationError as exc:
			self.prober.invalidate(collection)
			logger.info("search.suggestions.autocomplete_fallback", extra={"collection": collection, "reason": exc.message})
			return None

	async def _university_suggestions(self, text: str) -> list[models.Suggestion]:
		rows = await self._managed_rows(
			"universities",
			"universities_autocomplete",
			[
				_autocomplete("universities_autocomplete", "name", text),
				q.match({"isActive": {"$ne": False}}),
				{"$limit": SUGGESTIONS_PER_SOURCE},
				q.project({"name": 1}),
			],
		)
		if rows is None:
			rows = await self.store.find(
				"universities",
				{**q.prefix_filter("name", text), "isActive": {"$ne": False}},
				projection={"name": 1},
				sort=[("name", 1)],
				limit=SUGGESTIONS_PER_SOURCE,
			)
		return [models.Suggestion(text=row["name"], type="university") for row in rows if row.get("name")]

	async def _subject_suggestions(self, text: str) -> list[models.Suggestion]:
		rows = await self._managed_rows(
			"notes",
			"notes_autocomplete",
			[
				_autocomplete("notes_autocomplete", "subject", text),
				q.match({"status": "active"}),
				{"$group": {"_id": "$subject"}},
				{"$limit": SUGGESTIONS_PER_SOURCE},
			],
		)
		if rows is not None:
			subjects = [row["_id"] for row in rows if isinstance(row.get("_id"), str)]
		else:
			values = await self.store.distinct("notes", "subject", {**q.prefix_filter("subject", text), "status": "active"})
			subjects = _prefix_values(values, text)[:SUGGESTIONS_PER_SOURCE]
		return [models.Suggestion(text=subject, type="subject") for subject in subjects]

	async def _tag_suggestions(self, text: str) -> list[models.Suggestion]:
		values = await self.store.distinct("posts", "tags", {**q.prefix_filter("tags", text), "status": "active"})
		return [models.Suggestion(text=tag, type="tag") for tag in _prefix_values(values, text)[:SUGGESTIONS_PER_SOURCE]]

	# ------------------------------------------------------------ enrichment

	async def campus_images(self, university_name: str, count: int = 5) -> list[dict[str, Any]]:
		if self.campus_image_service is None:
			return []
		return await self.campus_image_service.search(university_name, q.clamp_limit(count, default=5, maximum=10))
