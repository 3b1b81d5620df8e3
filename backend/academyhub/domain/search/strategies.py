"""Search tiers tried in order by every entity resolver.

Each strategy exposes ``attempt(resolver, query, report)`` returning a page, or
``None`` when it does not apply to the collection. A strategy that applies but
is rejected by the engine raises ``CapabilityUnavailable`` so the resolver can
move on to the next tier.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from academyhub.domain.search import models, query as q
from academyhub.domain.search.policy import CapabilityUnavailable
from academyhub.infra.store import StoreOperationError
from academyhub.obs import metrics as obs_metrics

if TYPE_CHECKING:  # pragma: no cover
	from academyhub.domain.search.resolvers import EntityResolver

_LOG = logging.getLogger(__name__)

FUZZY = {"maxEdits": 1, "prefixLength": 2}


class SearchStrategy:
	name = "base"
	relevance_meta: Optional[str] = None

	async def attempt(
		self,
		resolver: "EntityResolver",
		query: models.SearchQuery,
		report: models.CapabilityReport,
	) -> Optional[models.ResolverPage]:
		raise NotImplementedError

	async def _run_pipeline(
		self,
		resolver: "EntityResolver",
		query: models.SearchQuery,
		head: Callable[[dict[str, Any]], list[dict[str, Any]]],
	) -> models.ResolverPage:
		page = q.paginate(resolver.structured_filter(query.filters), page=query.page, limit=query.limit, cursor=query.cursor)
		result_stages: list[dict[str, Any]] = list(page.stages())
		for from_collection, local_field, _ in resolver.lookups:
			result_stages.extend(q.lookup_one(from_collection, local_field))
		result_stages.append(q.project(resolver.joined_projection()))
		pipeline = [
			*head(page.filter),
			q.add_score(self.relevance_meta),
			q.sort_stage(resolver.sort_spec(query.sort, tier=self.name)),
			q.results_facet(result_stages),
		]
		try:
			rows = await resolver.store.aggregate(resolver.collection, pipeline)
		except StoreOperationError as exc:
			raise CapabilityUnavailable(resolver.collection, self.name, exc.message) from exc
		docs, total = q.unpack_facet(rows)
		return models.ResolverPage(
			type=resolver.entity_type,
			items=[resolver.normalize(doc) for doc in docs],
			total=total,
			strategy=self.name,
		)


class ManagedTextStrategy(SearchStrategy):
	"""Fuzzy relevance search through the collection's managed search index."""

	name = "managed"
	relevance_meta = "searchScore"

	async def attempt(self, resolver, query, report):
		index_name = resolver.managed_index
		if not index_name or not report.managed_available(index_name):
			return None
		search_stage = {
			"$search": {
				"index": index_name,
				"compound": {
					"must": [
						{"text": {"query": query.normalized_text, "path": list(resolver.managed_paths), "fuzzy": dict(FUZZY)}},
					],
				},
			}
		}

		def head(structured: dict[str, Any]) -> list[dict[str, Any]]:
			stages = [search_stage]
			if structured:
				stages.append(q.match(structured))
			return stages

		return await self._run_pipeline(resolver, query, head)


class WeightedTextStrategy(SearchStrategy):
	"""Term match scored by the collection's weighted text index."""

	name = "text"
	relevance_meta = "textScore"

	async def attempt(self, resolver, query, report):
		if not report.text_index:
			return None

		def head(structured: dict[str, Any]) -> list[dict[str, Any]]:
			return [q.match({"$text": {"$search": query.normalized_text}, **structured})]

		return await self._run_pipeline(resolver, query, head)


class SubstringStrategy(SearchStrategy):
	"""Case-insensitive substring match on the display field; always applies."""

	name = "substring"

	async def attempt(self, resolver, query, report):
		page = q.paginate(resolver.structured_filter(query.filters), page=query.page, limit=query.limit, cursor=query.cursor)
		text_match = q.substring_filter(resolver.display_field, query.normalized_text)
		selector = {"$and": [page.filter, text_match]} if page.filter else text_match
		docs = await resolver.store.find(
			resolver.collection,
			selector,
			projection=resolver.projection,
			sort=resolver.sort_spec(query.sort, tier=self.name),
			skip=page.skip,
			limit=page.limit,
		)
		total = await q.count_documents(resolver.store, resolver.collection, selector, cache=resolver.count_cache)
		for from_collection, local_field, ref_projection in resolver.lookups:
			refs = await q.batch_fetch(
				resolver.store,
				from_collection,
				[doc.get(local_field) for doc in docs],
				q.PROJECTIONS[ref_projection],
			)
			for doc in docs:
				ref = refs.get(str(doc.get(local_field)))
				if ref is None:
					doc.pop(local_field, None)
				else:
					doc[local_field] = ref
		# only a store that answered can be said to lack indexes
		if not report.unreachable:
			_LOG.warning(
				"search.degraded_mode",
				extra={
					"collection": resolver.collection,
					"capability": report.capability.value,
					"hint": "run scripts/create_indexes.py",
				},
			)
			obs_metrics.inc_search_degraded(resolver.entity_type.value)
		return models.ResolverPage(
			type=resolver.entity_type,
			items=[resolver.normalize(doc) for doc in docs],
			total=total,
			strategy=self.name,
		)


DEFAULT_STRATEGIES: tuple[SearchStrategy, ...] = (
	ManagedTextStrategy(),
	WeightedTextStrategy(),
	SubstringStrategy(),
)
