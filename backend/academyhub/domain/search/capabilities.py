"""Index capability prober.

Decides per collection whether managed full-text search indexes answer
queries, and whether a basic weighted text index exists. Probing is read-only
and never raises; reports are cached process-wide for a bounded time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Mapping, Optional, Sequence

from academyhub.domain.search import models
from academyhub.infra.store import CollectionStore, StoreConnectionError, StoreError, get_store
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

MANAGED_INDEXES: dict[str, tuple[str, ...]] = {
	"universities": ("universities_search", "universities_autocomplete"),
	"users": ("users_search", "users_autocomplete"),
	"posts": ("posts_search",),
	"notes": ("notes_search", "notes_autocomplete"),
	"reviews": ("reviews_search",),
}


def probe_pipeline(index_name: str) -> list[dict]:
	return [
		{"$search": {"index": index_name, "text": {"query": "test", "path": {"wildcard": "*"}}}},
		{"$limit": 1},
	]


class CapabilityProber:
	def __init__(
		self,
		store: Optional[CollectionStore] = None,
		*,
		registry: Optional[Mapping[str, Sequence[str]]] = None,
		ttl_seconds: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._store = store
		self._registry = {name: tuple(indexes) for name, indexes in (registry or MANAGED_INDEXES).items()}
		self._ttl = float(settings.search_capability_ttl_seconds if ttl_seconds is None else ttl_seconds)
		self._clock = clock
		self._cache: dict[str, tuple[float, models.CapabilityReport]] = {}

	@property
	def store(self) -> CollectionStore:
		return self._store or get_store()

	@property
	def collections(self) -> list[str]:
		return list(self._registry)

	def managed_indexes(self, collection: str) -> tuple[str, ...]:
		return self._registry.get(collection, ())

	def invalidate(self, collection: Optional[str] = None) -> None:
		if collection is None:
			self._cache.clear()
		else:
			self._cache.pop(collection, None)

	async def check(self, collection: str, *, refresh: bool = False) -> models.CapabilityReport:
		"""Return the capability report for a collection, probing when stale."""

		now = self._clock()
		cached = self._cache.get(collection)
		if cached is not None and not refresh and now < cached[0]:
			return cached[1]

		unreachable = False
		probes: list[models.IndexProbe] = []
		for index_name in self.managed_indexes(collection):
			probe, lost = await self._probe_managed(collection, index_name)
			unreachable = unreachable or lost
			probes.append(probe)
		text_index, text_error, lost = await self._probe_text(collection)
		unreachable = unreachable or lost

		report = models.CapabilityReport(
			collection=collection,
			managed=tuple(probes),
			text_index=text_index,
			text_error=text_error,
			unreachable=unreachable,
		)
		if not unreachable:
			self._cache[collection] = (now + self._ttl, report)
		_LOG.debug(
			"search.capability.probed",
			extra={"collection": collection, "capability": report.capability.value},
		)
		return report

	async def check_all(self, *, refresh: bool = False) -> dict[str, models.CapabilityReport]:
		reports = await asyncio.gather(*(self.check(name, refresh=refresh) for name in self.collections))
		return dict(zip(self.collections, reports))

	async def _probe_managed(self, collection: str, index_name: str) -> tuple[models.IndexProbe, bool]:
		try:
			await self.store.aggregate(collection, probe_pipeline(index_name))
		except StoreConnectionError as exc:
			return models.IndexProbe(name=index_name, available=False, error=str(exc)), True
		except StoreError as exc:
			return models.IndexProbe(name=index_name, available=False, error=exc.message), False
		except Exception as exc:  # pragma: no cover - unexpected driver failure
			_LOG.exception("search.capability.probe_error", extra={"collection": collection, "index": index_name})
			return models.IndexProbe(name=index_name, available=False, error=str(exc)), True
		return models.IndexProbe(name=index_name, available=True), False

	async def _probe_text(self, collection: str) -> tuple[Optional[str], Optional[str], bool]:
		try:
			indexes = await self.store.list_indexes(collection)
		except StoreConnectionError as exc:
			return None, str(exc), True
		except StoreError as exc:
			return None, exc.message, False
		except Exception as exc:  # pragma: no cover - unexpected driver failure
			_LOG.exception("search.capability.probe_error", extra={"collection": collection, "index": "text"})
			return None, str(exc), True
		for index in indexes:
			if index.get("textIndexVersion"):
				return str(index.get("name")), None, False
		return None, None, False


_PROBER: Optional[CapabilityProber] = None


def get_prober() -> CapabilityProber:
	global _PROBER
	if _PROBER is None:
		_PROBER = CapabilityProber()
	return _PROBER


def reset_prober() -> None:
	global _PROBER
	_PROBER = None
