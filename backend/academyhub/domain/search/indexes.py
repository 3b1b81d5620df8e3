"""Declared search indexes and the idempotent provisioner that creates them."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from academyhub.domain.search import models
from academyhub.domain.search.capabilities import MANAGED_INDEXES, CapabilityProber
from academyhub.infra.store import CollectionStore, StoreOperationError, get_store
from academyhub.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

A = models.AuxiliaryIndex

INDEX_DESCRIPTORS: dict[str, models.IndexDescriptor] = {
	"universities": models.IndexDescriptor(
		collection="universities",
		weights=(("name", 10), ("city", 5), ("state", 5), ("description", 3)),
		auxiliary=(
			A((("emailDomains", 1),), "universities_domains"),
			A((("country", 1), ("state", 1)), "universities_country_state"),
			A((("averageRating", -1),), "universities_rating"),
		),
		managed_indexes=MANAGED_INDEXES["universities"],
	),
	"users": models.IndexDescriptor(
		collection="users",
		weights=(("username", 10), ("fullName", 8), ("bio", 3)),
		auxiliary=(
			A((("university", 1),), "users_university"),
			A((("createdAt", -1),), "users_created"),
		),
		managed_indexes=MANAGED_INDEXES["users"],
	),
	"posts": models.IndexDescriptor(
		collection="posts",
		weights=(("title", 10), ("content", 5), ("tags", 7)),
		auxiliary=(
			A((("category", 1),), "posts_category"),
			A((("university", 1),), "posts_university"),
			A((("category", 1), ("createdAt", -1)), "posts_category_created"),
			A((("parentPost", 1),), "posts_parent"),
		),
		managed_indexes=MANAGED_INDEXES["posts"],
	),
	"notes": models.IndexDescriptor(
		collection="notes",
		weights=(("title", 10), ("description", 5), ("subject", 8), ("course", 7), ("tags", 6)),
		auxiliary=(
			A((("university", 1),), "notes_university"),
			A((("subject", 1),), "notes_subject"),
			A((("downloadCount", -1),), "notes_downloads"),
		),
		managed_indexes=MANAGED_INDEXES["notes"],
	),
	"reviews": models.IndexDescriptor(
		collection="reviews",
		weights=(("title", 8), ("content", 5)),
		auxiliary=(
			A((("university", 1),), "reviews_university"),
			A((("overallRating", -1),), "reviews_rating"),
			A((("createdAt", -1),), "reviews_created"),
		),
		managed_indexes=MANAGED_INDEXES["reviews"],
	),
	"searchhistories": models.IndexDescriptor(
		collection="searchhistories",
		auxiliary=(
			A((("user", 1), ("query", 1)), "searchhistory_user_query", unique=True),
			A((("user", 1), ("updatedAt", -1)), "searchhistory_user_updated"),
			A((("query", 1), ("count", -1)), "searchhistory_popular"),
		),
	),
}


def _same_text_index(existing: Mapping[str, Any], descriptor: models.IndexDescriptor) -> bool:
	if not existing.get("textIndexVersion"):
		return False
	return dict(existing.get("weights") or {}) == descriptor.weight_map


def _same_aux_index(existing: Mapping[str, Any], aux: models.AuxiliaryIndex) -> bool:
	return dict(existing.get("key") or {}) == dict(aux.keys) and bool(existing.get("unique")) == aux.unique


class IndexProvisioner:
	"""Create declared indexes; safe to run repeatedly.

	Indexes already present with the same name and shape are skipped. Engine
	conflicts (an equivalent index under another name, or the same name with
	different options) are recorded on the result and left for an operator;
	nothing is ever dropped. Connection failures propagate.
	"""

	def __init__(self, store: Optional[CollectionStore] = None, *, prober: Optional[CapabilityProber] = None) -> None:
		self._store = store
		self._prober = prober

	@property
	def store(self) -> CollectionStore:
		return self._store or get_store()

	async def ensure_indexes(self, descriptor: models.IndexDescriptor) -> models.ProvisionResult:
		result = models.ProvisionResult(collection=descriptor.collection)
		existing = {index.get("name"): index for index in await self.store.list_indexes(descriptor.collection)}

		if descriptor.text_index_name:
			await self._ensure_text(descriptor, existing, result)
		for aux in descriptor.auxiliary:
			current = existing.get(aux.name)
			if current is not None and _same_aux_index(current, aux):
				result.skipped.append(aux.name)
				continue
			options: dict[str, Any] = {"name": aux.name}
			if aux.unique:
				options["unique"] = True
			await self._create(descriptor.collection, list(aux.keys), options, result)

		self._finish(result)
		return result

	async def ensure_text_index(self, collection: str) -> models.ProvisionResult:
		"""Create only the weighted text index of a collection."""

		descriptor = INDEX_DESCRIPTORS[collection]
		result = models.ProvisionResult(collection=collection)
		existing = {index.get("name"): index for index in await self.store.list_indexes(collection)}
		if descriptor.text_index_name:
			await self._ensure_text(descriptor, existing, result)
		self._finish(result)
		return result

	async def ensure_all(self, collections: Optional[Iterable[str]] = None) -> list[models.ProvisionResult]:
		names = list(collections) if collections else list(INDEX_DESCRIPTORS)
		results: list[models.ProvisionResult] = []
		for name in names:
			descriptor = INDEX_DESCRIPTORS.get(name)
			if descriptor is None:
				_LOG.warning("search.index.unknown_collection", extra={"collection": name})
				results.append(
					models.ProvisionResult(
						collection=name,
						failures=[models.IndexFailure(name=name, message="no index descriptor declared")],
					)
				)
				continue
			results.append(await self.ensure_indexes(descriptor))
		return results

	async def _ensure_text(
		self,
		descriptor: models.IndexDescriptor,
		existing: Mapping[str, Mapping[str, Any]],
		result: models.ProvisionResult,
	) -> None:
		name = descriptor.text_index_name
		current = existing.get(name)
		if current is not None and _same_text_index(current, descriptor):
			result.skipped.append(name)
			return
		options = {"name": name, "weights": descriptor.weight_map}
		await self._create(descriptor.collection, descriptor.text_keys, options, result)

	async def _create(
		self,
		collection: str,
		keys: list[tuple[str, Any]],
		options: dict[str, Any],
		result: models.ProvisionResult,
	) -> None:
		name = options["name"]
		try:
			await self.store.create_index(collection, keys, **options)
		except StoreOperationError as exc:
			failure = models.IndexFailure(
				name=name,
				message=exc.message,
				code_name=exc.code_name,
				conflict=exc.is_index_conflict,
			)
			result.failures.append(failure)
			event = "search.index.conflict" if failure.conflict else "search.index.create_failed"
			_LOG.warning(
				event,
				extra={"collection": collection, "index": name, "code": exc.code, "error": exc.message},
			)
			return
		result.created.append(name)

	def _finish(self, result: models.ProvisionResult) -> None:
		obs_metrics.inc_index_provision(result.collection, "created", len(result.created))
		obs_metrics.inc_index_provision(result.collection, "skipped", len(result.skipped))
		obs_metrics.inc_index_provision(result.collection, "conflict", len(result.conflicts))
		obs_metrics.inc_index_provision(result.collection, "failed", len(result.failures) - len(result.conflicts))
		if self._prober is not None:
			self._prober.invalidate(result.collection)
		_LOG.info(
			"search.index.provisioned",
			extra={
				"collection": result.collection,
				"created_count": len(result.created),
				"skipped_count": len(result.skipped),
				"failure_count": len(result.failures),
			},
		)
