"""Collection-store contract consumed by the search core.

The search layer only ever talks to a document store through this protocol:
collection-scoped find/aggregate with Mongo-shaped filters, projections, sort
lists and aggregation pipelines, plus index management and counts. Two
implementations exist: ``MongoCollectionStore`` (production) and
``MemoryCollectionStore`` (tests and local development).
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from academyhub.settings import settings

Document = dict[str, Any]
SortSpec = Sequence[tuple[str, Any]]

# Server error codes surfaced by the store for index and query failures.
INDEX_NOT_FOUND = 27
INDEX_OPTIONS_CONFLICT = 85
INDEX_KEY_SPECS_CONFLICT = 86
DUPLICATE_KEY = 11000
SEARCH_NOT_ENABLED = 31082

CONFLICT_CODES = frozenset({INDEX_OPTIONS_CONFLICT, INDEX_KEY_SPECS_CONFLICT})


class StoreError(Exception):
	"""Base class for document-store failures."""

	def __init__(self, message: str, *, code: Optional[int] = None, code_name: Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		self.code = code
		self.code_name = code_name

	@property
	def is_index_conflict(self) -> bool:
		return self.code in CONFLICT_CODES

	@property
	def is_duplicate_key(self) -> bool:
		return self.code == DUPLICATE_KEY


class StoreOperationError(StoreError):
	"""The store was reachable but rejected the operation."""


class StoreConnectionError(StoreError):
	"""The store could not be reached at all."""


class CollectionStore(Protocol):
	async def find(
		self,
		collection: str,
		filter: Optional[Mapping[str, Any]] = None,
		*,
		projection: Optional[Mapping[str, Any]] = None,
		sort: Optional[SortSpec] = None,
		skip: int = 0,
		limit: int = 0,
	) -> list[Document]: ...

	async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]: ...

	async def create_index(self, collection: str, keys: SortSpec, **options: Any) -> str: ...

	async def list_indexes(self, collection: str) -> list[Document]: ...

	async def drop_index(self, collection: str, name: str) -> None: ...

	async def estimated_count(self, collection: str) -> int: ...

	async def count(self, collection: str, filter: Mapping[str, Any]) -> int: ...

	async def distinct(self, collection: str, field: str, filter: Optional[Mapping[str, Any]] = None) -> list[Any]: ...

	async def update_one(
		self,
		collection: str,
		filter: Mapping[str, Any],
		update: Mapping[str, Any],
		*,
		upsert: bool = False,
	) -> None: ...

	async def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int: ...

	async def insert_many(self, collection: str, documents: Iterable[Document]) -> list[Any]: ...

	async def ping(self) -> None: ...

	async def close(self) -> None: ...


_store: Optional[CollectionStore] = None


def _build_default_store() -> CollectionStore:
	if settings.store_backend == "memory":
		from academyhub.infra.memory_store import MemoryCollectionStore

		return MemoryCollectionStore()
	from academyhub.infra.mongo import MongoCollectionStore

	return MongoCollectionStore.from_settings()


async def init_store() -> CollectionStore:
	global _store
	if _store is None:
		_store = _build_default_store()
	return _store


def set_store(store: Optional[CollectionStore]) -> None:
	global _store
	_store = store


def get_store() -> CollectionStore:
	global _store
	if _store is None:
		_store = _build_default_store()
	return _store


async def close_store() -> None:
	global _store
	if _store is not None:
		await _store.close()
		_store = None
