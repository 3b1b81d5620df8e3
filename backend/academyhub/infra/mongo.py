"""MongoDB implementation of the collection-store contract."""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError, ServerSelectionTimeoutError

from academyhub.infra.store import Document, SortSpec, StoreConnectionError, StoreError, StoreOperationError
from academyhub.settings import settings

T = TypeVar("T")


def _translate(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
	"""Map driver exceptions onto the store error hierarchy."""

	@functools.wraps(func)
	async def wrapper(*args, **kwargs) -> T:
		try:
			return await func(*args, **kwargs)
		except (ServerSelectionTimeoutError, ConnectionFailure) as exc:
			raise StoreConnectionError(str(exc)) from exc
		except OperationFailure as exc:
			details = exc.details or {}
			raise StoreOperationError(
				str(details.get("errmsg") or exc),
				code=exc.code,
				code_name=details.get("codeName"),
			) from exc
		except PyMongoError as exc:
			raise StoreError(str(exc)) from exc

	return wrapper


class MongoCollectionStore:
	"""Thin async wrapper over a pymongo database handle."""

	def __init__(self, client: AsyncMongoClient, db_name: str) -> None:
		self._client = client
		self._db = client[db_name]

	@classmethod
	def from_settings(cls) -> "MongoCollectionStore":
		client: AsyncMongoClient = AsyncMongoClient(
			settings.mongo_url,
			serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
			tz_aware=True,
		)
		return cls(client, settings.mongo_db_name)

	@_translate
	async def find(
		self,
		collection: str,
		filter: Optional[Mapping[str, Any]] = None,
		*,
		projection: Optional[Mapping[str, Any]] = None,
		sort: Optional[SortSpec] = None,
		skip: int = 0,
		limit: int = 0,
	) -> list[Document]:
		cursor = self._db[collection].find(
			dict(filter or {}),
			projection=dict(projection) if projection else None,
			sort=list(sort) if sort else None,
			skip=skip,
			limit=limit,
		)
		return await cursor.to_list(length=None)

	@_translate
	async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
		cursor = await self._db[collection].aggregate(list(pipeline))
		return await cursor.to_list(length=None)

	@_translate
	async def create_index(self, collection: str, keys: SortSpec, **options: Any) -> str:
		return await self._db[collection].create_index(list(keys), **options)

	@_translate
	async def list_indexes(self, collection: str) -> list[Document]:
		cursor = await self._db[collection].list_indexes()
		return [dict(index) for index in await cursor.to_list(length=None)]

	@_translate
	async def drop_index(self, collection: str, name: str) -> None:
		await self._db[collection].drop_index(name)

	@_translate
	async def estimated_count(self, collection: str) -> int:
		return await self._db[collection].estimated_document_count()

	@_translate
	async def count(self, collection: str, filter: Mapping[str, Any]) -> int:
		return await self._db[collection].count_documents(dict(filter))

	@_translate
	async def distinct(self, collection: str, field: str, filter: Optional[Mapping[str, Any]] = None) -> list[Any]:
		return await self._db[collection].distinct(field, dict(filter or {}))

	@_translate
	async def update_one(
		self,
		collection: str,
		filter: Mapping[str, Any],
		update: Mapping[str, Any],
		*,
		upsert: bool = False,
	) -> None:
		await self._db[collection].update_one(dict(filter), dict(update), upsert=upsert)

	@_translate
	async def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
		result = await self._db[collection].delete_many(dict(filter))
		return result.deleted_count

	@_translate
	async def insert_many(self, collection: str, documents: Iterable[Document]) -> list[Any]:
		docs = list(documents)
		if not docs:
			return []
		result = await self._db[collection].insert_many(docs)
		return list(result.inserted_ids)

	@_translate
	async def ping(self) -> None:
		await self._client.admin.command("ping")

	async def close(self) -> None:
		await self._client.close()
