"""Shared Redis client used for search rate limits.

``redis_client`` is a proxy so modules can import it once while tests swap the
underlying connection for fakeredis.
"""

from __future__ import annotations

import redis.asyncio as redis

from academyhub.settings import settings


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def __getattr__(self, item):
		return getattr(self._client, item)


# from_url does not connect until the first command
redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	await redis_client.client.aclose()
