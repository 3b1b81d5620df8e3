"""Fixed-window request budgets kept in Redis."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from academyhub.infra.redis import redis_client


@dataclass(frozen=True, slots=True)
class RateWindow:
	allowed: bool
	used: int
	limit: int
	reset_after: int

	@property
	def remaining(self) -> int:
		return max(0, self.limit - self.used)


async def consume(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> RateWindow:
	"""Count one request against ``actor_id`` and report the window state.

	Windows are aligned to multiples of ``window_seconds`` so every process
	sharing the Redis instance agrees on the bucket.
	"""
	window = max(1, int(window_seconds))
	now = time.time() if now is None else now
	if limit <= 0:
		return RateWindow(allowed=False, used=0, limit=0, reset_after=window)
	bucket = int(now // window)
	key = f"rl:{kind}:{actor_id}:{window}:{bucket}"
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		used, _ = await pipe.execute()
	reset_after = max(1, int((bucket + 1) * window - now))
	return RateWindow(allowed=int(used) <= limit, used=int(used), limit=limit, reset_after=reset_after)


async def allow(kind: str, actor_id: str, *, limit: int, window_seconds: int = 60, now: Optional[float] = None) -> bool:
	window = await consume(kind, actor_id, limit=limit, window_seconds=window_seconds, now=now)
	return window.allowed
