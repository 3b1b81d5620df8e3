"""Minimum spacing between outbound enrichment requests."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from academyhub.settings import settings


class RequestThrottle:
	"""One shared watermark; every caller waits until ``min_interval`` has
	passed since the previous request started."""

	def __init__(
		self,
		min_interval: float,
		*,
		clock: Callable[[], float] = time.monotonic,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	) -> None:
		self.min_interval = max(0.0, float(min_interval))
		self._clock = clock
		self._sleep = sleep
		self._lock = asyncio.Lock()
		self._last: Optional[float] = None

	@classmethod
	def create(cls) -> "RequestThrottle":
		return cls(settings.logo_min_interval_ms / 1000.0)

	async def wait(self) -> None:
		async with self._lock:
			if self._last is not None:
				remaining = self.min_interval - (self._clock() - self._last)
				if remaining > 0:
					await self._sleep(remaining)
			self._last = self._clock()

	def reset(self) -> None:
		self._last = None
