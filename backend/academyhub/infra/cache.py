"""Time-boxed in-process cache keyed by normalised strings."""

from __future__ import annotations

import time
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar("V")


def normalise_key(key: str) -> str:
	return " ".join(str(key).split()).lower()


class TTLCache(Generic[V]):
	"""Map with a fixed time-to-live per entry.

	No cross-process coordination: a miss simply falls through to the origin.
	"""

	def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024) -> None:
		self.ttl_seconds = float(ttl_seconds)
		self._clock = clock
		self._max_entries = max_entries
		self._entries: dict[str, tuple[float, V]] = {}

	@classmethod
	def create(cls, ttl_seconds: float, **kwargs) -> "TTLCache[V]":
		return cls(ttl_seconds, **kwargs)

	def get(self, key: str) -> Optional[V]:
		slot = normalise_key(key)
		entry = self._entries.get(slot)
		if entry is None:
			return None
		expires_at, value = entry
		if self._clock() >= expires_at:
			self._entries.pop(slot, None)
			return None
		return value

	def set(self, key: str, value: V) -> None:
		if len(self._entries) >= self._max_entries:
			self._evict()
		self._entries[normalise_key(key)] = (self._clock() + self.ttl_seconds, value)

	def invalidate(self, key: Optional[str] = None) -> None:
		if key is None:
			self._entries.clear()
		else:
			self._entries.pop(normalise_key(key), None)

	def reset(self) -> None:
		self._entries.clear()

	def __len__(self) -> int:
		return len(self._entries)

	def _evict(self) -> None:
		now = self._clock()
		for slot in [slot for slot, (expires_at, _) in self._entries.items() if expires_at <= now]:
			del self._entries[slot]
		while len(self._entries) >= self._max_entries:
			# dicts keep insertion order; drop the oldest write
			self._entries.pop(next(iter(self._entries)))
