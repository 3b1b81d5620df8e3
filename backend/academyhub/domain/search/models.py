"""Domain models backing the search core."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class EntityType(str, enum.Enum):
	UNIVERSITIES = "universities"
	USERS = "users"
	POSTS = "posts"
	NOTES = "notes"
	REVIEWS = "reviews"

	@classmethod
	def parse(cls, value: Optional[str]) -> Optional["EntityType"]:
		if value is None:
			return None
		text = str(value).strip().lower()
		if not text or text == "all":
			return None
		return cls(text)


# Fixed slot order of an aggregate response.
TYPE_PRIORITY: tuple[EntityType, ...] = (
	EntityType.UNIVERSITIES,
	EntityType.USERS,
	EntityType.POSTS,
	EntityType.NOTES,
	EntityType.REVIEWS,
)


class SearchCapability(str, enum.Enum):
	MANAGED_FULL_TEXT = "managed_full_text"
	BASIC_WEIGHTED_TEXT = "basic_weighted_text"
	UNAVAILABLE = "unavailable"


@dataclass(slots=True)
class IndexProbe:
	name: str
	available: bool
	error: Optional[str] = None


@dataclass(slots=True)
class CapabilityReport:
	"""Per-collection outcome of probing managed and basic text search."""

	collection: str
	managed: tuple[IndexProbe, ...] = ()
	text_index: Optional[str] = None
	text_error: Optional[str] = None
	# the store could not be reached while probing; capability is unknown, not missing
	unreachable: bool = False

	@property
	def capability(self) -> SearchCapability:
		if any(probe.available for probe in self.managed):
			return SearchCapability.MANAGED_FULL_TEXT
		if self.text_index:
			return SearchCapability.BASIC_WEIGHTED_TEXT
		return SearchCapability.UNAVAILABLE

	def managed_available(self, index_name: str) -> bool:
		return any(probe.name == index_name and probe.available for probe in self.managed)

	def as_dict(self) -> dict[str, Any]:
		return {
			"collection": self.collection,
			"capability": self.capability.value,
			"managed": [
				{"name": probe.name, "available": probe.available, "error": probe.error}
				for probe in self.managed
			],
			"text_index": self.text_index,
			"text_error": self.text_error,
			"unreachable": self.unreachable,
		}


@dataclass(slots=True, frozen=True)
class AuxiliaryIndex:
	keys: tuple[tuple[str, int], ...]
	name: str
	unique: bool = False


@dataclass(slots=True, frozen=True)
class IndexDescriptor:
	"""Declared text weights and secondary indexes for one collection."""

	collection: str
	weights: tuple[tuple[str, int], ...] = ()
	auxiliary: tuple[AuxiliaryIndex, ...] = ()
	managed_indexes: tuple[str, ...] = ()

	@property
	def text_index_name(self) -> Optional[str]:
		if not self.weights:
			return None
		return f"{self.collection}_text_search"

	@property
	def text_keys(self) -> list[tuple[str, str]]:
		return [(field_name, "text") for field_name, _ in self.weights]

	@property
	def weight_map(self) -> dict[str, int]:
		return dict(self.weights)


@dataclass(slots=True)
class IndexFailure:
	name: str
	message: str
	code_name: Optional[str] = None
	conflict: bool = False


@dataclass(slots=True)
class ProvisionResult:
	collection: str
	created: list[str] = field(default_factory=list)
	skipped: list[str] = field(default_factory=list)
	failures: list[IndexFailure] = field(default_factory=list)

	@property
	def error(self) -> Optional[str]:
		if not self.failures:
			return None
		return "; ".join(f"{failure.name}: {failure.message}" for failure in self.failures)

	@property
	def conflicts(self) -> list[IndexFailure]:
		return [failure for failure in self.failures if failure.conflict]

	def as_dict(self) -> dict[str, Any]:
		return {
			"collection": self.collection,
			"created": list(self.created),
			"skipped": list(self.skipped),
			"failures": [
				{"name": f.name, "message": f.message, "code_name": f.code_name, "conflict": f.conflict}
				for f in self.failures
			],
		}


@dataclass(slots=True)
class SearchFilters:
	university_id: Optional[str] = None
	category: Optional[str] = None
	subject: Optional[str] = None
	course: Optional[str] = None
	note_type: Optional[str] = None
	min_rating: Optional[float] = None
	tags: tuple[str, ...] = ()
	country: Optional[str] = None
	state: Optional[str] = None
	unanswered_only: bool = False


@dataclass(slots=True)
class SearchQuery:
	text: str
	type: Optional[EntityType] = None
	filters: SearchFilters = field(default_factory=SearchFilters)
	page: int = 1
	limit: int = 20
	sort: str = "relevance"
	cursor: Optional[str] = None

	@property
	def normalized_text(self) -> str:
		return " ".join((self.text or "").split())

	def is_trivial(self, min_length: int) -> bool:
		return len(self.normalized_text) < min_length


@dataclass(slots=True)
class SearchResult:
	type: EntityType
	id: str
	summary: dict[str, Any]
	score: Optional[float] = None

	def as_dict(self) -> dict[str, Any]:
		payload = {"type": self.type.value, "id": self.id, **self.summary}
		if self.score is not None:
			payload["score"] = round(float(self.score), 6)
		return payload


@dataclass(slots=True)
class ResolverPage:
	type: EntityType
	items: list[SearchResult] = field(default_factory=list)
	total: int = 0
	strategy: Optional[str] = None
	error: Optional[str] = None


@dataclass(slots=True)
class SearchHistoryEntry:
	user_id: str
	query: str
	count: int
	last_used: Optional[datetime] = None


@dataclass(slots=True)
class Suggestion:
	text: str
	type: str
