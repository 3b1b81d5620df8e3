"""Per-entity search resolvers.

A resolver knows its collection, display field, managed index, summary
projection and entity filters, and delegates the query itself to the ordered
strategy tiers.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Mapping, Optional, Sequence

from academyhub.domain.search import models, query as q
from academyhub.domain.search.capabilities import CapabilityProber, get_prober
from academyhub.domain.search.policy import CapabilityUnavailable
from academyhub.domain.search.strategies import DEFAULT_STRATEGIES, SearchStrategy
from academyhub.infra.cache import TTLCache
from academyhub.infra.store import CollectionStore, Document, get_store
from academyhub.obs import metrics as obs_metrics
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

_RELEVANCE_KEYS = frozenset({"relevance", "score", ""})


def _exact_ci(value: str) -> dict[str, Any]:
	return {"$regex": f"^{q.escape_regex(value)}$", "$options": "i"}


def _author(ref: Any) -> Optional[dict[str, Any]]:
	if not isinstance(ref, Mapping):
		return None
	return {
		"id": str(ref.get("_id")),
		"username": ref.get("username"),
		"fullName": ref.get("fullName"),
		"profilePicture": ref.get("profilePicture"),
		"isVerifiedStudent": bool(ref.get("isVerifiedStudent", False)),
	}


def _university(ref: Any, *, with_location: bool = False) -> Optional[dict[str, Any]]:
	if not isinstance(ref, Mapping):
		return None
	images = ref.get("images") or {}
	summary = {"id": str(ref.get("_id")), "name": ref.get("name"), "logo": images.get("logo")}
	if with_location:
		summary["city"] = ref.get("city")
		summary["state"] = ref.get("state")
	return summary


class EntityResolver:
	entity_type: ClassVar[models.EntityType]
	collection: ClassVar[str]
	display_field: ClassVar[str]
	managed_index: ClassVar[Optional[str]] = None
	managed_paths: ClassVar[tuple[str, ...]] = ()
	projection_key: ClassVar[str]
	# (from collection, local field, projection key of the joined summary)
	lookups: ClassVar[tuple[tuple[str, str, str], ...]] = ()
	sort_overrides: ClassVar[dict[str, list[tuple[str, int]]]] = {}

	def __init__(
		self,
		store: Optional[CollectionStore] = None,
		*,
		prober: Optional[CapabilityProber] = None,
		count_cache: Optional[TTLCache[int]] = None,
		strategies: Sequence[SearchStrategy] = DEFAULT_STRATEGIES,
	) -> None:
		self._store = store
		self._prober = prober
		self.count_cache = count_cache
		self.strategies = tuple(strategies)

	@property
	def store(self) -> CollectionStore:
		return self._store or get_store()

	@property
	def prober(self) -> CapabilityProber:
		return self._prober or get_prober()

	@property
	def projection(self) -> dict[str, int]:
		return dict(q.PROJECTIONS[self.projection_key])

	def joined_projection(self) -> dict[str, int]:
		"""Summary projection with joined references narrowed to their own summaries."""

		fields = self.projection
		for _, local_field, ref_key in self.lookups:
			fields.pop(local_field, None)
			fields["_id"] = 1
			for ref_field in q.PROJECTIONS[ref_key]:
				fields[f"{local_field}.{ref_field}"] = 1
			fields[f"{local_field}._id"] = 1
		fields["score"] = 1
		return fields

	def base_filter(self) -> dict[str, Any]:
		return {}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		return {}

	def structured_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		return {**self.base_filter(), **self.entity_filter(filters)}

	def sort_spec(self, sort_key: Optional[str], *, tier: str) -> list[tuple[str, Any]]:
		key = (sort_key or "").strip()
		if key in _RELEVANCE_KEYS:
			if tier == "managed":
				return [("score", -1)]
			if tier == "text":
				return [("score", -1), ("createdAt", -1), ("_id", -1)]
			key = q.DEFAULT_SORT
		spec: list[tuple[str, Any]] = list(self.sort_overrides.get(key) or q.build_sort(key))
		if all(field != "_id" for field, _ in spec):
			spec.append(("_id", -1))
		return spec

	def summarize(self, doc: Document) -> dict[str, Any]:
		raise NotImplementedError

	def normalize(self, doc: Document) -> models.SearchResult:
		score = doc.get("score")
		return models.SearchResult(
			type=self.entity_type,
			id=str(doc.get("_id")),
			summary=q.jsonable(self.summarize(doc)),
			score=float(score) if isinstance(score, (int, float)) else None,
		)

	async def search(
		self,
		query: models.SearchQuery,
		*,
		report: Optional[models.CapabilityReport] = None,
	) -> models.ResolverPage:
		"""Answer the query with the first tier that applies and succeeds."""

		report = report or await self.prober.check(self.collection)
		for strategy in self.strategies:
			try:
				page = await strategy.attempt(self, query, report)
			except CapabilityUnavailable as exc:
				self.prober.invalidate(self.collection)
				_LOG.info(
					"search.strategy.fallthrough",
					extra={"collection": self.collection, "tier": exc.tier, "reason": exc.reason},
				)
				continue
			if page is not None:
				obs_metrics.inc_search_strategy(self.entity_type.value, page.strategy or strategy.name)
				return page
		# Only reachable with a custom strategy list lacking the substring tier.
		return models.ResolverPage(type=self.entity_type, strategy="none")


class UniversityResolver(EntityResolver):
	entity_type = models.EntityType.UNIVERSITIES
	collection = "universities"
	display_field = "name"
	managed_index = "universities_search"
	managed_paths = ("name", "city", "state", "description")
	projection_key = "university"
	sort_overrides = {
		"topRated": [("averageRating", -1), ("reviewCount", -1)],
		"alphabetical": [("name", 1)],
		"popular": [("studentCount", -1), ("reviewCount", -1)],
	}

	def base_filter(self) -> dict[str, Any]:
		return {"isActive": {"$ne": False}}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		out: dict[str, Any] = {}
		if filters.country:
			out["country"] = _exact_ci(filters.country)
		if filters.state:
			out["state"] = filters.state.upper()
		return out

	def summarize(self, doc: Document) -> dict[str, Any]:
		images = doc.get("images") or {}
		return {
			"name": doc.get("name"),
			"city": doc.get("city"),
			"state": doc.get("state"),
			"country": doc.get("country"),
			"website": doc.get("website"),
			"emailDomains": list(doc.get("emailDomains") or []),
			"logo": images.get("logo"),
			"coverImage": images.get("cover"),
			"averageRating": doc.get("averageRating", 0),
			"reviewCount": doc.get("reviewCount", 0),
			"studentCount": doc.get("studentCount"),
		}


class UserResolver(EntityResolver):
	entity_type = models.EntityType.USERS
	collection = "users"
	display_field = "username"
	managed_index = "users_search"
	managed_paths = ("username", "fullName", "bio")
	projection_key = "user"
	sort_overrides = {"alphabetical": [("username", 1)]}

	def base_filter(self) -> dict[str, Any]:
		return {"isDeleted": {"$ne": True}, "isDeactivated": {"$ne": True}}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		if filters.university_id:
			return {"university": q.id_match(filters.university_id)}
		return {}

	def summarize(self, doc: Document) -> dict[str, Any]:
		university = doc.get("university")
		return {
			"username": doc.get("username"),
			"fullName": doc.get("fullName"),
			"bio": q.preview(doc.get("bio"), 160),
			"profilePicture": doc.get("profilePicture"),
			"isVerifiedStudent": bool(doc.get("isVerifiedStudent", False)),
			"university": str(university) if university is not None else None,
		}


class PostResolver(EntityResolver):
	entity_type = models.EntityType.POSTS
	collection = "posts"
	display_field = "title"
	managed_index = "posts_search"
	managed_paths = ("title", "content", "tags")
	projection_key = "post"
	lookups = (("users", "user", "author"), ("universities", "university", "university_ref"))
	sort_overrides = {"alphabetical": [("title", 1)]}

	def base_filter(self) -> dict[str, Any]:
		return {"status": "active", "parentPost": None}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		out: dict[str, Any] = {}
		if filters.category:
			out["category"] = filters.category
		if filters.university_id:
			out["university"] = q.id_match(filters.university_id)
		if filters.tags:
			out["tags"] = {"$in": list(filters.tags)}
		if filters.unanswered_only:
			out["isQuestion"] = True
			out["isAnswered"] = {"$ne": True}
		return out

	def summarize(self, doc: Document) -> dict[str, Any]:
		return {
			"title": doc.get("title"),
			"content": q.preview(doc.get("content")),
			"category": doc.get("category"),
			"tags": list(doc.get("tags") or []),
			"likesCount": doc.get("likesCount", 0),
			"replyCount": doc.get("replyCount", 0),
			"viewsCount": doc.get("viewsCount", 0),
			"isQuestion": bool(doc.get("isQuestion", False)),
			"isAnswered": bool(doc.get("isAnswered", False)),
			"createdAt": doc.get("createdAt"),
			"author": _author(doc.get("user")),
			"university": _university(doc.get("university")),
		}


class NoteResolver(EntityResolver):
	entity_type = models.EntityType.NOTES
	collection = "notes"
	display_field = "title"
	managed_index = "notes_search"
	managed_paths = ("title", "description", "subject", "course", "tags")
	projection_key = "note"
	lookups = (("users", "author", "author"), ("universities", "university", "university_ref"))
	sort_overrides = {"alphabetical": [("title", 1)]}

	def base_filter(self) -> dict[str, Any]:
		return {"status": "active", "isPublic": {"$ne": False}}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		out: dict[str, Any] = {}
		if filters.subject:
			out["subject"] = _exact_ci(filters.subject)
		if filters.course:
			out["course"] = _exact_ci(filters.course)
		if filters.note_type:
			out["noteType"] = filters.note_type
		if filters.university_id:
			out["university"] = q.id_match(filters.university_id)
		if filters.tags:
			out["tags"] = {"$in": list(filters.tags)}
		return out

	def summarize(self, doc: Document) -> dict[str, Any]:
		return {
			"title": doc.get("title"),
			"description": q.preview(doc.get("description")),
			"subject": doc.get("subject"),
			"course": doc.get("course"),
			"noteType": doc.get("noteType"),
			"tags": list(doc.get("tags") or []),
			"likesCount": doc.get("likesCount", 0),
			"downloadCount": doc.get("downloadCount", 0),
			"createdAt": doc.get("createdAt"),
			"author": _author(doc.get("author")),
			"university": _university(doc.get("university")),
		}


class ReviewResolver(EntityResolver):
	entity_type = models.EntityType.REVIEWS
	collection = "reviews"
	display_field = "title"
	managed_index = "reviews_search"
	managed_paths = ("title", "content")
	projection_key = "review"
	lookups = (("users", "author", "author"), ("universities", "university", "university_ref"))
	sort_overrides = {
		"topRated": [("overallRating", -1), ("helpfulCount", -1)],
		"popular": [("helpfulCount", -1), ("createdAt", -1)],
		"alphabetical": [("title", 1)],
	}

	def base_filter(self) -> dict[str, Any]:
		return {"status": "active"}

	def entity_filter(self, filters: models.SearchFilters) -> dict[str, Any]:
		out: dict[str, Any] = {}
		if filters.university_id:
			out["university"] = q.id_match(filters.university_id)
		if filters.min_rating is not None:
			out["overallRating"] = {"$gte": filters.min_rating}
		return out

	def summarize(self, doc: Document) -> dict[str, Any]:
		anonymous = bool(doc.get("isAnonymous", False))
		return {
			"title": doc.get("title"),
			"content": q.preview(doc.get("content")),
			"overallRating": doc.get("overallRating"),
			"helpfulCount": doc.get("helpfulCount", 0),
			"isAnonymous": anonymous,
			"createdAt": doc.get("createdAt"),
			"author": None if anonymous else _author(doc.get("author")),
			"university": _university(doc.get("university"), with_location=True),
		}


RESOLVER_TYPES: dict[models.EntityType, type[EntityResolver]] = {
	models.EntityType.UNIVERSITIES: UniversityResolver,
	models.EntityType.USERS: UserResolver,
	models.EntityType.POSTS: PostResolver,
	models.EntityType.NOTES: NoteResolver,
	models.EntityType.REVIEWS: ReviewResolver,
}


def build_resolvers(
	store: Optional[CollectionStore] = None,
	*,
	prober: Optional[CapabilityProber] = None,
	count_cache: Optional[TTLCache[int]] = None,
) -> dict[models.EntityType, EntityResolver]:
	cache = count_cache if count_cache is not None else TTLCache.create(settings.search_estimated_count_ttl_seconds)
	return {
		entity: resolver_cls(store, prober=prober, count_cache=cache)
		for entity, resolver_cls in RESOLVER_TYPES.items()
	}
