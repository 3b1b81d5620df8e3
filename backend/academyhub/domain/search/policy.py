"""Query validation, rate limits and the error taxonomy for search."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from academyhub.domain.search import models
from academyhub.infra.rate_limit import consume
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(slots=True)
class SearchPolicyError(Exception):
	detail: str
	status_code: int = 400

	def __str__(self) -> str:  # pragma: no cover - debugging aid
		return self.detail


class SearchRateLimitError(SearchPolicyError):
	def __init__(self, retry_after: int = 60) -> None:
		super().__init__(detail="rate_limit", status_code=429)
		self.retry_after = retry_after


class InvalidSearchTypeError(SearchPolicyError):
	def __init__(self) -> None:
		super().__init__(detail="invalid_type", status_code=400)


class SearchUnavailableError(SearchPolicyError):
	"""The document store cannot be reached at all; the caller may retry."""

	def __init__(self) -> None:
		super().__init__(detail="search_unavailable", status_code=503)


class CapabilityUnavailable(Exception):
	"""A search tier cannot serve this collection; the next tier takes over."""

	def __init__(self, collection: str, tier: str, reason: str = "") -> None:
		super().__init__(f"{tier} unavailable for {collection}: {reason}".rstrip(": "))
		self.collection = collection
		self.tier = tier
		self.reason = reason


async def enforce_rate_limit(actor_id: str, *, kind: str = "search", limit: Optional[int] = None) -> None:
	"""Ensure the caller remains within the configured budget."""

	budget = settings.search_rate_limit_per_minute if limit is None else limit
	window = await consume(kind, actor_id, limit=budget)
	if not window.allowed:
		_LOG.info("search.rate_limited", extra={"actor": actor_id, "kind": kind, "used": window.used})
		raise SearchRateLimitError(retry_after=window.reset_after)


def parse_entity_type(value: Optional[str]) -> Optional[models.EntityType]:
	try:
		return models.EntityType.parse(value)
	except ValueError as exc:
		raise InvalidSearchTypeError() from exc


def clean_text(value: Optional[str]) -> str:
	"""Collapse whitespace and bound the length of free-text input."""

	text = " ".join(str(value or "").split())
	return text[: settings.search_max_query_length]


def coerce_int(value: Any, *, default: int) -> int:
	if value is None or isinstance(value, bool):
		return default
	try:
		return int(str(value).strip())
	except (TypeError, ValueError):
		_LOG.debug("search.filter.ignored", extra={"filter": "int", "value": str(value)})
		return default


def coerce_float(value: Any, *, name: str = "value") -> Optional[float]:
	"""Return a finite float or ``None`` when the input is not numeric."""

	if value is None or isinstance(value, bool):
		return None
	try:
		number = float(str(value).strip())
	except (TypeError, ValueError):
		_LOG.debug("search.filter.ignored", extra={"filter": name, "value": str(value)})
		return None
	if math.isnan(number) or math.isinf(number):
		_LOG.debug("search.filter.ignored", extra={"filter": name, "value": str(value)})
		return None
	return number


def coerce_bool(value: Any, *, name: str = "value") -> bool:
	if isinstance(value, bool):
		return value
	if value is None:
		return False
	text = str(value).strip().lower()
	if text in _TRUE_VALUES:
		return True
	if text not in _FALSE_VALUES:
		_LOG.debug("search.filter.ignored", extra={"filter": name, "value": text})
	return False


def coerce_tags(value: Any) -> tuple[str, ...]:
	if value is None:
		return ()
	raw: Iterable[Any]
	if isinstance(value, str):
		raw = value.split(",")
	elif isinstance(value, (list, tuple, set)):
		raw = value
	else:
		return ()
	tags: list[str] = []
	for item in raw:
		tag = str(item).strip().lower().lstrip("#")
		if tag and tag not in tags:
			tags.append(tag)
	return tuple(tags)


def _optional_text(value: Any) -> Optional[str]:
	if value is None:
		return None
	text = " ".join(str(value).split())
	return text or None


def build_filters(
	*,
	university_id: Any = None,
	category: Any = None,
	subject: Any = None,
	course: Any = None,
	note_type: Any = None,
	min_rating: Any = None,
	tags: Any = None,
	country: Any = None,
	state: Any = None,
	unanswered: Any = None,
) -> models.SearchFilters:
	"""Translate raw request values into filters; malformed values are dropped."""

	rating = coerce_float(min_rating, name="min_rating")
	if rating is not None and not 0 <= rating <= 5:
		_LOG.debug("search.filter.ignored", extra={"filter": "min_rating", "value": rating})
		rating = None
	return models.SearchFilters(
		university_id=_optional_text(university_id),
		category=_optional_text(category),
		subject=_optional_text(subject),
		course=_optional_text(course),
		note_type=_optional_text(note_type),
		min_rating=rating,
		tags=coerce_tags(tags),
		country=_optional_text(country),
		state=_optional_text(state),
		unanswered_only=coerce_bool(unanswered, name="unanswered"),
	)
