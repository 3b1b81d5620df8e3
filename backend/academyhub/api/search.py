"""REST endpoints for global search, suggestions and search history.

Query parameters are read leniently: malformed paging or filter values fall
back to defaults instead of failing the request.
"""

from __future__ import annotations

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from academyhub.domain.enrichment.campus_images import CampusImageService
from academyhub.domain.enrichment.enricher import UniversityEnricher
from academyhub.domain.enrichment.logos import LogoResolver
from academyhub.domain.search import models, policy, query as q, schemas
from academyhub.domain.search.service import SearchService
from academyhub.infra.auth import AuthenticatedUser, client_ip, get_current_user, get_optional_user

router = APIRouter(tags=["search"])

_service = SearchService()


def get_service() -> SearchService:
	return _service


def install_enrichment(http: httpx.AsyncClient) -> None:
	"""Attach the outbound enrichment clients to the shared service."""

	_service.enricher = UniversityEnricher(LogoResolver(http))
	_service.campus_image_service = CampusImageService(http)


def _as_http_error(exc: Exception) -> HTTPException:
	if isinstance(exc, policy.SearchPolicyError):
		headers = None
		if isinstance(exc, policy.SearchRateLimitError):
			headers = {"Retry-After": str(exc.retry_after)}
		return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=headers)
	return HTTPException(status_code=400, detail=str(exc))


async def search_caller(
	request: Request,
	user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> Optional[AuthenticatedUser]:
	"""Apply the per-caller search budget; anonymous callers are keyed by address."""

	actor = user.id if user else f"ip:{client_ip(request)}"
	try:
		await policy.enforce_rate_limit(actor, kind="search")
	except policy.SearchPolicyError as exc:
		raise _as_http_error(exc) from exc
	return user


def search_filters(
	university_id: Optional[str] = Query(default=None, alias="universityId"),
	category: Optional[str] = Query(default=None),
	subject: Optional[str] = Query(default=None),
	course: Optional[str] = Query(default=None),
	note_type: Optional[str] = Query(default=None, alias="noteType"),
	min_rating: Optional[str] = Query(default=None, alias="minRating"),
	tags: Optional[list[str]] = Query(default=None),
	country: Optional[str] = Query(default=None),
	state: Optional[str] = Query(default=None),
	unanswered: Optional[str] = Query(default=None),
) -> models.SearchFilters:
	return policy.build_filters(
		university_id=university_id,
		category=category,
		subject=subject,
		course=course,
		note_type=note_type,
		min_rating=min_rating,
		tags=",".join(tags) if tags else None,
		country=country,
		state=state,
		unanswered=unanswered,
	)


def _build_query(
	text: Optional[str],
	*,
	entity: Optional[models.EntityType],
	filters: models.SearchFilters,
	page: Optional[str],
	limit: Optional[str],
	sort_by: Optional[str],
	cursor: Optional[str],
) -> models.SearchQuery:
	return models.SearchQuery(
		text=policy.clean_text(text),
		type=entity,
		filters=filters,
		page=q.clamp_page(page),
		limit=q.clamp_limit(limit),
		sort=(sort_by or "").strip() or q.RELEVANCE,
		cursor=(cursor or "").strip() or None,
	)


@router.get("/search", response_model=schemas.GlobalSearchResponse)
async def global_search_endpoint(
	q_text: Optional[str] = Query(default=None, alias="q"),
	type_: Optional[str] = Query(default=None, alias="type"),
	page: Optional[str] = Query(default=None),
	limit: Optional[str] = Query(default=None),
	sort_by: Optional[str] = Query(default=None, alias="sortBy"),
	cursor: Optional[str] = Query(default=None),
	filters: models.SearchFilters = Depends(search_filters),
	caller: Optional[AuthenticatedUser] = Depends(search_caller),
) -> schemas.GlobalSearchResponse:
	try:
		entity = policy.parse_entity_type(type_)
		query = _build_query(
			q_text,
			entity=entity,
			filters=filters,
			page=page,
			limit=limit,
			sort_by=sort_by,
			cursor=cursor,
		)
		return await _service.global_search(query, user_id=caller.id if caller else None)
	except policy.SearchPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/search/suggestions", response_model=schemas.SuggestionsResponse)
async def suggestions_endpoint(
	q_text: Optional[str] = Query(default=None, alias="q"),
	limit: Optional[str] = Query(default=None),
	_: Optional[AuthenticatedUser] = Depends(search_caller),
) -> schemas.SuggestionsResponse:
	try:
		items = await _service.suggestions(q_text, limit)
	except policy.SearchPolicyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.SuggestionsResponse(
		suggestions=[schemas.SuggestionItem(text=item.text, type=item.type) for item in items],
	)


@router.get("/search/recent", response_model=schemas.RecentSearchesResponse)
async def recent_searches_endpoint(
	limit: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RecentSearchesResponse:
	entries = await _service.recent_searches(auth_user.id, policy.coerce_int(limit, default=10))
	return schemas.RecentSearchesResponse(
		searches=[entry.query for entry in entries],
		entries=[
			schemas.RecentSearch(query=entry.query, count=entry.count, last_used=entry.last_used)
			for entry in entries
		],
	)


@router.get("/search/popular", response_model=schemas.PopularSearchesResponse)
async def popular_searches_endpoint(
	limit: Optional[str] = Query(default=None),
) -> schemas.PopularSearchesResponse:
	rows = await _service.popular_searches(policy.coerce_int(limit, default=10))
	return schemas.PopularSearchesResponse(
		searches=[text for text, _ in rows],
		entries=[schemas.PopularSearch(query=text, count=count) for text, count in rows],
	)


@router.delete("/search/history", response_model=schemas.ClearHistoryResponse)
@router.delete("/search/recent", response_model=schemas.ClearHistoryResponse)
async def clear_history_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ClearHistoryResponse:
	removed = await _service.clear_history(auth_user.id)
	return schemas.ClearHistoryResponse(cleared=True, removed=removed)


@router.get("/search/campus-images", response_model=schemas.CampusImagesResponse)
async def campus_images_endpoint(
	university: str = Query(..., min_length=1),
	count: Optional[str] = Query(default=None),
) -> schemas.CampusImagesResponse:
	images = await _service.campus_images(university, policy.coerce_int(count, default=5))
	return schemas.CampusImagesResponse(university=university, images=images)


@router.get("/search/{entity_type}", response_model=schemas.TypeSearchResponse)
async def type_search_endpoint(
	entity_type: str,
	q_text: Optional[str] = Query(default=None, alias="q"),
	page: Optional[str] = Query(default=None),
	limit: Optional[str] = Query(default=None),
	sort_by: Optional[str] = Query(default=None, alias="sortBy"),
	cursor: Optional[str] = Query(default=None),
	filters: models.SearchFilters = Depends(search_filters),
	caller: Optional[AuthenticatedUser] = Depends(search_caller),
) -> schemas.TypeSearchResponse:
	try:
		entity = policy.parse_entity_type(entity_type)
		if entity is None:
			raise policy.InvalidSearchTypeError()
		query = _build_query(
			q_text,
			entity=entity,
			filters=filters,
			page=page,
			limit=limit,
			sort_by=sort_by,
			cursor=cursor,
		)
		return await _service.search_type(entity, query, user_id=caller.id if caller else None)
	except policy.SearchPolicyError as exc:
		raise _as_http_error(exc) from exc
