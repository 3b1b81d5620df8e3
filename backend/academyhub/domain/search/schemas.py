"""Pydantic schemas for the search APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class Pagination(BaseModel):
	page: int = Field(..., ge=1)
	limit: int = Field(..., ge=1)
	total: int = Field(..., ge=0)
	pages: int = Field(..., ge=0)
	has_more: bool = False
	mode: str = "offset"
	next_cursor: Optional[str] = None


class GlobalSearchResponse(BaseModel):
	"""Results keyed by entity type, with per-type totals and failure markers."""

	query: str
	results: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
	counts: dict[str, int] = Field(default_factory=dict)
	errors: dict[str, str] = Field(default_factory=dict)
	strategies: dict[str, str] = Field(default_factory=dict)
	pagination: Optional[Pagination] = None


class TypeSearchResponse(BaseModel):
	query: str
	type: str
	results: list[dict[str, Any]] = Field(default_factory=list)
	total: int = 0
	strategy: Optional[str] = None
	error: Optional[str] = None
	pagination: Pagination


class SuggestionItem(BaseModel):
	text: str
	type: str


class SuggestionsResponse(BaseModel):
	suggestions: list[SuggestionItem] = Field(default_factory=list)


class RecentSearch(BaseModel):
	query: str
	count: int = Field(default=1, ge=0)
	last_used: Optional[datetime] = None


class RecentSearchesResponse(BaseModel):
	searches: list[str] = Field(default_factory=list)
	entries: list[RecentSearch] = Field(default_factory=list)


class PopularSearch(BaseModel):
	query: str
	count: int = Field(..., ge=0)


class PopularSearchesResponse(BaseModel):
	searches: list[str] = Field(default_factory=list)
	entries: list[PopularSearch] = Field(default_factory=list)


class ClearHistoryResponse(BaseModel):
	cleared: bool = True
	removed: int = Field(default=0, ge=0)


class CampusImagesResponse(BaseModel):
	university: str
	images: list[dict[str, Any]] = Field(default_factory=list)
