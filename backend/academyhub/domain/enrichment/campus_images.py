"""Campus photos from Unsplash, cached per university name for a day."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from academyhub.infra.cache import TTLCache
from academyhub.obs import metrics as obs_metrics
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

UNSPLASH_SEARCH_URL = "https://api.unsplash.com/search/photos"
MAX_PER_PAGE = 10


def _photo(raw: dict[str, Any], university_name: str) -> dict[str, Any]:
	urls = raw.get("urls") or {}
	user = raw.get("user") or {}
	return {
		"id": raw.get("id"),
		"url": urls.get("regular"),
		"full_url": urls.get("full"),
		"thumbnail": urls.get("thumb"),
		"small": urls.get("small"),
		"alt": raw.get("alt_description") or f"{university_name} campus",
		"credit": {
			"name": user.get("name"),
			"username": user.get("username"),
			"profile_url": (user.get("links") or {}).get("html"),
		},
		"color": raw.get("color"),
		"width": raw.get("width"),
		"height": raw.get("height"),
	}


@dataclass
class CampusImageService:
	http: httpx.AsyncClient
	access_key: Optional[str] = field(default_factory=lambda: settings.unsplash_access_key)
	cache: TTLCache[list[dict[str, Any]]] = field(
		default_factory=lambda: TTLCache.create(settings.campus_image_cache_ttl_seconds)
	)
	timeout: float = field(default_factory=lambda: settings.http_timeout_seconds)

	async def search(self, university_name: str, count: int = 5) -> list[dict[str, Any]]:
		"""Up to ``count`` photos; an unconfigured key or any failure yields ``[]``."""

		if not university_name or not university_name.strip() or not self.access_key:
			return []
		count = max(1, count)
		cached = self.cache.get(university_name)
		if cached is not None:
			return cached[:count]
		try:
			response = await self.http.get(
				UNSPLASH_SEARCH_URL,
				params={
					"query": f"{university_name} campus university",
					"per_page": min(count, MAX_PER_PAGE),
					"client_id": self.access_key,
				},
				timeout=self.timeout,
			)
			response.raise_for_status()
			payload = response.json()
		except (httpx.HTTPError, ValueError) as exc:
			_LOG.info("enrichment.campus_images.failed", extra={"university": university_name, "error": str(exc)})
			obs_metrics.inc_enrichment("unsplash", "error")
			return []
		photos = [_photo(item, university_name) for item in payload.get("results") or []]
		self.cache.set(university_name, photos)
		obs_metrics.inc_enrichment("unsplash", "hit" if photos else "miss")
		return photos[:count]
