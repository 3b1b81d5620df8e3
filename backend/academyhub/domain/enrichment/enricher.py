"""Fill missing logos on university search results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from academyhub.domain.enrichment.logos import ByEntity, LogoResolver

if TYPE_CHECKING:  # the search service imports this module
	from academyhub.domain.search import models

UNIVERSITIES = "universities"

_LOG = logging.getLogger(__name__)


class UniversityEnricher:
	def __init__(self, logos: LogoResolver) -> None:
		self.logos = logos

	async def enrich(self, items: Sequence[models.SearchResult]) -> int:
		"""Resolve a logo for every university result lacking one; returns how many were filled."""

		pending = [
			item
			for item in items
			if item.type == UNIVERSITIES and not item.summary.get("logo")
		]
		if not pending:
			return 0
		requests = [
			ByEntity(
				name=item.summary.get("name"),
				website=item.summary.get("website"),
				email_domains=tuple(item.summary.get("emailDomains") or ()),
			)
			for item in pending
		]
		results, stats = await self.logos.batch_resolve(requests)
		filled = 0
		for item, result in zip(pending, results):
			if result.url:
				item.summary["logo"] = result.url
				item.summary["logoSource"] = result.source
				filled += 1
		_LOG.debug("enrichment.universities", extra={"filled": filled, "by_source": stats["by_source"]})
		return filled
