"""University logo resolution across external icon sources.

Sources are tried in order and every failure is non-fatal; when a name is
known the chain always ends with a generated initials placeholder.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union
from urllib.parse import urlparse
from xml.sax.saxutils import escape

import httpx

from academyhub.domain.enrichment.throttle import RequestThrottle
from academyhub.obs import metrics as obs_metrics
from academyhub.settings import settings

_LOG = logging.getLogger(__name__)

PLACEHOLDER_COLOR = "#6366F1"


@dataclass(frozen=True, slots=True)
class ByDomain:
	domain: str


@dataclass(frozen=True, slots=True)
class ByEntity:
	name: Optional[str]
	website: Optional[str] = None
	email_domains: tuple[str, ...] = ()
	cached_logo_url: Optional[str] = None


LogoRequest = Union[ByDomain, ByEntity]


@dataclass(slots=True)
class LogoResult:
	url: Optional[str]
	source: str
	domain: Optional[str] = None
	error: Optional[str] = None

	@property
	def found(self) -> bool:
		return bool(self.url)


def extract_domain(value: Optional[str]) -> Optional[str]:
	"""Domain from an email address, URL or bare host, without ``www.``."""

	if not value:
		return None
	text = value.strip().lower()
	if "@" in text:
		return text.split("@", 1)[1] or None
	if not text.startswith("http"):
		text = "https://" + text
	try:
		host = urlparse(text).hostname
	except ValueError:
		host = None
	host = host or value.strip().lower()
	return host.removeprefix("www.") or None


def initials(name: str) -> str:
	words = name.split()
	if not words:
		return ""
	if len(words) == 1:
		return words[0][:2].upper()
	return "".join(word[0] for word in words[:2]).upper()


def initials_placeholder(name: Optional[str], color: str = PLACEHOLDER_COLOR) -> Optional[str]:
	"""Deterministic SVG data URL showing the name's initials."""

	if not name or not name.strip():
		return None
	svg = (
		'<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">'
		f'<rect width="200" height="200" fill="{color}" rx="20"/>'
		'<text x="100" y="100" font-family="Arial, sans-serif" font-size="80" font-weight="bold" '
		f'fill="white" text-anchor="middle" dominant-baseline="central">{escape(initials(name))}</text>'
		"</svg>"
	)
	return "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")


class LogoSource:
	name = "base"

	async def attempt(self, resolver: "LogoResolver", domain: str) -> Optional[str]:
		raise NotImplementedError


class LogoDevSource(LogoSource):
	name = "logodev"

	async def attempt(self, resolver, domain):
		if not resolver.logodev_api_key:
			return None
		await resolver.throttle.wait()
		url = f"https://img.logo.dev/{domain}?token={resolver.logodev_api_key}&size=200&format=png"
		return url if await resolver.reachable(url) else None


class BrandfetchSource(LogoSource):
	name = "brandfetch"

	async def attempt(self, resolver, domain):
		if not resolver.brandfetch_api_key:
			return None
		await resolver.throttle.wait()
		response = await resolver.http.get(
			f"https://api.brandfetch.io/v2/brands/{domain}",
			headers={"Authorization": f"Bearer {resolver.brandfetch_api_key}"},
			timeout=resolver.timeout,
		)
		if response.status_code >= 400:
			return None
		return pick_brandfetch_logo(response.json())


def pick_brandfetch_logo(payload: Any) -> Optional[str]:
	"""Prefer an icon over a logo, and png over svg within the chosen asset."""

	logos = payload.get("logos") if isinstance(payload, dict) else None
	if not logos:
		return None
	selected = next((item for item in logos if item.get("type") == "icon"), None)
	selected = selected or next((item for item in logos if item.get("type") == "logo"), None)
	formats = (selected or {}).get("formats") or []
	if not formats:
		return None
	for wanted in ("png", "svg"):
		for fmt in formats:
			if fmt.get("format") == wanted and fmt.get("src"):
				return fmt["src"]
	return formats[0].get("src")


class GoogleFaviconSource(LogoSource):
	name = "google"

	async def attempt(self, resolver, domain):
		url = f"https://www.google.com/s2/favicons?domain={domain}&sz=128"
		return url if await resolver.reachable(url) else None


class DuckDuckGoSource(LogoSource):
	name = "duckduckgo"

	async def attempt(self, resolver, domain):
		url = f"https://icons.duckduckgo.com/ip3/{domain}.ico"
		return url if await resolver.reachable(url) else None


DEFAULT_SOURCES: tuple[LogoSource, ...] = (
	LogoDevSource(),
	BrandfetchSource(),
	GoogleFaviconSource(),
	DuckDuckGoSource(),
)


@dataclass
class LogoResolver:
	"""Walks the source chain for a domain or university record."""

	http: httpx.AsyncClient
	throttle: RequestThrottle = field(default_factory=RequestThrottle.create)
	sources: Sequence[LogoSource] = DEFAULT_SOURCES
	logodev_api_key: Optional[str] = field(default_factory=lambda: settings.logodev_api_key)
	brandfetch_api_key: Optional[str] = field(default_factory=lambda: settings.brandfetch_api_key)
	timeout: float = field(default_factory=lambda: settings.http_timeout_seconds)
	placeholder_color: str = PLACEHOLDER_COLOR

	async def reachable(self, url: Optional[str]) -> bool:
		if not url:
			return False
		if url.startswith("data:"):
			return True
		try:
			response = await self.http.head(url, follow_redirects=True, timeout=self.timeout)
		except httpx.HTTPError:
			return False
		return response.status_code < 400

	async def resolve(self, request: LogoRequest, *, force_refresh: bool = False) -> LogoResult:
		match request:
			case ByDomain(domain=raw):
				name = None
				domain = extract_domain(raw)
			case ByEntity(name=name, website=website, email_domains=email_domains, cached_logo_url=cached):
				if cached and not force_refresh and await self.reachable(cached):
					return LogoResult(url=cached, source="cached")
				domain = extract_domain(email_domains[0]) if email_domains else extract_domain(website)
			case _:
				raise TypeError(f"unsupported logo request: {request!r}")

		if not domain and not name:
			return LogoResult(url=None, source="none", error="No domain or name provided")

		if domain:
			for source in self.sources:
				url = await self._try(source, domain)
				if url:
					return LogoResult(url=url, source=source.name, domain=domain)

		placeholder = initials_placeholder(name, self.placeholder_color)
		if placeholder:
			obs_metrics.inc_enrichment("placeholder", "hit")
			return LogoResult(url=placeholder, source="placeholder", domain=domain)
		return LogoResult(url=None, source="none", domain=domain)

	async def _try(self, source: LogoSource, domain: str) -> Optional[str]:
		try:
			url = await source.attempt(self, domain)
		except (httpx.HTTPError, ValueError) as exc:
			_LOG.info("enrichment.logo.source_failed", extra={"source": source.name, "domain": domain, "error": str(exc)})
			obs_metrics.inc_enrichment(source.name, "error")
			return None
		obs_metrics.inc_enrichment(source.name, "hit" if url else "miss")
		return url

	async def batch_resolve(
		self,
		requests: Sequence[LogoRequest],
		*,
		concurrency: Optional[int] = None,
		force_refresh: bool = False,
	) -> tuple[list[LogoResult], dict[str, Any]]:
		"""Resolve in fixed-size groups; returns results in input order plus stats."""

		size = max(1, concurrency or settings.logo_batch_concurrency)
		results: list[LogoResult] = []
		for start in range(0, len(requests), size):
			group = requests[start : start + size]
			settled = await asyncio.gather(
				*(self.resolve(item, force_refresh=force_refresh) for item in group),
				return_exceptions=True,
			)
			for outcome in settled:
				if isinstance(outcome, BaseException):
					results.append(LogoResult(url=None, source="error", error=str(outcome)))
				else:
					results.append(outcome)
		found = sum(1 for result in results if result.found)
		stats = {
			"total": len(results),
			"success": found,
			"failed": len(results) - found,
			"by_source": dict(Counter(result.source for result in results)),
		}
		return results, stats
