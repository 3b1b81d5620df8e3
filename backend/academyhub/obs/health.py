"""Liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from academyhub.domain.search.capabilities import get_prober
from academyhub.domain.search.models import SearchCapability
from academyhub.infra.redis import redis_client
from academyhub.infra.store import get_store
from academyhub.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _timed(name: str, call: Callable[[], Awaitable[Any]], timeout: float) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(call(), timeout=timeout)
	except Exception as exc:  # any failure marks the dependency down
		LOGGER.warning("health.dependency_down", extra={"dependency": name, "error": str(exc) or "timeout"})
		return {"ok": False, "error": str(exc) or "timeout"}
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


def _seconds(state: Dict[str, Any]) -> Optional[float]:
	latency = state.get("latency_ms")
	return None if latency is None else latency / 1000


async def _search_status() -> Dict[str, Any]:
	reports = await get_prober().check_all()
	tiers = {name: report.capability.value for name, report in reports.items()}
	degraded = sorted(name for name, tier in tiers.items() if tier == SearchCapability.UNAVAILABLE.value)
	return {"ok": not degraded, "tiers": tiers, "degraded": degraded}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state, store_state = await asyncio.gather(
		_timed("redis", redis_client.ping, 0.2),
		_timed("store", lambda: get_store().ping(), 1.0),
	)
	metrics.mark_redis(redis_state["ok"], latency_seconds=_seconds(redis_state))
	metrics.mark_store(store_state["ok"], latency_seconds=_seconds(store_state))
	checks: Dict[str, Any] = {"redis": redis_state, "store": store_state}
	if not store_state["ok"]:
		return 503, {"status": "unavailable", "checks": checks}
	# redis only backs rate limits and substring search still answers, so both just degrade
	checks["search"] = await _search_status()
	healthy = redis_state["ok"] and checks["search"]["ok"]
	return 200, {"status": "ok" if healthy else "degraded", "checks": checks}
