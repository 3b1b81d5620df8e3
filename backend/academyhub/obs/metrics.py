"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info, Summary

REQUEST_COUNTER = Counter(
	"academyhub_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"academyhub_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REDIS_UP = Gauge("academyhub_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("academyhub_redis_latency_seconds", "Redis ping latency (seconds)")

STORE_UP = Gauge("academyhub_store_up", "Document store availability (1=up,0=down)")
STORE_LATENCY = Summary("academyhub_store_latency_seconds", "Document store ping latency (seconds)")

BUILD_INFO = Info("academyhub_build", "Service build and configuration")

SEARCH_QUERIES = Counter(
	"academyhub_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"academyhub_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

SEARCH_STRATEGY = Counter(
	"academyhub_search_strategy_total",
	"Search tier used to answer a resolver call",
	["entity", "strategy"],
)

SEARCH_DEGRADED = Counter(
	"academyhub_search_degraded_total",
	"Resolver calls answered by substring matching because no text index was available",
	["entity"],
)

SEARCH_RESOLVER_FAILURES = Counter(
	"academyhub_search_resolver_failures_total",
	"Resolver calls that failed or timed out inside an aggregate search",
	["entity", "reason"],
)

SEARCH_HISTORY_WRITES = Counter(
	"academyhub_search_history_writes_total",
	"Search history upserts",
	["result"],
)

INDEX_PROVISION = Counter(
	"academyhub_index_provision_total",
	"Index provisioning outcomes",
	["collection", "outcome"],
)

ENRICHMENT_LOOKUPS = Counter(
	"academyhub_enrichment_lookups_total",
	"Enrichment source attempts",
	["source", "result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_store(ok: bool, *, latency_seconds: float | None = None) -> None:
	STORE_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		STORE_LATENCY.observe(latency_seconds)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def inc_search_strategy(entity: str, strategy: str) -> None:
	SEARCH_STRATEGY.labels(entity=entity, strategy=strategy).inc()


def inc_search_degraded(entity: str) -> None:
	SEARCH_DEGRADED.labels(entity=entity).inc()


def inc_resolver_failure(entity: str, reason: str) -> None:
	SEARCH_RESOLVER_FAILURES.labels(entity=entity, reason=reason).inc()


def inc_history_write(result: str) -> None:
	SEARCH_HISTORY_WRITES.labels(result=result).inc()


def inc_index_provision(collection: str, outcome: str, count: int = 1) -> None:
	if count > 0:
		INDEX_PROVISION.labels(collection=collection, outcome=outcome).inc(count)


def inc_enrichment(source: str, result: str) -> None:
	ENRICHMENT_LOOKUPS.labels(source=source, result=result).inc()


def set_build_info(*, service: str, environment: str, commit: str, store_backend: str) -> None:
	BUILD_INFO.info({"service": service, "env": environment, "commit": commit, "store_backend": store_backend})
