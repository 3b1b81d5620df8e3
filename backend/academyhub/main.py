"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academyhub.api import ops, search
from academyhub.api.errors import install_error_handlers
from academyhub.api.middleware_request_id import RequestIdMiddleware
from academyhub.infra.redis import close_redis
from academyhub.infra.store import close_store, init_store
from academyhub.obs import init as obs_init
from academyhub.obs import logging as obs_logging
from academyhub.settings import settings

_LOG = obs_logging.get_logger("academyhub.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI):
	await init_store()
	http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
	search.install_enrichment(http)
	_LOG.info(
		"app.startup",
		extra={"store_backend": settings.store_backend, "enrichment": settings.search_enrichment_enabled},
	)
	try:
		yield
	finally:
		await search.get_service().flush()
		await http.aclose()
		await close_store()
		await close_redis()


app = FastAPI(title="Academy Hub Search", lifespan=lifespan)

install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)
app.add_middleware(RequestIdMiddleware)

app.include_router(search.router, tags=["search"])
app.include_router(ops.router, tags=["ops"])
